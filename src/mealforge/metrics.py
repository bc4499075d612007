"""Prometheus metrics definitions for MealForge."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "mealforge_http_requests_total",
    "Total number of HTTP requests processed by the MealForge API",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "mealforge_http_request_duration_seconds",
    "Latency of HTTP requests processed by the MealForge API",
    ["method", "path"],
)

PIPELINE_RUNS = Counter(
    "mealforge_pipeline_runs_total",
    "Generation runs by final outcome",
    ["outcome"],
)

STREAM_EVENTS = Counter(
    "mealforge_stream_events_total",
    "Plan stream events consumed by kind",
    ["kind"],
)

RECIPE_ENRICHMENTS = Counter(
    "mealforge_recipe_enrichments_total",
    "Recipe detail requests by result",
    ["result"],
)

IMAGE_GENERATIONS = Counter(
    "mealforge_image_generations_total",
    "Image generation requests by result",
    ["result"],
)

CHECKPOINT_WRITES = Counter(
    "mealforge_checkpoint_writes_total",
    "Checkpoint store operations by result",
    ["operation", "result"],
)

__all__ = [
    "REQUEST_COUNT",
    "REQUEST_LATENCY",
    "PIPELINE_RUNS",
    "STREAM_EVENTS",
    "RECIPE_ENRICHMENTS",
    "IMAGE_GENERATIONS",
    "CHECKPOINT_WRITES",
]
