"""
MealForge multi-week meal plan generation package.

The package exposes the generation orchestration pipeline (streaming plan
ingestion, concurrent recipe and image enrichment, progress, cancellation and
checkpoint/resume) together with its service client, persistence and API.
"""

__all__ = ["__version__"]

__version__ = "0.1.0"
