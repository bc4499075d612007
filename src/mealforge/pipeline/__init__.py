"""Generation pipeline: streaming ingest, enrichment and the phase state machine."""

from mealforge.pipeline.cancellation import CancellationToken
from mealforge.pipeline.enrichment import EnrichmentCoordinator
from mealforge.pipeline.handle import RunHandle
from mealforge.pipeline.ingest import StreamIngestor
from mealforge.pipeline.progress import ProgressTracker
from mealforge.pipeline.state_machine import PipelineStateMachine

__all__ = [
    "CancellationToken",
    "EnrichmentCoordinator",
    "PipelineStateMachine",
    "ProgressTracker",
    "RunHandle",
    "StreamIngestor",
]
