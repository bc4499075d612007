"""Clients for the remote generation services."""

from mealforge.services.client import GenerationServiceClient, ImageResult, build_service_client
from mealforge.services.sse import ServerSentEvent, SseDecoder

__all__ = [
    "GenerationServiceClient",
    "ImageResult",
    "ServerSentEvent",
    "SseDecoder",
    "build_service_client",
]
