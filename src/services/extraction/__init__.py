"""Streaming menu extraction services."""

from .orchestrator import ExtractionStreamService, get_extraction_stream_service
from .parser import MenuExtractionParser
from .progress import ProgressTracker, TimeoutMonitor


__all__ = [
    "ExtractionStreamService",
    "get_extraction_stream_service",
    "MenuExtractionParser",
    "ProgressTracker",
    "TimeoutMonitor",
]
