"""Postcard records and batch image resolution."""

from .models import (
    LocationRecord,
    ResolutionEvent,
    ResolutionStatus,
    ResolutionTask,
    STAGE_FREE,
    STAGE_PAID,
    STAGE_POLLING,
    STAGE_SEARCHING,
)
from .orchestrate import ImageResolutionOrchestrator, ResolutionBatch
from .extraction import LocationExtractor, SampleLocationExtractor

__all__ = [
    "LocationRecord",
    "ResolutionEvent",
    "ResolutionStatus",
    "ResolutionTask",
    "STAGE_FREE",
    "STAGE_PAID",
    "STAGE_POLLING",
    "STAGE_SEARCHING",
    "ImageResolutionOrchestrator",
    "ResolutionBatch",
    "LocationExtractor",
    "SampleLocationExtractor",
]
