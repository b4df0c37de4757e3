"""Alcohol label verification: checks label images against application data."""

from .config import Settings, get_settings
from .exceptions import ImageDecodeError, LabelVerificationError, RecognitionFailed
from .models import ApplicationFields, BeverageCategory, OverallVerdict, PipelineResult
from .services import BatchItem, LabelVerificationPipeline, RawImage

__version__ = "1.0.0"

__all__ = [
    "Settings",
    "get_settings",
    "ImageDecodeError",
    "LabelVerificationError",
    "RecognitionFailed",
    "ApplicationFields",
    "BeverageCategory",
    "OverallVerdict",
    "PipelineResult",
    "BatchItem",
    "LabelVerificationPipeline",
    "RawImage",
]
