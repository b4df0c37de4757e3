"""Pydantic models for verification inputs and results."""

from .schemas import (
    BeverageCategory,
    FieldVerdict,
    OverallVerdict,
    LabelField,
    FIELD_LABELS,
    REQUIRED_FIELDS,
    ParsedLabelFields,
    ApplicationFields,
    FieldComparisonResult,
    PipelineResult,
    BatchItemResult,
)

__all__ = [
    "BeverageCategory",
    "FieldVerdict",
    "OverallVerdict",
    "LabelField",
    "FIELD_LABELS",
    "REQUIRED_FIELDS",
    "ParsedLabelFields",
    "ApplicationFields",
    "FieldComparisonResult",
    "PipelineResult",
    "BatchItemResult",
]
