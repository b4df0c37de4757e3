"""Services for image preprocessing, OCR, field parsing, matching, and the pipeline."""

from .preprocessing import ImagePreprocessor, PreprocessVariant, PreprocessedBitmap, RawImage
from .ocr import (
    EasyOCREngine,
    ExtractionResult,
    LayoutMode,
    RecognitionEngineHandle,
    RecognitionOutput,
    TextExtractor,
    WordRegion,
)
from .extraction import FieldParser, GOVERNMENT_WARNING_TEXT
from .verification import (
    MATCH_RULES,
    MatchingEngine,
    exact_match,
    fuzzy_match,
    levenshtein_distance,
    numeric_match,
    reverse_lookup,
    similarity,
    strict_match,
)
from .pipeline import BatchItem, LabelVerificationPipeline

__all__ = [
    "ImagePreprocessor",
    "PreprocessVariant",
    "PreprocessedBitmap",
    "RawImage",
    "EasyOCREngine",
    "ExtractionResult",
    "LayoutMode",
    "RecognitionEngineHandle",
    "RecognitionOutput",
    "TextExtractor",
    "WordRegion",
    "FieldParser",
    "GOVERNMENT_WARNING_TEXT",
    "MATCH_RULES",
    "MatchingEngine",
    "exact_match",
    "fuzzy_match",
    "levenshtein_distance",
    "numeric_match",
    "reverse_lookup",
    "similarity",
    "strict_match",
    "BatchItem",
    "LabelVerificationPipeline",
]
