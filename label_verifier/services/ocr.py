"""Text extraction using EasyOCR (PyTorch-based).

- Explicit, injectable engine handle (lazy thread-safe init, serialized recognition)
- Two layout modes: BLOCK for paragraph text, SPARSE for isolated elements
- Line reconstruction from word boxes with blank lines between blocks
- Two-pass extraction: primary bitmap + enhanced bitmap, merged by new lines
"""

import numpy as np
from enum import Enum
from typing import Optional, List, Dict, Any, Callable, Protocol, Union
from dataclasses import dataclass, field
import logging
import re
import threading
import time
import unicodedata

from ..config import Settings, get_settings
from ..exceptions import RecognitionFailed
from .preprocessing import ImagePreprocessor, PreprocessVariant, RawImage

logger = logging.getLogger(__name__)


class LayoutMode(str, Enum):
    """How the engine should treat the page layout."""
    BLOCK = "block"  # uniform block / paragraph text
    SPARSE = "sparse"  # scattered text, isolated words and numbers


# readtext() parameters per layout mode
LAYOUT_PARAMS: Dict[LayoutMode, Dict[str, Any]] = {
    LayoutMode.BLOCK: {
        "decoder": "greedy",
        "batch_size": 1,
        "paragraph": False,
        "width_ths": 0.7,
    },
    LayoutMode.SPARSE: {
        "decoder": "greedy",
        "batch_size": 1,
        "paragraph": False,
        "width_ths": 0.3,  # don't join distant words into one box
        "text_threshold": 0.6,
        "low_text": 0.3,
        "mag_ratio": 1.5,
    },
}


@dataclass
class WordRegion:
    """A detected text box with position and confidence."""
    text: str
    confidence: float
    bbox: List[List[int]]  # [[x1,y1], [x2,y2], [x3,y3], [x4,y4]]

    @property
    def top(self) -> int:
        return min(p[1] for p in self.bbox)

    @property
    def bottom(self) -> int:
        return max(p[1] for p in self.bbox)

    @property
    def left(self) -> int:
        return min(p[0] for p in self.bbox)

    @property
    def right(self) -> int:
        return max(p[0] for p in self.bbox)

    @property
    def height(self) -> int:
        return self.bottom - self.top

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def center_y(self) -> float:
        return (self.top + self.bottom) / 2


@dataclass
class RecognitionOutput:
    """What one engine call produced."""
    text: str
    confidence: float
    words: List[WordRegion] = field(default_factory=list)

    @classmethod
    def empty(cls) -> "RecognitionOutput":
        return cls(text="", confidence=0.0, words=[])


@dataclass
class ExtractionResult:
    """Raw text recovered from a label image."""
    raw_text: str
    confidence: float
    word_regions: List[WordRegion] = field(default_factory=list)
    metrics: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.raw_text.strip():
            self.confidence = 0.0


class RecognitionEngine(Protocol):
    """Anything that turns a grayscale bitmap into text."""

    def load(self) -> None: ...

    def recognize(self, bitmap: np.ndarray, layout_mode: LayoutMode) -> RecognitionOutput: ...

    def close(self) -> None: ...


def normalize_text(text: str) -> str:
    """
    Normalize OCR text output.
    - Unicode NFKC normalization
    - Collapse whitespace
    - Strip leading/trailing whitespace
    """
    normalized = unicodedata.normalize("NFKC", text)
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


def group_into_lines(words: List[WordRegion]) -> List[List[WordRegion]]:
    """
    Group word boxes into text lines by vertical center.

    A box joins the current line when its center is within half the median
    box height of the line's first box. Each line is ordered left to right.
    """
    if not words:
        return []

    median_h = max(1.0, float(np.median([w.height for w in words])))
    tolerance = median_h * 0.5

    lines: List[List[WordRegion]] = []
    for word in sorted(words, key=lambda w: (w.center_y, w.left)):
        if lines and abs(word.center_y - lines[-1][0].center_y) <= tolerance:
            lines[-1].append(word)
        else:
            lines.append([word])

    return [sorted(line, key=lambda w: w.left) for line in lines]


def boxes_to_text(words: List[WordRegion], paragraph_gap_ratio: float = 1.5) -> str:
    """
    Rebuild multi-line text from word boxes.

    Lines are joined with newlines; a blank line is inserted where the
    vertical gap between consecutive lines exceeds
    ``paragraph_gap_ratio`` x median box height.
    """
    lines = group_into_lines(words)
    if not lines:
        return ""

    median_h = max(1.0, float(np.median([w.height for w in words])))
    out: List[str] = []
    prev_bottom = None
    for line in lines:
        top = min(w.top for w in line)
        if prev_bottom is not None and top - prev_bottom > paragraph_gap_ratio * median_h:
            out.append("")
        out.append(" ".join(w.text for w in line))
        prev_bottom = max(w.bottom for w in line)
    return "\n".join(out)


def merge_pass_text(primary: str, secondary: str) -> str:
    """
    Combine two recognition passes.

    Primary text is kept verbatim. Secondary lines whose trimmed,
    case-insensitive form is not already a primary line are appended
    after a blank line.
    """
    seen = {line.strip().lower() for line in primary.split("\n") if line.strip()}
    additions = []
    for line in secondary.split("\n"):
        key = line.strip().lower()
        if key and key not in seen:
            additions.append(line.strip())
            seen.add(key)

    if not additions:
        return primary
    if not primary.strip():
        return "\n".join(additions)
    return primary.rstrip("\n") + "\n\n" + "\n".join(additions)


class EasyOCREngine:
    """Recognition engine backed by ``easyocr.Reader``."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self._reader = None
        self.layout_mode: Optional[LayoutMode] = None

    def load(self) -> None:
        import easyocr
        import torch

        if self.settings.ocr_num_threads:
            torch.set_num_threads(self.settings.ocr_num_threads)
            torch.set_num_interop_threads(1)

        logger.info(
            f"Initializing EasyOCR engine (lang={self.settings.ocr_lang}, gpu={self.settings.ocr_gpu})..."
        )
        self._reader = easyocr.Reader(
            [self.settings.ocr_lang],
            gpu=self.settings.ocr_gpu,
            model_storage_directory=self.settings.ocr_model_dir,
            verbose=False,
        )
        logger.info("EasyOCR initialized successfully")

    def recognize(self, bitmap: np.ndarray, layout_mode: LayoutMode) -> RecognitionOutput:
        """
        Run one readtext() call.

        Args:
            bitmap: Grayscale image as numpy array
            layout_mode: Page layout hint selecting the readtext parameters

        Returns:
            RecognitionOutput with line-structured text and word boxes
        """
        if self._reader is None:
            raise RuntimeError("EasyOCR reader is not loaded")

        layout_mode = LayoutMode(layout_mode)
        self.layout_mode = layout_mode
        results = self._reader.readtext(bitmap, detail=1, **LAYOUT_PARAMS[layout_mode])

        if not results:
            logger.warning(f"OCR returned no results ({layout_mode.value})")
            return RecognitionOutput.empty()

        words = []
        for bbox_points, text, conf in results:
            text = normalize_text(text)
            if not text:
                continue
            words.append(WordRegion(
                text=text,
                confidence=float(conf),
                bbox=[[int(p[0]), int(p[1])] for p in bbox_points],
            ))

        if not words:
            return RecognitionOutput.empty()

        avg_conf = sum(w.confidence for w in words) / len(words)
        return RecognitionOutput(
            text=boxes_to_text(words, self.settings.paragraph_gap_ratio),
            confidence=avg_conf,
            words=words,
        )

    def close(self) -> None:
        self._reader = None
        self.layout_mode = None


class RecognitionEngineHandle:
    """
    Owns one recognition engine.

    The engine is built on first use (or by ``initialize()``) exactly once,
    even when several threads race for it. ``recognize()`` holds a lock for
    the duration of the engine call, so at most one recognition runs at a
    time. ``shutdown()`` releases the engine; the next call rebuilds it.
    """

    def __init__(
        self,
        factory: Optional[Callable[[], RecognitionEngine]] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self._factory = factory or (lambda: EasyOCREngine(self.settings))
        self._engine: Optional[RecognitionEngine] = None
        self._init_lock = threading.Lock()
        self._call_lock = threading.Lock()

    @property
    def is_ready(self) -> bool:
        return self._engine is not None

    def initialize(self) -> RecognitionEngine:
        """Build and load the engine if needed. Thread-safe and idempotent."""
        engine = self._engine
        if engine is not None:
            return engine

        with self._init_lock:
            if self._engine is None:
                try:
                    engine = self._factory()
                    engine.load()
                except Exception as e:
                    logger.error(f"Failed to initialize recognition engine: {e}")
                    raise RecognitionFailed(f"Recognition engine failed to load: {e}") from e
                self._engine = engine
            return self._engine

    def recognize(self, bitmap: np.ndarray, layout_mode: LayoutMode) -> RecognitionOutput:
        engine = self.initialize()
        with self._call_lock:
            try:
                return engine.recognize(bitmap, layout_mode)
            except RecognitionFailed:
                raise
            except Exception as e:
                logger.warning(f"Recognition failed ({LayoutMode(layout_mode).value}): {e}")
                raise RecognitionFailed(f"Recognition failed: {e}") from e

    def shutdown(self) -> None:
        with self._init_lock, self._call_lock:
            if self._engine is not None:
                try:
                    self._engine.close()
                finally:
                    self._engine = None
                logger.info("Recognition engine released")

    def __enter__(self) -> "RecognitionEngineHandle":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()


class TextExtractor:
    """Runs the recognition passes over a label image and merges their text."""

    def __init__(
        self,
        engine: Optional[RecognitionEngineHandle] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.engine = engine or RecognitionEngineHandle(settings=self.settings)
        self.preprocessor = preprocessor or ImagePreprocessor(self.settings)

    def extract(self, image: Union[RawImage, bytes]) -> ExtractionResult:
        """
        Extract raw text from a label image.

        Primary pass: configured variant (standard by default) in BLOCK mode.
        Secondary pass: enhanced variant in SPARSE mode, contributing only
        lines the primary pass missed.

        Raises:
            ImageDecodeError: If the image cannot be decoded
            RecognitionFailed: If the engine fails to load or crashes
        """
        if isinstance(image, bytes):
            image = RawImage.from_bytes(image)

        start_time = time.perf_counter()
        metrics: Dict[str, Any] = {}

        primary_variant = PreprocessVariant(self.settings.primary_variant)
        bitmap = self.preprocessor.preprocess(image, primary_variant)
        metrics["preprocessing"] = bitmap.metadata
        if bitmap.quality.recommendation:
            logger.warning(f"Low quality image: {bitmap.quality.recommendation}")

        t0 = time.perf_counter()
        primary = self.engine.recognize(bitmap.image, LayoutMode.BLOCK)
        metrics["primary_ms"] = round((time.perf_counter() - t0) * 1000, 1)
        metrics["primary_words"] = len(primary.words)

        raw_text = primary.text
        confidence = primary.confidence
        words = primary.words

        if self.settings.secondary_pass_enabled:
            enhanced = self.preprocessor.preprocess(image, PreprocessVariant.ENHANCED)
            t1 = time.perf_counter()
            secondary = self.engine.recognize(enhanced.image, LayoutMode.SPARSE)
            metrics["secondary_ms"] = round((time.perf_counter() - t1) * 1000, 1)
            metrics["secondary_words"] = len(secondary.words)

            if not raw_text.strip():
                logger.info("Primary pass found no text, using secondary pass")
                raw_text = secondary.text
                confidence = secondary.confidence
                words = secondary.words
                metrics["secondary_only"] = True
            else:
                merged = merge_pass_text(raw_text, secondary.text)
                metrics["secondary_lines_added"] = (
                    len(merged.split("\n")) - len(raw_text.split("\n")) - 1
                    if merged != raw_text else 0
                )
                raw_text = merged

        processing_time = (time.perf_counter() - start_time) * 1000
        metrics["processing_time_ms"] = round(processing_time, 1)

        result = ExtractionResult(
            raw_text=raw_text,
            confidence=confidence,
            word_regions=words,
            metrics=metrics,
        )

        logger.info(
            f"OCR metrics: confidence={result.confidence:.2f}, "
            f"words={len(words)}, time={processing_time:.0f}ms"
        )
        return result
