"""Label verification pipeline: preprocess -> OCR -> parse -> match -> verdict."""

import time
import logging
from typing import List, Optional, Union
from dataclasses import dataclass

from ..config import Settings, get_settings
from ..exceptions import LabelVerificationError
from ..models import (
    ApplicationFields,
    BatchItemResult,
    BeverageCategory,
    FieldComparisonResult,
    FieldVerdict,
    OverallVerdict,
    PipelineResult,
)
from .extraction import FieldParser
from .ocr import RecognitionEngineHandle, TextExtractor
from .preprocessing import RawImage
from .verification import MatchingEngine, reverse_lookup

logger = logging.getLogger(__name__)

FAILING_VERDICTS = {FieldVerdict.MISMATCH, FieldVerdict.NOT_FOUND}


@dataclass
class BatchItem:
    """One label of a batch: image plus the application it should match."""
    key: str
    image: Union[RawImage, bytes]
    application: ApplicationFields
    category: Union[BeverageCategory, str]


def overall_verdict(field_results: List[FieldComparisonResult]) -> OverallVerdict:
    """AUTO_FAIL iff any field is MISMATCH or NOT_FOUND."""
    if any(r.verdict in FAILING_VERDICTS for r in field_results):
        return OverallVerdict.AUTO_FAIL
    return OverallVerdict.AUTO_PASS


def generate_summary(
    field_results: List[FieldComparisonResult],
    verdict: OverallVerdict,
) -> str:
    """Generate human-readable summary."""
    if verdict == OverallVerdict.AUTO_PASS:
        partial = [r for r in field_results if r.verdict == FieldVerdict.PARTIAL]
        if not partial:
            return "✅ All fields verified successfully. Label matches application data."
        lines = [f"⚠️ {r.field_name.label}: {r.details or 'Partial match'}" for r in partial]
        return "✅ Label matches application data with minor differences:\n" + "\n".join(lines)

    issues = []
    for r in field_results:
        if r.verdict == FieldVerdict.NOT_FOUND:
            issues.append(f"❌ {r.field_name.label}: not found on label")
        elif r.verdict == FieldVerdict.MISMATCH:
            issues.append(f"❌ {r.field_name.label}: {r.details or 'does not match'}")
        elif r.verdict == FieldVerdict.PARTIAL:
            issues.append(f"⚠️ {r.field_name.label}: {r.details or 'Partial match'}")

    return "❌ Verification failed. Issues found:\n" + "\n".join(issues)


class LabelVerificationPipeline:
    """
    Verifies one label image against its application data.

    Holds no per-call state. The recognition engine handle is shared by
    every verification run through this pipeline.
    """

    def __init__(
        self,
        extractor: Optional[TextExtractor] = None,
        parser: Optional[FieldParser] = None,
        matcher: Optional[MatchingEngine] = None,
        engine: Optional[RecognitionEngineHandle] = None,
        settings: Optional[Settings] = None,
    ):
        self.settings = settings or get_settings()
        self.extractor = extractor or TextExtractor(engine=engine, settings=self.settings)
        self.parser = parser or FieldParser()
        self.matcher = matcher or MatchingEngine(self.settings)

    @property
    def engine(self) -> RecognitionEngineHandle:
        return self.extractor.engine

    def initialize(self) -> None:
        """Warm up the recognition engine."""
        self.engine.initialize()

    def shutdown(self) -> None:
        self.engine.shutdown()

    def __enter__(self) -> "LabelVerificationPipeline":
        self.initialize()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.shutdown()

    def verify(
        self,
        image: Union[RawImage, bytes],
        application: ApplicationFields,
        category: Union[BeverageCategory, str],
    ) -> PipelineResult:
        """
        Verify a label image against application data.

        Args:
            image: JPEG/PNG label image
            application: Field values from the application
            category: Beverage category (decides ABV tolerance and wine fields)

        Returns:
            PipelineResult with per-field results and overall verdict

        Raises:
            ImageDecodeError: If the image cannot be decoded
            RecognitionFailed: If the recognition engine fails
        """
        start_time = time.perf_counter()
        category = BeverageCategory(category)

        missing = application.missing_for(category)
        if missing:
            logger.warning(
                f"Application is missing fields required for {category.value}: "
                f"{[f.value for f in missing]}"
            )

        extraction = self.extractor.extract(image)

        t0 = time.perf_counter()
        parsed = self.parser.parse(extraction.raw_text)
        parse_ms = (time.perf_counter() - t0) * 1000

        if self.settings.reverse_lookup_enabled:
            parsed, recovered = reverse_lookup(parsed, application, extraction.raw_text)
            if recovered:
                logger.info(f"Recovered {len(recovered)} field(s) from raw text: {[f.value for f in recovered]}")

        field_results = self.matcher.compare(parsed, application, category)
        verdict = overall_verdict(field_results)
        summary = generate_summary(field_results, verdict)

        processing_time_ms = int((time.perf_counter() - start_time) * 1000)
        exceeded = processing_time_ms > self.settings.processing_budget_ms
        if exceeded:
            logger.warning(
                f"Verification took {processing_time_ms}ms, over the "
                f"{self.settings.processing_budget_ms}ms budget"
            )

        logger.info(
            f"Verification {verdict.value}: {len(field_results)} fields, "
            f"ocr_conf={extraction.confidence:.2f}, parse={parse_ms:.0f}ms, "
            f"total={processing_time_ms}ms"
        )

        return PipelineResult(
            raw_text=extraction.raw_text,
            ocr_confidence=min(1.0, max(0.0, extraction.confidence)),
            parsed_fields=parsed,
            field_results=field_results,
            overall_verdict=verdict,
            summary=summary,
            processing_time_ms=processing_time_ms,
            exceeded_budget=exceeded,
        )

    def verify_batch(self, items: List[BatchItem]) -> List[BatchItemResult]:
        """
        Verify items sequentially with the shared engine.

        A decode or recognition failure is recorded on its item and does
        not stop the rest of the batch.
        """
        results = []
        start_time = time.perf_counter()

        for item in items:
            try:
                result = self.verify(item.image, item.application, item.category)
            except LabelVerificationError as e:
                logger.warning(f"Batch item {item.key} failed at {e.stage}: {e}")
                results.append(BatchItemResult(
                    key=item.key,
                    success=False,
                    error=str(e),
                    stage=e.stage,
                ))
                continue

            results.append(BatchItemResult(key=item.key, success=True, result=result))

        total_ms = (time.perf_counter() - start_time) * 1000
        succeeded = sum(1 for r in results if r.success)
        logger.info(f"Batch complete: {succeeded}/{len(results)} succeeded in {total_ms:.0f}ms")
        return results
