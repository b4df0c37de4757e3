"""End-to-end tests for the verification pipeline with a scripted engine."""

import pytest

from label_verifier.config import Settings
from label_verifier.exceptions import ImageDecodeError
from label_verifier.models import (
    BeverageCategory,
    FieldComparisonResult,
    FieldVerdict,
    LabelField,
    OverallVerdict,
)
from label_verifier.services.ocr import LayoutMode, RecognitionEngineHandle
from label_verifier.services.pipeline import (
    BatchItem,
    LabelVerificationPipeline,
    generate_summary,
    overall_verdict,
)


def build_pipeline(engine, settings=None):
    settings = settings or Settings()
    handle = RecognitionEngineHandle(factory=lambda: engine, settings=settings)
    return LabelVerificationPipeline(engine=handle, settings=settings)


def field_result(field, verdict, details=None):
    return FieldComparisonResult(
        field_name=field,
        expected="x",
        extracted=None if verdict == FieldVerdict.NOT_FOUND else "x",
        verdict=verdict,
        confidence=0.0 if verdict == FieldVerdict.NOT_FOUND else 0.9,
        details=details,
    )


class TestOverallVerdict:
    """Test verdict aggregation and summaries."""

    def test_all_match_passes(self):
        """No failing field means AUTO_PASS."""
        results = [field_result(LabelField.BRAND_NAME, FieldVerdict.MATCH)]
        assert overall_verdict(results) == OverallVerdict.AUTO_PASS

    def test_partial_passes(self):
        """PARTIAL alone does not fail a label."""
        results = [
            field_result(LabelField.BRAND_NAME, FieldVerdict.MATCH),
            field_result(LabelField.CLASS_TYPE, FieldVerdict.PARTIAL),
        ]
        assert overall_verdict(results) == OverallVerdict.AUTO_PASS

    @pytest.mark.parametrize("verdict", [FieldVerdict.MISMATCH, FieldVerdict.NOT_FOUND])
    def test_failing_field_fails(self, verdict):
        """Any MISMATCH or NOT_FOUND fails the label."""
        results = [
            field_result(LabelField.BRAND_NAME, FieldVerdict.MATCH),
            field_result(LabelField.NET_CONTENTS, verdict),
        ]
        assert overall_verdict(results) == OverallVerdict.AUTO_FAIL

    def test_empty_results_pass(self):
        """Nothing to compare is a pass."""
        assert overall_verdict([]) == OverallVerdict.AUTO_PASS

    def test_failure_summary_lists_issues(self):
        """Failed summaries name each failing field."""
        results = [
            field_result(LabelField.NET_CONTENTS, FieldVerdict.MISMATCH, "Volume difference: 50.0 mL"),
            field_result(LabelField.VINTAGE_DATE, FieldVerdict.NOT_FOUND),
        ]
        summary = generate_summary(results, OverallVerdict.AUTO_FAIL)
        assert summary.startswith("❌ Verification failed")
        assert "Net Contents: Volume difference: 50.0 mL" in summary
        assert "Vintage Date: not found on label" in summary

    def test_partial_summary(self):
        """Passing labels with partial fields mention the differences."""
        results = [field_result(LabelField.BRAND_NAME, FieldVerdict.PARTIAL, "Partial match (94% similar)")]
        summary = generate_summary(results, OverallVerdict.AUTO_PASS)
        assert "minor differences" in summary
        assert "Brand Name: Partial match (94% similar)" in summary


class TestVerify:
    """Test single-label verification."""

    def test_bourbon_passes(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """A label matching its application passes."""
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: bourbon_text}))
        result = pipeline.verify(png_bytes, bourbon_application, BeverageCategory.SPIRITS)

        assert result.overall_verdict == OverallVerdict.AUTO_PASS
        assert all(r.verdict == FieldVerdict.MATCH for r in result.field_results)
        assert result.summary.startswith("✅ All fields verified")
        assert result.raw_text == bourbon_text
        assert result.ocr_confidence == pytest.approx(0.9)
        assert result.exceeded_budget is False

    def test_bourbon_passes_without_reverse_lookup(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """Every field, the one-line warning included, comes from the parser."""
        settings = Settings(reverse_lookup_enabled=False)
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: bourbon_text}), settings)
        result = pipeline.verify(png_bytes, bourbon_application, BeverageCategory.SPIRITS)

        assert result.parsed_fields.government_warning == bourbon_application.government_warning
        assert result.result_for(LabelField.GOVERNMENT_WARNING).verdict == FieldVerdict.MATCH
        assert result.overall_verdict == OverallVerdict.AUTO_PASS

    def test_title_case_warning_fails(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """A warning printed as "Government Warning" fails the caps rule."""
        text = bourbon_text.replace("GOVERNMENT WARNING", "Government Warning")
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: text}))
        result = pipeline.verify(png_bytes, bourbon_application, BeverageCategory.SPIRITS)

        warning = result.result_for(LabelField.GOVERNMENT_WARNING)
        assert warning.verdict == FieldVerdict.MISMATCH
        assert "not in all caps" in warning.details
        assert warning.extracted.startswith("Government Warning:")
        assert result.overall_verdict == OverallVerdict.AUTO_FAIL

    def test_wrong_abv_fails(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """A 5 point ABV gap fails the spirits label."""
        text = bourbon_text.replace("45% Alc./Vol. (90 Proof)", "40% Alc./Vol. (80 Proof)")
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: text}))
        result = pipeline.verify(png_bytes, bourbon_application, BeverageCategory.SPIRITS)

        assert result.overall_verdict == OverallVerdict.AUTO_FAIL
        assert result.result_for(LabelField.ALCOHOL_CONTENT).verdict == FieldVerdict.MISMATCH
        assert "Alcohol Content" in result.summary

    def test_wine_passes(self, make_engine, png_bytes, wine_text, wine_application):
        """Wine labels are checked for appellation, varietal and vintage."""
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: wine_text}))
        result = pipeline.verify(png_bytes, wine_application, BeverageCategory.WINE)

        assert result.overall_verdict == OverallVerdict.AUTO_PASS
        assert result.result_for(LabelField.VINTAGE_DATE).verdict == FieldVerdict.MATCH
        assert result.result_for(LabelField.APPELLATION).verdict == FieldVerdict.MATCH
        assert result.result_for(LabelField.VARIETAL).verdict == FieldVerdict.MATCH

    def test_missing_vintage_fails(self, make_engine, png_bytes, wine_text, wine_application):
        """A vintage on the application but not on the label fails."""
        text = wine_text.replace("2021\n", "")
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: text}))
        result = pipeline.verify(png_bytes, wine_application, BeverageCategory.WINE)

        vintage = result.result_for(LabelField.VINTAGE_DATE)
        assert vintage.verdict == FieldVerdict.NOT_FOUND
        assert vintage.details == "Vintage Date not found on label"
        assert result.overall_verdict == OverallVerdict.AUTO_FAIL

    def test_malt_passes(self, make_engine, png_bytes, malt_text, malt_application):
        """Malt beverage label with fluid ounces."""
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: malt_text}))
        result = pipeline.verify(png_bytes, malt_application, BeverageCategory.MALT_BEVERAGE)
        assert result.overall_verdict == OverallVerdict.AUTO_PASS

    def test_category_given_as_string(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """Categories may be passed by value."""
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: bourbon_text}))
        result = pipeline.verify(png_bytes, bourbon_application, "SPIRITS")
        assert result.overall_verdict == OverallVerdict.AUTO_PASS

    def test_partial_brand_still_passes(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """A near-miss brand is PARTIAL and the label passes with a note."""
        application = bourbon_application.model_copy(update={"brand_name": "OLD TOM DISTILERY"})
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: bourbon_text}))
        result = pipeline.verify(png_bytes, application, BeverageCategory.SPIRITS)

        assert result.result_for(LabelField.BRAND_NAME).verdict == FieldVerdict.PARTIAL
        assert result.overall_verdict == OverallVerdict.AUTO_PASS
        assert "minor differences" in result.summary

    def test_reverse_lookup_recovers_country(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """A country the parser cannot phrase-match is found by value."""
        text = bourbon_text + "\n\nDistilled in USA"
        application = bourbon_application.model_copy(update={"country_of_origin": "USA"})
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: text}))
        result = pipeline.verify(png_bytes, application, BeverageCategory.SPIRITS)

        assert result.parsed_fields.country_of_origin == "USA"
        assert result.result_for(LabelField.COUNTRY_OF_ORIGIN).verdict == FieldVerdict.MATCH

    def test_reverse_lookup_disabled(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """Without reverse lookup, only parsed fields count."""
        text = bourbon_text + "\n\nDistilled in USA"
        application = bourbon_application.model_copy(update={"country_of_origin": "USA"})
        settings = Settings(reverse_lookup_enabled=False)
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: text}), settings)
        result = pipeline.verify(png_bytes, application, BeverageCategory.SPIRITS)

        assert result.result_for(LabelField.COUNTRY_OF_ORIGIN).verdict == FieldVerdict.NOT_FOUND
        assert result.overall_verdict == OverallVerdict.AUTO_FAIL

    def test_blank_label_fails(self, make_engine, png_bytes, bourbon_application):
        """No recognized text means every field is NOT_FOUND."""
        pipeline = build_pipeline(make_engine())
        result = pipeline.verify(png_bytes, bourbon_application, BeverageCategory.SPIRITS)

        assert result.raw_text == ""
        assert result.ocr_confidence == 0.0
        assert all(r.verdict == FieldVerdict.NOT_FOUND for r in result.field_results)
        assert result.overall_verdict == OverallVerdict.AUTO_FAIL

    def test_decode_error_raised(self, make_engine, bourbon_application):
        """Undecodable images raise instead of returning a verdict."""
        pipeline = build_pipeline(make_engine())
        with pytest.raises(ImageDecodeError):
            pipeline.verify(b"\x89PNG\r\n\x1a\ngarbage", bourbon_application, BeverageCategory.SPIRITS)

    def test_budget_exceeded_flagged(self, make_engine, png_bytes, bourbon_text, bourbon_application):
        """Slow runs still return a result, flagged as over budget."""
        settings = Settings(processing_budget_ms=0)
        engine = make_engine(texts={LayoutMode.BLOCK: bourbon_text}, delay=0.01)
        pipeline = build_pipeline(engine, settings)
        result = pipeline.verify(png_bytes, bourbon_application, BeverageCategory.SPIRITS)

        assert result.exceeded_budget is True
        assert result.processing_time_ms > 0
        assert result.overall_verdict == OverallVerdict.AUTO_PASS

    def test_repeatable(self, make_engine, png_bytes, wine_text, wine_application):
        """The same inputs give the same field results."""
        pipeline = build_pipeline(make_engine(texts={LayoutMode.BLOCK: wine_text}))
        a = pipeline.verify(png_bytes, wine_application, BeverageCategory.WINE)
        b = pipeline.verify(png_bytes, wine_application, BeverageCategory.WINE)
        assert a.field_results == b.field_results
        assert a.parsed_fields == b.parsed_fields


class TestLifecycle:
    """Test engine warm-up and teardown through the pipeline."""

    def test_context_manager(self, fake_engine, engine_handle, settings):
        """Entering warms the engine; exiting releases it."""
        with LabelVerificationPipeline(engine=engine_handle, settings=settings) as pipeline:
            assert pipeline.engine.is_ready
            assert fake_engine.loaded == 1
        assert fake_engine.closed == 1
        assert not engine_handle.is_ready


class TestVerifyBatch:
    """Test sequential batch verification."""

    def test_failures_isolated(self, fake_engine, engine_handle, settings, png_bytes, bourbon_application):
        """A bad image fails its item only."""
        pipeline = LabelVerificationPipeline(engine=engine_handle, settings=settings)
        items = [
            BatchItem("good", png_bytes, bourbon_application, BeverageCategory.SPIRITS),
            BatchItem("bad", b"not an image", bourbon_application, BeverageCategory.SPIRITS),
            BatchItem("good-again", png_bytes, bourbon_application, "SPIRITS"),
        ]
        results = pipeline.verify_batch(items)

        assert [r.key for r in results] == ["good", "bad", "good-again"]
        assert results[0].success and results[2].success
        assert results[0].result.overall_verdict == OverallVerdict.AUTO_PASS
        assert results[1].success is False
        assert results[1].stage == "preprocess"
        assert results[1].result is None

    def test_recognition_failure_recorded(self, make_engine, png_bytes, bourbon_application):
        """Engine crashes are recorded with their stage."""
        pipeline = build_pipeline(make_engine(error=RuntimeError("model exploded")))
        results = pipeline.verify_batch([
            BatchItem("a", png_bytes, bourbon_application, BeverageCategory.SPIRITS),
            BatchItem("b", png_bytes, bourbon_application, BeverageCategory.SPIRITS),
        ])

        assert all(not r.success for r in results)
        assert all(r.stage == "recognition" for r in results)
        assert "model exploded" in results[0].error

    def test_empty_batch(self, engine_handle, settings):
        """No items, no results."""
        pipeline = LabelVerificationPipeline(engine=engine_handle, settings=settings)
        assert pipeline.verify_batch([]) == []
