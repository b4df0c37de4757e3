"""Field matching: compares parsed label fields against application data."""

import re
from typing import Optional, List, Dict, Tuple
from dataclasses import dataclass
from enum import Enum
import logging
import unicodedata

from rapidfuzz.distance import Levenshtein

from ..config import Settings, get_settings
from ..models import (
    ApplicationFields,
    BeverageCategory,
    FieldComparisonResult,
    FieldVerdict,
    LabelField,
    ParsedLabelFields,
)
from .extraction import GOVERNMENT_WARNING_PREFIX

logger = logging.getLogger(__name__)

ML_PER_FL_OZ = 29.5735

WARNING_PREFIX_PATTERN = re.compile(r"GOVERNMENT\s+WARNING", re.IGNORECASE)
VOLUME_PATTERN = re.compile(
    r"(\d+(?:\.\d+)?)\s*(ml|cl|fl\.?\s*[o0]z\.?|[o0]z\.?|l(?:iters?|itres?)?)(?![a-z])",
    re.IGNORECASE,
)
NUMBER_PATTERN = re.compile(r"\d+(?:\.\d+)?")
PERCENT_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*%")
PROOF_PATTERN = re.compile(r"(\d+(?:\.\d+)?)\s*proof", re.IGNORECASE)


class MatcherKind(str, Enum):
    """Comparison strategy for a field."""
    EXACT = "exact"
    FUZZY = "fuzzy"
    NUMERIC = "numeric"
    STRICT = "strict"


class Measure(str, Enum):
    """What a numeric field measures."""
    VOLUME = "volume"  # compared in mL
    PERCENT = "percent"  # alcohol by volume, percentage points


@dataclass(frozen=True)
class MatchRule:
    matcher: MatcherKind
    measure: Optional[Measure] = None
    category_tolerance: bool = False  # tolerance comes from the beverage category
    wine_only: bool = False


MATCH_RULES: Dict[LabelField, MatchRule] = {
    LabelField.BRAND_NAME: MatchRule(MatcherKind.FUZZY),
    LabelField.CLASS_TYPE: MatchRule(MatcherKind.FUZZY),
    LabelField.ALCOHOL_CONTENT: MatchRule(MatcherKind.NUMERIC, Measure.PERCENT, category_tolerance=True),
    LabelField.NET_CONTENTS: MatchRule(MatcherKind.NUMERIC, Measure.VOLUME),
    LabelField.NAME_ADDRESS: MatchRule(MatcherKind.FUZZY),
    LabelField.GOVERNMENT_WARNING: MatchRule(MatcherKind.EXACT),
    LabelField.COUNTRY_OF_ORIGIN: MatchRule(MatcherKind.FUZZY),
    LabelField.APPELLATION: MatchRule(MatcherKind.FUZZY, wine_only=True),
    LabelField.VARIETAL: MatchRule(MatcherKind.FUZZY, wine_only=True),
    LabelField.VINTAGE_DATE: MatchRule(MatcherKind.STRICT),
}

ABV_TOLERANCE_SETTINGS = {
    BeverageCategory.SPIRITS: "spirits_abv_tolerance",
    BeverageCategory.WINE: "wine_abv_tolerance",
    BeverageCategory.MALT_BEVERAGE: "malt_abv_tolerance",
}


def levenshtein_distance(a: str, b: str) -> int:
    """Edit distance (insertions, deletions, substitutions)."""
    return Levenshtein.distance(a, b)


def similarity(a: str, b: str) -> float:
    """1 - distance / max(len a, len b). Two empty strings are identical."""
    return float(Levenshtein.normalized_similarity(a, b))


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _fuzzy_normalize(text: str) -> str:
    return _collapse(unicodedata.normalize("NFKC", text)).lower()


def _clamp(value: float) -> float:
    return max(0.0, min(1.0, value))


def _is_missing(extracted: Optional[str]) -> bool:
    return extracted is None or not extracted.strip()


def _not_found(
    field: LabelField, expected: str, details: str = "Field not found in label"
) -> FieldComparisonResult:
    return FieldComparisonResult(
        field_name=field,
        expected=expected,
        extracted=None,
        verdict=FieldVerdict.NOT_FOUND,
        confidence=0.0,
        details=details,
    )


def _result(
    field: LabelField,
    expected: str,
    extracted: str,
    verdict: FieldVerdict,
    confidence: float,
    details: Optional[str] = None,
) -> FieldComparisonResult:
    return FieldComparisonResult(
        field_name=field,
        expected=expected,
        extracted=extracted,
        verdict=verdict,
        confidence=_clamp(confidence),
        details=details,
    )


def exact_match(
    field: LabelField,
    expected: str,
    extracted: Optional[str],
    match_threshold: float = 0.98,
    partial_threshold: float = 0.90,
    near_match: bool = True,
) -> FieldComparisonResult:
    """
    Exact comparison for fixed legal text.

    The "GOVERNMENT WARNING" prefix is located case-insensitively and must
    appear in upper case. Otherwise-identical text with a lower-case prefix
    is a MISMATCH at 0.8. When the text differs, similarity decides:
    >= match_threshold with correct caps is MATCH (if near_match), >=
    partial_threshold with correct caps is PARTIAL, anything else MISMATCH.
    """
    if _is_missing(extracted):
        return _not_found(field, expected)

    norm_expected = _collapse(expected)
    norm_extracted = _collapse(extracted)

    prefix = WARNING_PREFIX_PATTERN.search(norm_extracted)
    is_all_caps = prefix is not None and prefix.group(0) == GOVERNMENT_WARNING_PREFIX

    # Compare the body with the prefix case taken out of the picture
    comparable_expected = WARNING_PREFIX_PATTERN.sub(GOVERNMENT_WARNING_PREFIX, norm_expected, count=1)
    comparable_extracted = WARNING_PREFIX_PATTERN.sub(GOVERNMENT_WARNING_PREFIX, norm_extracted, count=1)

    if comparable_expected == comparable_extracted:
        if not is_all_caps:
            return _result(
                field, expected, extracted, FieldVerdict.MISMATCH, 0.8,
                '"GOVERNMENT WARNING" is not in all caps',
            )
        return _result(field, expected, extracted, FieldVerdict.MATCH, 1.0)

    score = similarity(norm_expected.lower(), norm_extracted.lower())

    if near_match and score >= match_threshold and is_all_caps:
        return _result(field, expected, extracted, FieldVerdict.MATCH, score)

    if score >= partial_threshold and is_all_caps:
        return _result(
            field, expected, extracted, FieldVerdict.PARTIAL, score,
            "Minor OCR differences detected",
        )

    details = []
    if not is_all_caps:
        details.append('"GOVERNMENT WARNING" is not in all caps')
    if score < 1:
        details.append("Warning text does not match exactly")
    return _result(
        field, expected, extracted, FieldVerdict.MISMATCH, score,
        "; ".join(details) or None,
    )


def fuzzy_match(
    field: LabelField,
    expected: str,
    extracted: Optional[str],
    match_threshold: float = 0.95,
    partial_threshold: float = 0.75,
) -> FieldComparisonResult:
    """Case- and whitespace-insensitive comparison scored by edit distance."""
    if _is_missing(extracted):
        return _not_found(field, expected)

    norm_expected = _fuzzy_normalize(expected)
    norm_extracted = _fuzzy_normalize(extracted)

    if norm_expected == norm_extracted:
        return _result(field, expected, extracted, FieldVerdict.MATCH, 1.0)

    score = similarity(norm_expected, norm_extracted)

    if score >= match_threshold:
        return _result(field, expected, extracted, FieldVerdict.MATCH, score)

    if score >= partial_threshold:
        return _result(
            field, expected, extracted, FieldVerdict.PARTIAL, score,
            f"Partial match ({round(score * 100)}% similar)",
        )

    return _result(
        field, expected, extracted, FieldVerdict.MISMATCH, score,
        f"Low similarity ({round(score * 100)}%)",
    )


def parse_volume_ml(text: str) -> Optional[float]:
    """
    Parse a net contents statement into milliliters.

    Supports mL, cL, L/liter(s), FL OZ and OZ (0Z accepted). A bare number
    is taken as mL.
    """
    match = VOLUME_PATTERN.search(text)
    if match:
        value = float(match.group(1))
        unit = re.sub(r"[.\s]", "", match.group(2).lower()).replace("0", "o")
        if unit == "ml":
            return value
        if unit == "cl":
            return value * 10
        if "oz" in unit:
            return value * ML_PER_FL_OZ
        return value * 1000

    number = NUMBER_PATTERN.search(text)
    return float(number.group(0)) if number else None


def parse_percent(text: str) -> Optional[float]:
    """
    Parse an alcohol statement into percent ABV.

    Prefers an explicit "N%", then "N Proof" (halved), then the first number.
    """
    match = PERCENT_PATTERN.search(text)
    if match:
        return float(match.group(1))

    match = PROOF_PATTERN.search(text)
    if match:
        return float(match.group(1)) / 2

    number = NUMBER_PATTERN.search(text)
    return float(number.group(0)) if number else None


def numeric_match(
    field: LabelField,
    expected: str,
    extracted: Optional[str],
    tolerance: float = 0.0,
    measure: Optional[Measure] = None,
) -> FieldComparisonResult:
    """
    Numeric comparison of volumes or alcohol percentages.

    Unparseable values fall back to fuzzy matching.
    """
    if _is_missing(extracted):
        return _not_found(field, expected)

    if measure is None:
        measure = Measure.VOLUME if field == LabelField.NET_CONTENTS else Measure.PERCENT
    parse = parse_volume_ml if measure == Measure.VOLUME else parse_percent

    expected_num = parse(expected)
    extracted_num = parse(extracted)
    if expected_num is None or extracted_num is None:
        logger.debug(f"{field.value}: non-numeric value, falling back to fuzzy match")
        return fuzzy_match(field, expected, extracted)

    diff = round(abs(expected_num - extracted_num), 6)

    if measure == Measure.VOLUME:
        if diff < 1 or diff <= tolerance:
            return _result(field, expected, extracted, FieldVerdict.MATCH, 1.0)

        confidence = _clamp(1 - diff / expected_num) if expected_num > 0 else 0.0
        verdict = FieldVerdict.MATCH if confidence >= 0.95 else FieldVerdict.MISMATCH
        return _result(
            field, expected, extracted, verdict, confidence,
            f"Volume difference: {diff:.1f} mL",
        )

    if diff <= tolerance:
        confidence = 1 - diff / (tolerance * 3) if tolerance > 0 else 1.0
        return _result(field, expected, extracted, FieldVerdict.MATCH, confidence)

    confidence = 1 - diff / expected_num if expected_num > 0 else 0.0
    return _result(
        field, expected, extracted, FieldVerdict.MISMATCH, confidence,
        f"Alcohol content differs by {diff:.1f} percentage points (tolerance: ±{tolerance})",
    )


def strict_match(
    field: LabelField,
    expected: str,
    extracted: Optional[str],
) -> FieldComparisonResult:
    """Trimmed string equality; a vintage year is either right or wrong."""
    if _is_missing(extracted):
        return _not_found(field, expected, f"{field.label} not found on label")

    if expected.strip() == extracted.strip():
        return _result(field, expected, extracted, FieldVerdict.MATCH, 1.0)

    return _result(
        field, expected, extracted, FieldVerdict.MISMATCH, 0.0,
        f"Expected {field.label.lower()} {expected.strip()}, found {extracted.strip()}",
    )


def _occurrence_pattern(value: str) -> Optional[re.Pattern]:
    words = [re.escape(w) for w in _fuzzy_normalize(value).split()]
    if not words:
        return None
    return re.compile(r"(?<!\w)" + r"\s+".join(words) + r"(?!\w)", re.IGNORECASE)


def reverse_lookup(
    parsed: ParsedLabelFields,
    expected: ApplicationFields,
    raw_text: str,
) -> Tuple[ParsedLabelFields, List[LabelField]]:
    """
    Recover unresolved fields whose expected value is plainly in the text.

    For each field the parser left empty, a word-bounded, case- and
    whitespace-insensitive occurrence of the expected value in the raw
    text is substituted as the extracted value. The substituted text is the
    label's own wording with its casing, so case-sensitive checks such as
    the warning caps rule still see what was printed.

    Returns:
        Tuple of (enriched fields, fields that were recovered)
    """
    haystack = _collapse(unicodedata.normalize("NFKC", raw_text or ""))
    updates: Dict[str, str] = {}
    recovered: List[LabelField] = []

    for field in LabelField:
        if not _is_missing(parsed.get(field)):
            continue
        value = expected.get(field)
        if _is_missing(value):
            continue
        pattern = _occurrence_pattern(value)
        match = pattern.search(haystack) if pattern else None
        if match:
            updates[field.value] = match.group(0)
            recovered.append(field)

    if recovered:
        logger.debug(f"Reverse lookup recovered: {[f.value for f in recovered]}")
        return parsed.model_copy(update=updates), recovered
    return parsed, recovered


class MatchingEngine:
    """Runs each field through the matcher its semantics call for."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def abv_tolerance(self, category: BeverageCategory) -> float:
        return getattr(self.settings, ABV_TOLERANCE_SETTINGS[BeverageCategory(category)])

    def compare(
        self,
        extracted: ParsedLabelFields,
        expected: ApplicationFields,
        category: BeverageCategory,
    ) -> List[FieldComparisonResult]:
        """
        Compare every applicable field.

        Fields with no expected value are skipped, as are wine-only fields
        for other categories.

        Returns:
            Field results in MATCH_RULES order
        """
        category = BeverageCategory(category)
        results = []

        for field, rule in MATCH_RULES.items():
            expected_value = expected.get(field)
            if _is_missing(expected_value):
                continue
            if rule.wine_only and category != BeverageCategory.WINE:
                continue

            result = self._apply(rule, field, expected_value, extracted.get(field), category)
            logger.debug(
                f"{field.value}: {result.verdict.value} ({result.confidence:.2f})"
                + (f" - {result.details}" if result.details else "")
            )
            results.append(result)

        return results

    def _apply(
        self,
        rule: MatchRule,
        field: LabelField,
        expected: str,
        extracted: Optional[str],
        category: BeverageCategory,
    ) -> FieldComparisonResult:
        s = self.settings
        if rule.matcher == MatcherKind.EXACT:
            return exact_match(
                field, expected, extracted,
                match_threshold=s.warning_match_threshold,
                partial_threshold=s.warning_partial_threshold,
                near_match=s.warning_near_match_enabled,
            )
        if rule.matcher == MatcherKind.NUMERIC:
            tolerance = self.abv_tolerance(category) if rule.category_tolerance else 0.0
            return numeric_match(field, expected, extracted, tolerance=tolerance, measure=rule.measure)
        if rule.matcher == MatcherKind.STRICT:
            return strict_match(field, expected, extracted)
        return fuzzy_match(
            field, expected, extracted,
            match_threshold=s.fuzzy_match_threshold,
            partial_threshold=s.fuzzy_partial_threshold,
        )
