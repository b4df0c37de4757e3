"""Pydantic schemas for verification inputs and results."""

from enum import Enum
from pydantic import BaseModel, Field, model_validator
from typing import Optional, List


class BeverageCategory(str, Enum):
    """Beverage category; decides required fields and ABV tolerance."""
    SPIRITS = "SPIRITS"
    WINE = "WINE"
    MALT_BEVERAGE = "MALT_BEVERAGE"


class FieldVerdict(str, Enum):
    """Outcome of comparing a single field."""
    MATCH = "MATCH"
    PARTIAL = "PARTIAL"
    MISMATCH = "MISMATCH"
    NOT_FOUND = "NOT_FOUND"


class OverallVerdict(str, Enum):
    """Aggregate outcome of one verification."""
    AUTO_PASS = "AUTO_PASS"
    AUTO_FAIL = "AUTO_FAIL"


class LabelField(str, Enum):
    """Identifier of a label field. Values are the attribute names on the field records."""
    BRAND_NAME = "brand_name"
    CLASS_TYPE = "class_type"
    ALCOHOL_CONTENT = "alcohol_content"
    NET_CONTENTS = "net_contents"
    NAME_ADDRESS = "name_address"
    GOVERNMENT_WARNING = "government_warning"
    COUNTRY_OF_ORIGIN = "country_of_origin"
    APPELLATION = "appellation"
    VARIETAL = "varietal"
    VINTAGE_DATE = "vintage_date"

    @property
    def label(self) -> str:
        """Human-readable field name."""
        return FIELD_LABELS[self]


FIELD_LABELS = {
    LabelField.BRAND_NAME: "Brand Name",
    LabelField.CLASS_TYPE: "Class/Type Designation",
    LabelField.ALCOHOL_CONTENT: "Alcohol Content",
    LabelField.NET_CONTENTS: "Net Contents",
    LabelField.NAME_ADDRESS: "Name & Address",
    LabelField.GOVERNMENT_WARNING: "Government Warning",
    LabelField.COUNTRY_OF_ORIGIN: "Country of Origin",
    LabelField.APPELLATION: "Appellation of Origin",
    LabelField.VARIETAL: "Grape Varietal(s)",
    LabelField.VINTAGE_DATE: "Vintage Date",
}

# Fields the applicant must supply, per category
REQUIRED_FIELDS = {
    BeverageCategory.SPIRITS: [
        LabelField.BRAND_NAME, LabelField.CLASS_TYPE, LabelField.ALCOHOL_CONTENT,
        LabelField.NET_CONTENTS, LabelField.NAME_ADDRESS, LabelField.GOVERNMENT_WARNING,
    ],
    BeverageCategory.WINE: [
        LabelField.BRAND_NAME, LabelField.CLASS_TYPE, LabelField.NET_CONTENTS,
        LabelField.NAME_ADDRESS, LabelField.GOVERNMENT_WARNING,
    ],
    BeverageCategory.MALT_BEVERAGE: [
        LabelField.BRAND_NAME, LabelField.CLASS_TYPE, LabelField.NET_CONTENTS,
        LabelField.NAME_ADDRESS, LabelField.GOVERNMENT_WARNING,
    ],
}


class ParsedLabelFields(BaseModel):
    """Fields recovered from recognized label text. None means not found."""
    brand_name: Optional[str] = None
    class_type: Optional[str] = None
    alcohol_content: Optional[str] = None
    net_contents: Optional[str] = None
    name_address: Optional[str] = None
    government_warning: Optional[str] = None
    country_of_origin: Optional[str] = None
    appellation: Optional[str] = None
    varietal: Optional[str] = None
    vintage_date: Optional[str] = None

    class Config:
        frozen = True

    def get(self, field: LabelField) -> Optional[str]:
        return getattr(self, field.value)


class ApplicationFields(BaseModel):
    """Field values as submitted on the application."""
    brand_name: str = Field(..., min_length=1, description="Expected brand name")
    class_type: str = Field(..., min_length=1, description="Expected class/type (e.g., Kentucky Straight Bourbon Whiskey)")
    alcohol_content: Optional[str] = Field(None, description="Expected alcohol statement (e.g., 45% Alc./Vol.)")
    net_contents: str = Field(..., min_length=1, description="Expected net contents (e.g., 750 mL)")
    name_address: str = Field(..., min_length=1, description="Expected bottler/producer name and address")
    government_warning: str = Field(..., min_length=1, description="Expected government warning statement")
    country_of_origin: Optional[str] = None
    appellation: Optional[str] = None
    varietal: Optional[str] = None
    vintage_date: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "brand_name": "OLD TOM DISTILLERY",
                "class_type": "Kentucky Straight Bourbon Whiskey",
                "alcohol_content": "45% Alc./Vol. (90 Proof)",
                "net_contents": "750 mL",
                "name_address": "Old Tom Distillery, 1234 Barrel Lane, Louisville, KY 40202",
                "government_warning": "GOVERNMENT WARNING: (1) According to the Surgeon General, ...",
            }
        }

    def get(self, field: LabelField) -> Optional[str]:
        return getattr(self, field.value)

    def missing_for(self, category: BeverageCategory) -> List[LabelField]:
        """Fields the category requires that were left empty."""
        return [f for f in REQUIRED_FIELDS[category] if not (self.get(f) or "").strip()]


class FieldComparisonResult(BaseModel):
    """Result of comparing one extracted field against its expected value."""
    field_name: LabelField
    expected: str
    extracted: Optional[str] = None
    verdict: FieldVerdict
    confidence: float = Field(..., ge=0.0, le=1.0)
    details: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "field_name": "brand_name",
                "expected": "Old Tom Distillery",
                "extracted": "OLD TOM DISTILLERY",
                "verdict": "MATCH",
                "confidence": 1.0,
                "details": None,
            }
        }

    @model_validator(mode="after")
    def _not_found_iff_missing(self) -> "FieldComparisonResult":
        missing = not (self.extracted or "").strip()
        if missing != (self.verdict == FieldVerdict.NOT_FOUND):
            raise ValueError("verdict must be NOT_FOUND exactly when the extracted value is missing")
        return self


class PipelineResult(BaseModel):
    """Outcome of one label verification."""
    raw_text: str
    ocr_confidence: float = Field(..., ge=0.0, le=1.0)
    parsed_fields: ParsedLabelFields
    field_results: List[FieldComparisonResult]
    overall_verdict: OverallVerdict
    summary: str
    processing_time_ms: int
    exceeded_budget: bool = False

    def result_for(self, field: LabelField) -> Optional[FieldComparisonResult]:
        return next((r for r in self.field_results if r.field_name == field), None)


class BatchItemResult(BaseModel):
    """Result for a single item of a batch verification."""
    key: str
    success: bool
    result: Optional[PipelineResult] = None
    error: Optional[str] = None
    stage: Optional[str] = None
