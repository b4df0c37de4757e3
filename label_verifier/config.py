"""Pipeline configuration."""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Verification pipeline settings loaded from environment variables."""

    # Image processing limits
    max_image_width: int = 1500  # Resize to this max width before OCR
    min_image_dimension: int = 300  # Below this, the enhanced pass upscales
    upscale_factor: float = 1.5
    border_padding_px: int = 20
    clahe_clip_limit: float = 2.0
    clahe_tile_grid: int = 8
    invert_brightness_threshold: float = 128.0  # Mean below this = dark label, invert

    # Image quality thresholds (diagnostic only)
    blur_threshold: float = 50.0
    contrast_threshold: float = 20.0

    # OCR settings
    ocr_lang: str = "en"
    ocr_gpu: bool = False
    ocr_model_dir: str | None = None
    ocr_num_threads: int | None = None
    primary_variant: str = "standard"  # "standard" or "padded"
    secondary_pass_enabled: bool = True
    paragraph_gap_ratio: float = 1.5  # Vertical gap (x median line height) that starts a new block

    # Fuzzy matching thresholds
    fuzzy_match_threshold: float = 0.95
    fuzzy_partial_threshold: float = 0.75

    # Government warning thresholds
    warning_match_threshold: float = 0.98
    warning_partial_threshold: float = 0.90
    warning_near_match_enabled: bool = True

    # Alcohol content tolerances (percentage points)
    spirits_abv_tolerance: float = 0.3
    wine_abv_tolerance: float = 1.5
    malt_abv_tolerance: float = 0.3

    # Recover fields the parser missed when the expected value is in the raw text
    reverse_lookup_enabled: bool = True

    # Hard requirement: < 5 seconds end to end
    processing_budget_ms: int = 5000

    class Config:
        env_prefix = "LABEL_VERIFIER_"
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
