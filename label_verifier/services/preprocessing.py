"""Image preprocessing for OCR.

Turns a raw label photo into recognizer-friendly grayscale bitmaps:
- Decode (JPEG/PNG only) and apply EXIF orientation
- Bounded resize (never upscales, except the enhanced variant on tiny images)
- Min-max normalization + unsharp-mask sharpening (standard)
- CLAHE + automatic polarity inversion for dark labels (enhanced)
- Uniform white border so edge text is segmented cleanly (padded)
"""

import cv2
import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError
import io
from enum import Enum
from typing import Tuple, Optional, Union
from dataclasses import dataclass, field
import logging

from ..config import Settings, get_settings
from ..exceptions import ImageDecodeError

logger = logging.getLogger(__name__)


# Pillow format name -> declared content type
SUPPORTED_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
}

JPEG_MAGIC = b"\xff\xd8\xff"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"


@dataclass(frozen=True)
class RawImage:
    """Label image bytes plus declared content type. Never modified."""
    data: bytes
    content_type: str

    @classmethod
    def from_bytes(cls, data: bytes) -> "RawImage":
        """Wrap bytes, sniffing the content type from the file signature."""
        if data.startswith(JPEG_MAGIC):
            return cls(data=data, content_type="image/jpeg")
        if data.startswith(PNG_MAGIC):
            return cls(data=data, content_type="image/png")
        raise ImageDecodeError("Unsupported image format. Allowed formats: JPEG, PNG")


class PreprocessVariant(str, Enum):
    """Preprocessing variants produced independently from the same image."""
    STANDARD = "standard"  # normalize + sharpen, no border (also the recovery variant)
    ENHANCED = "enhanced"  # CLAHE + auto-invert, for white-on-dark and faint text
    PADDED = "padded"  # standard + light border


@dataclass
class ImageQuality:
    """Image quality assessment results."""
    blur_score: float  # Laplacian variance - higher = sharper
    contrast_score: float  # Std deviation - higher = more contrast
    is_blurry: bool
    is_low_contrast: bool
    recommendation: Optional[str] = None


@dataclass
class PreprocessedBitmap:
    """Grayscale bitmap ready for recognition."""
    image: np.ndarray
    variant: PreprocessVariant
    quality: ImageQuality
    metadata: dict = field(default_factory=dict)

    @property
    def width(self) -> int:
        return self.image.shape[1]

    @property
    def height(self) -> int:
        return self.image.shape[0]


class ImagePreprocessor:
    """Normalizes label photos into bitmaps the recognizer reads well."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def preprocess(
        self,
        image: Union[RawImage, bytes],
        variant: PreprocessVariant = PreprocessVariant.STANDARD,
    ) -> PreprocessedBitmap:
        """
        Preprocess image for OCR.

        Pipeline order:
        1. Decode, EXIF transpose, grayscale
        2. Quality assessment (diagnostic)
        3. Bounded resize
        4. Contrast normalization (variant-specific)
        5. Sharpen
        6. Border (padded variant only)

        Args:
            image: Raw image (or bytes, sniffed as JPEG/PNG)
            variant: Which preprocessing variant to produce

        Returns:
            PreprocessedBitmap with a uint8 grayscale image

        Raises:
            ImageDecodeError: If the bytes are not a readable JPEG/PNG
        """
        if isinstance(image, bytes):
            image = RawImage.from_bytes(image)
        variant = PreprocessVariant(variant)

        gray = self._load_grayscale(image)

        metadata = {
            "variant": variant.value,
            "original_size": gray.shape[:2],
            "preprocessing_steps": ["grayscale"],
        }

        quality = self._assess_quality(gray)
        metadata["quality"] = {
            "blur_score": quality.blur_score,
            "contrast_score": quality.contrast_score,
            "is_blurry": quality.is_blurry,
            "is_low_contrast": quality.is_low_contrast,
        }
        if quality.recommendation:
            metadata["quality_recommendation"] = quality.recommendation
            logger.debug(f"Image quality: {quality.recommendation}")

        gray, resize_action = self._resize_bounded(
            gray, upscale_if_small=variant == PreprocessVariant.ENHANCED
        )
        if resize_action:
            metadata["preprocessing_steps"].append(resize_action)
            metadata["resized_to"] = gray.shape[:2]

        if variant == PreprocessVariant.ENHANCED:
            processed, inverted = self._enhance(gray)
            metadata["preprocessing_steps"].append("clahe")
            metadata["preprocessing_steps"].append("normalize")
            if inverted:
                metadata["preprocessing_steps"].append("invert")
            metadata["inverted"] = inverted
        else:
            processed = self._normalize(gray)
            metadata["preprocessing_steps"].append("normalize")

        processed = self._sharpen(processed)
        metadata["preprocessing_steps"].append("sharpen")

        if variant == PreprocessVariant.PADDED:
            processed = self._pad(processed)
            metadata["preprocessing_steps"].append("pad")

        return PreprocessedBitmap(
            image=processed,
            variant=variant,
            quality=quality,
            metadata=metadata,
        )

    def _load_grayscale(self, image: RawImage) -> np.ndarray:
        """Decode bytes into a grayscale numpy array, failing fast on bad input."""
        try:
            pil_image = Image.open(io.BytesIO(image.data))
            image_format = pil_image.format
            if image_format not in SUPPORTED_FORMATS:
                raise ImageDecodeError(
                    f"Unsupported image format {image_format}. Allowed formats: JPEG, PNG"
                )
            # Force full decode so truncated files fail here, not inside OpenCV
            pil_image.load()
            pil_image = ImageOps.exif_transpose(pil_image)
        except ImageDecodeError:
            raise
        except (UnidentifiedImageError, OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            raise ImageDecodeError(f"Unable to decode {image.content_type} image: {e}") from e

        if SUPPORTED_FORMATS[image_format] != image.content_type:
            logger.debug(
                f"Declared content type {image.content_type} but decoded {image_format}"
            )

        if pil_image.mode != "RGB":
            pil_image = pil_image.convert("RGB")

        rgb = np.array(pil_image)
        if rgb.size == 0:
            raise ImageDecodeError("Image has no pixels")
        return cv2.cvtColor(rgb, cv2.COLOR_RGB2GRAY)

    def _assess_quality(self, gray: np.ndarray) -> ImageQuality:
        """Assess image quality (blur, contrast)."""
        blur_score = float(cv2.Laplacian(gray, cv2.CV_64F).var())
        contrast_score = float(gray.std())

        is_blurry = blur_score < self.settings.blur_threshold
        is_low_contrast = contrast_score < self.settings.contrast_threshold

        recommendation = None
        if is_blurry and is_low_contrast:
            recommendation = "Image is blurry and has low contrast. Please retake with better focus and lighting."
        elif is_blurry:
            recommendation = "Image appears blurry. Please retake with better focus or hold camera steady."
        elif is_low_contrast:
            recommendation = "Image has low contrast. Please ensure good lighting on the label."

        return ImageQuality(
            blur_score=blur_score,
            contrast_score=contrast_score,
            is_blurry=is_blurry,
            is_low_contrast=is_low_contrast,
            recommendation=recommendation,
        )

    def _resize_bounded(
        self, image: np.ndarray, upscale_if_small: bool = False
    ) -> Tuple[np.ndarray, Optional[str]]:
        """
        Resize preserving aspect ratio:
        - Clamp width to max_image_width
        - Optionally upscale tiny images for small-text legibility
        """
        height, width = image.shape[:2]
        max_width = self.settings.max_image_width

        if width > max_width:
            scale = max_width / width
            new_size = (max_width, max(1, int(height * scale)))
            return cv2.resize(image, new_size, interpolation=cv2.INTER_AREA), "downscale"

        if upscale_if_small and max(width, height) < self.settings.min_image_dimension:
            scale = self.settings.upscale_factor
            new_size = (int(width * scale), int(height * scale))
            return cv2.resize(image, new_size, interpolation=cv2.INTER_CUBIC), f"upscale_{scale}x"

        return image, None

    def _normalize(self, gray: np.ndarray) -> np.ndarray:
        """Stretch the histogram to the full 0-255 range."""
        return cv2.normalize(gray, None, 0, 255, cv2.NORM_MINMAX)

    def _enhance(self, gray: np.ndarray) -> Tuple[np.ndarray, bool]:
        """
        Local contrast enhancement with automatic polarity detection.

        Light text on a dark background is inverted to dark-on-light.

        Returns:
            Tuple of (enhanced image, whether it was inverted)
        """
        tiles = self.settings.clahe_tile_grid
        clahe = cv2.createCLAHE(clipLimit=self.settings.clahe_clip_limit, tileGridSize=(tiles, tiles))
        enhanced = self._normalize(clahe.apply(gray))

        mean_brightness = float(enhanced.mean())
        if mean_brightness < self.settings.invert_brightness_threshold:
            logger.debug(f"Dark image (mean={mean_brightness:.0f}), inverting")
            return cv2.bitwise_not(enhanced), True
        return enhanced, False

    def _sharpen(self, image: np.ndarray) -> np.ndarray:
        """Apply light sharpening to enhance text edges."""
        # Unsharp masking - gentle sharpening
        gaussian = cv2.GaussianBlur(image, (0, 0), 1.0)
        return cv2.addWeighted(image, 1.5, gaussian, -0.5, 0)

    def _pad(self, image: np.ndarray) -> np.ndarray:
        """Add a uniform white border."""
        p = self.settings.border_padding_px
        return cv2.copyMakeBorder(image, p, p, p, p, cv2.BORDER_CONSTANT, value=255)
