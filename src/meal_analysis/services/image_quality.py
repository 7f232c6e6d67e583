"""
Image quality assessment.

Decodes the submitted image, checks it is something Pillow can open and
classifies its quality by encoded size before anything is sent upstream.
"""

import base64
import binascii
import io
import logging
import re

from PIL import Image
from pydantic import BaseModel, Field

from meal_analysis.models import ImageQualityLevel

logger = logging.getLogger(__name__)

DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w/+.-]+)?(?:;[\w=-]+)*;base64,", re.IGNORECASE)

# Size thresholds in KB
LOW_SIZE_KB = 10
HIGH_SIZE_KB = 100
OVERSIZED_KB = 5000

# Pillow format names that need a different MIME subtype
_MIME_SUBTYPES = {
    "mpo": "jpeg",
    "jpg": "jpeg",
}


class ImageAssessment(BaseModel):
    """Result of assessing one image."""

    valid: bool = Field(..., description="Whether the image can be analyzed at all")
    quality: ImageQualityLevel = Field(ImageQualityLevel.INVALID)
    size_kb: float = Field(0.0, ge=0)
    format: str | None = Field(None, description="Lower-cased Pillow format name")
    width: int | None = None
    height: int | None = None
    data_url: str = Field("", description="Image formatted as a data URL for the vision model")
    image_bytes: bytes = Field(b"", repr=False)
    error: str | None = None


def split_data_url(image: str) -> tuple[str | None, str]:
    """
    Split an image string into its MIME type (if any) and base64 payload.

    Whitespace inside the payload is removed.
    """
    image = image.strip()
    match = DATA_URL_RE.match(image)
    mime = None
    if match:
        mime = match.group("mime")
        image = image[match.end():]
    return mime, "".join(image.split())


def classify_size(size_kb: float) -> ImageQualityLevel:
    """Classify quality from the encoded size alone."""
    if size_kb < LOW_SIZE_KB or size_kb > OVERSIZED_KB:
        return ImageQualityLevel.LOW
    if size_kb > HIGH_SIZE_KB:
        return ImageQualityLevel.HIGH
    return ImageQualityLevel.MEDIUM


class ImageQualityAssessor:
    """Validates and classifies encoded meal images."""

    def __init__(self, max_bytes: int = 20 * 1024 * 1024):
        self.max_bytes = max_bytes

    def _invalid(self, error: str, size_kb: float = 0.0) -> ImageAssessment:
        logger.warning(f"Image rejected: {error}")
        return ImageAssessment(
            valid=False,
            quality=ImageQualityLevel.INVALID,
            size_kb=size_kb,
            error=error,
        )

    def assess(self, image: str | None) -> ImageAssessment:
        """
        Decode and classify an image.

        Args:
            image: Base64 string or data URL

        Returns:
            ImageAssessment; ``valid`` is False for missing, undecodable,
            oversized or non-image data.
        """
        if not image:
            return self._invalid("No image data provided")

        _, payload = split_data_url(image)
        if not payload:
            return self._invalid("No image data provided")

        # Cheap upper bound before decoding: base64 inflates by 4/3
        if len(payload) * 3 // 4 > self.max_bytes:
            return self._invalid(
                f"Image exceeds {self.max_bytes // 1024} KB limit",
                size_kb=len(payload) * 3 / 4 / 1024,
            )

        try:
            data = base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            return self._invalid(f"Image is not valid base64: {e}")

        size_kb = len(data) / 1024
        if not data:
            return self._invalid("No image data provided")
        if len(data) > self.max_bytes:
            return self._invalid(
                f"Image exceeds {self.max_bytes // 1024} KB limit", size_kb=size_kb
            )

        try:
            with Image.open(io.BytesIO(data)) as img:
                fmt = (img.format or "jpeg").lower()
                width, height = img.size
                img.verify()
        except (OSError, ValueError, SyntaxError, Image.DecompressionBombError) as e:
            return self._invalid(f"Unrecognized image data: {e}", size_kb=size_kb)

        subtype = _MIME_SUBTYPES.get(fmt, fmt)
        quality = classify_size(size_kb)

        logger.debug(
            f"Image assessed: format={fmt}, {width}x{height}, "
            f"{size_kb:.1f} KB, quality={quality.value}"
        )

        return ImageAssessment(
            valid=True,
            quality=quality,
            size_kb=size_kb,
            format=fmt,
            width=width,
            height=height,
            data_url=f"data:image/{subtype};base64,{payload}",
            image_bytes=data,
        )
