"""
Tesseract OCR engine via pytesseract.

pytesseract shells out to the tesseract binary, so recognition runs in the
default thread pool to keep the event loop free.
"""

import asyncio
import io
import logging
import time
from typing import Any

import pytesseract
from PIL import Image, UnidentifiedImageError

from .base import OCREngine, OCREngineError, OCREngineResult

logger = logging.getLogger(__name__)


# Characters that show up on menus and food labels
CHAR_WHITELIST = "abcdefghijklmnopqrstuvwxyzABCDEFGHIJKLMNOPQRSTUVWXYZ0123456789.,:%$()[]-/&"

# Assume a single uniform block of text
DEFAULT_CONFIG = f"--oem 3 --psm 6 -c tessedit_char_whitelist={CHAR_WHITELIST}"


class TesseractOCREngine(OCREngine):
    """OCR using the local tesseract binary."""

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        config: str = DEFAULT_CONFIG,
        lang: str = "eng",
    ):
        """
        Initialize the tesseract engine.

        Args:
            tesseract_cmd: Path to the tesseract binary (default: found on PATH)
            config: Extra tesseract CLI options
            lang: Tesseract language pack
        """
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.config = config
        self.lang = lang

    @property
    def provider_name(self) -> str:
        return "tesseract"

    async def extract_text(self, image_data: bytes) -> OCREngineResult:
        start_time = time.time()

        loop = asyncio.get_running_loop()
        data = await loop.run_in_executor(None, self._recognize_blocking, image_data)

        text, confidence, word_count = self._assemble_lines(data)
        processing_time_ms = int((time.time() - start_time) * 1000)

        logger.info(
            f"Tesseract recognized {word_count} words "
            f"(confidence {confidence:.2f}) in {processing_time_ms}ms"
        )

        return OCREngineResult(
            text=text,
            confidence=confidence,
            word_count=word_count,
            provider=self.provider_name,
            processing_time_ms=processing_time_ms,
        )

    def _recognize_blocking(self, image_data: bytes) -> dict[str, list[Any]]:
        """Run tesseract (blocking)."""
        try:
            with Image.open(io.BytesIO(image_data)) as img:
                img = img.convert("RGB")
                return pytesseract.image_to_data(
                    img,
                    lang=self.lang,
                    config=self.config,
                    output_type=pytesseract.Output.DICT,
                )
        except pytesseract.TesseractNotFoundError as e:
            raise OCREngineError(
                message="Tesseract binary not found",
                error_code="ENGINE_NOT_FOUND",
                provider=self.provider_name,
            ) from e
        except pytesseract.TesseractError as e:
            raise OCREngineError(
                message=f"Tesseract failed: {e}",
                error_code="ENGINE_ERROR",
                provider=self.provider_name,
            ) from e
        except (UnidentifiedImageError, OSError) as e:
            raise OCREngineError(
                message=f"Could not read image: {e}",
                error_code="INVALID_IMAGE",
                provider=self.provider_name,
            ) from e

    @staticmethod
    def _assemble_lines(data: dict[str, list[Any]]) -> tuple[str, float, int]:
        """
        Regroup tesseract words into text lines.

        Words are keyed by (block, paragraph, line); words with a negative
        confidence are layout boxes, not text. Returns the text, the mean
        word confidence on 0-1 and the number of words.
        """
        lines: dict[tuple[int, int, int], list[str]] = {}
        confidences: list[float] = []

        for i, word in enumerate(data.get("text", [])):
            word = (word or "").strip()
            try:
                conf = float(data["conf"][i])
            except (KeyError, IndexError, TypeError, ValueError):
                conf = -1.0
            if not word or conf < 0:
                continue

            key = (
                int(data.get("block_num", [0] * (i + 1))[i]),
                int(data.get("par_num", [0] * (i + 1))[i]),
                int(data.get("line_num", [0] * (i + 1))[i]),
            )
            lines.setdefault(key, []).append(word)
            confidences.append(conf)

        text = "\n".join(" ".join(words) for _, words in sorted(lines.items()))
        confidence = (sum(confidences) / len(confidences) / 100) if confidences else 0.0
        return text, max(0.0, min(1.0, confidence)), len(confidences)
