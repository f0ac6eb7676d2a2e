"""Tesseract OCR engine wrapper with line-level extraction.

Provides text extraction with per-line grouping and an averaged word
confidence on a 0-100 scale.
"""

import io
import math
from dataclasses import dataclass

import pytesseract
from PIL import Image

from receipt_intake.utils.logger import get_logger

logger = get_logger(__name__)


def clamp_confidence(value: object) -> float:
    """Coerce a reported confidence into ``[0, 100]``.

    Non-numeric and NaN values count as zero.
    """
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if math.isnan(number):
        return 0.0
    return min(100.0, max(0.0, number))


@dataclass(frozen=True)
class RecognitionResult:
    """Text recognized from a receipt image, or a failure marker."""

    success: bool
    text: str = ""
    lines: tuple[str, ...] = ()
    confidence: float = 0.0
    error: str | None = None

    @classmethod
    def failure(cls, error: str) -> "RecognitionResult":
        """Build a failed result carrying ``error``."""
        return cls(success=False, error=error)


class TesseractEngine:
    """Wrapper around Tesseract OCR for receipt text extraction.

    Args:
        tesseract_cmd: Path to the Tesseract executable.
            If ``None``, uses the system default.
        default_lang: OCR language code.
        psm: Tesseract page segmentation mode.
        timeout: Seconds each Tesseract call may run before it is killed.
            Zero disables the limit.
    """

    def __init__(
        self,
        tesseract_cmd: str | None = None,
        default_lang: str = "eng",
        psm: int = 3,
        timeout: float = 0,
    ) -> None:
        if tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = tesseract_cmd
        self.default_lang = default_lang
        self.psm = psm
        self.timeout = timeout

    def recognize(self, image_bytes: bytes) -> RecognitionResult:
        """Extract text lines and confidence from encoded image bytes.

        Args:
            image_bytes: Encoded image (JPEG, PNG, ...).

        Returns:
            A successful RecognitionResult.

        Raises:
            pytesseract.TesseractError: If Tesseract fails.
            RuntimeError: If Tesseract runs longer than ``timeout``.
            OSError: If the image cannot be decoded.
        """
        config = f"--psm {self.psm}"

        with Image.open(io.BytesIO(image_bytes)) as source:
            image = source.convert("L") if source.mode != "L" else source.copy()

        text = pytesseract.image_to_string(
            image, lang=self.default_lang, config=config, timeout=self.timeout
        )
        data = pytesseract.image_to_data(
            image,
            lang=self.default_lang,
            config=config,
            output_type=pytesseract.Output.DICT,
            timeout=self.timeout,
        )

        grouped: dict[tuple[int, int, int], list[str]] = {}
        total_conf = 0.0
        word_count = 0
        count = len(data["text"])
        par_nums = data.get("par_num", [0] * count)

        for i in range(count):
            conf = clamp_confidence(data["conf"][i])
            word_text = str(data["text"][i]).strip()

            if conf > 0 and word_text:
                key = (data["block_num"][i], par_nums[i], data["line_num"][i])
                grouped.setdefault(key, []).append(word_text)
                total_conf += conf
                word_count += 1

        lines = [" ".join(words) for words in grouped.values()]
        if not lines:
            lines = [ln.strip() for ln in text.splitlines() if ln.strip()]
        avg_conf = clamp_confidence(total_conf / word_count) if word_count else 0.0

        logger.info(
            "OCR extracted %d words in %d lines with average confidence %.1f",
            word_count,
            len(lines),
            avg_conf,
        )
        return RecognitionResult(
            success=True,
            text=text,
            lines=tuple(lines),
            confidence=avg_conf,
        )
