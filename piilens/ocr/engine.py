"""OCR engine: Tesseract integration for scanned documents and images."""

from __future__ import annotations

import asyncio
import base64
import binascii
import io
import logging
import shutil
from pathlib import Path
from typing import Optional, Union

from piilens.errors import OCRError
from piilens.models.schemas import BBox, OCRLine, OCRResult

logger = logging.getLogger(__name__)

_WINDOWS_PATHS = (
    r"C:\Program Files\Tesseract-OCR\tesseract.exe",
    r"C:\Program Files (x86)\Tesseract-OCR\tesseract.exe",
)


class TesseractOCR:
    """Word-level Tesseract OCR grouped into lines.

    ``image_source`` may be raw image bytes, a ``data:`` URI or a file
    path.  pytesseract and Pillow are imported lazily so the rest of the
    package works without the ``ocr`` extra installed.
    """

    def __init__(
        self,
        language: str = "eng",
        tesseract_cmd: Optional[str] = None,
        min_confidence: int = 30,
    ):
        self.language = language
        self.tesseract_cmd = tesseract_cmd
        self.min_confidence = min_confidence
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        """Check if Tesseract is available on the system (cached)."""
        if self._available is not None:
            return self._available

        try:
            import pytesseract

            if self.tesseract_cmd:
                pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd
            elif shutil.which("tesseract") is None:
                for p in _WINDOWS_PATHS:
                    if Path(p).exists():
                        pytesseract.pytesseract.tesseract_cmd = p
                        break

            pytesseract.get_tesseract_version()
            self._available = True
            logger.info("Tesseract OCR is available")
        except Exception as e:
            logger.warning("Tesseract OCR not available: %s", e)
            self._available = False

        return self._available

    async def recognize(self, image_source: Union[str, bytes]) -> OCRResult:
        return await asyncio.to_thread(self.recognize_sync, image_source)

    def recognize_sync(self, image_source: Union[str, bytes]) -> OCRResult:
        if not self.is_available():
            raise OCRError("Tesseract OCR is not available")

        import pytesseract

        img = self._open_image(image_source)
        data = pytesseract.image_to_data(
            img,
            lang=self.language,
            output_type=pytesseract.Output.DICT,
            config="--oem 1 --psm 6",
        )
        lines = group_words(data, self.min_confidence)
        logger.info("OCR extracted %d lines", len(lines))
        return OCRResult(lines=lines)

    @staticmethod
    def _open_image(image_source: Union[str, bytes]):
        from PIL import Image, UnidentifiedImageError

        try:
            if isinstance(image_source, bytes):
                return Image.open(io.BytesIO(image_source))
            if image_source.startswith("data:"):
                _, _, payload = image_source.partition(",")
                return Image.open(io.BytesIO(base64.b64decode(payload, validate=True)))
            return Image.open(Path(image_source))
        except (OSError, UnidentifiedImageError, binascii.Error) as e:
            raise OCRError(f"Cannot open image: {e}") from e


def group_words(data: dict, min_confidence: int = 30) -> list[OCRLine]:
    """Group ``image_to_data`` words into lines keyed by (block, paragraph, line).

    Lines keep Tesseract's reading order; each line's box is the union of
    its word boxes.
    """
    grouped: dict[tuple[int, int, int], list[tuple[str, BBox]]] = {}
    for i in range(len(data["text"])):
        text = str(data["text"][i]).strip()
        conf = float(data["conf"][i])
        if not text or conf < min_confidence:
            continue
        par = data["par_num"][i] if "par_num" in data else 0
        key = (data["block_num"][i], par, data["line_num"][i])
        left, top = data["left"][i], data["top"][i]
        box = BBox(x0=left, y0=top, x1=left + data["width"][i], y1=top + data["height"][i])
        grouped.setdefault(key, []).append((text, box))

    lines: list[OCRLine] = []
    for words in grouped.values():
        lines.append(OCRLine(
            text=" ".join(w for w, _ in words),
            bbox=BBox(
                x0=min(b.x0 for _, b in words),
                y0=min(b.y0 for _, b in words),
                x1=max(b.x1 for _, b in words),
                y1=max(b.y1 for _, b in words),
            ),
        ))
    return lines
