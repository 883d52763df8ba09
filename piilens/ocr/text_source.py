"""Text-only OCR stand-in: treats the input string as the document text."""

from __future__ import annotations

from typing import Union

from piilens.errors import OCRError
from piilens.models.schemas import BBox, OCRLine, OCRResult

LEFT_MARGIN = 10.0
LINE_HEIGHT = 20.0
LINE_SPACING = 10.0
CHAR_WIDTH = 8.0

_SAMPLE_LINES: list[tuple[str, tuple[float, float, float, float]]] = [
    ("HAWAII DRIVER LICENSE", (50, 20, 300, 50)),
    ("01-47-87441", (50, 60, 200, 80)),
    ("McLovin", (50, 90, 150, 110)),
    ("06/03/1981", (50, 120, 150, 140)),
    ("06/03/2008", (50, 150, 150, 170)),
    ("HT 5-10 WT 159 HAIR BRO EYES BRO SEX M", (50, 180, 350, 200)),
    ("06/18/1998", (50, 210, 150, 230)),
    ("892 MOMONA ST HONOLULU HI 96820", (50, 240, 350, 260)),
    ("ORGAN DONOR", (50, 270, 200, 290)),
]


class PlainTextOCR:
    """Splits text on newlines and gives each line a synthetic box.

    Boxes assume a fixed-pitch font: line ``i`` starts at
    ``y = LINE_SPACING + i * (LINE_HEIGHT + LINE_SPACING)`` and is
    ``len(line) * CHAR_WIDTH`` wide.  Blank lines are dropped.
    """

    async def recognize(self, image_source: Union[str, bytes]) -> OCRResult:
        return self.recognize_sync(image_source)

    @staticmethod
    def recognize_sync(image_source: Union[str, bytes]) -> OCRResult:
        if isinstance(image_source, bytes):
            try:
                image_source = image_source.decode("utf-8")
            except UnicodeDecodeError as e:
                raise OCRError("Plain-text OCR needs UTF-8 text") from e

        lines: list[OCRLine] = []
        for raw in image_source.splitlines():
            text = raw.strip()
            if not text:
                continue
            y0 = LINE_SPACING + len(lines) * (LINE_HEIGHT + LINE_SPACING)
            lines.append(OCRLine(
                text=text,
                bbox=BBox(x0=LEFT_MARGIN, y0=y0, x1=LEFT_MARGIN + len(text) * CHAR_WIDTH, y1=y0 + LINE_HEIGHT),
            ))
        return OCRResult(lines=lines)

    @staticmethod
    def sample() -> OCRResult:
        """A scanned Hawaii driver license, for demos and tests."""
        return OCRResult(lines=[
            OCRLine(text=text, bbox=BBox(x0=x0, y0=y0, x1=x1, y1=y1))
            for text, (x0, y0, x1, y1) in _SAMPLE_LINES
        ])
