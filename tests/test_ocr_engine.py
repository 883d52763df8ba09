"""Tests for the OCR collaborators (Tesseract grouping and plain-text OCR)."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from piilens.errors import OCRError
from piilens.models.schemas import BBox
from piilens.ocr.engine import TesseractOCR, group_words
from piilens.ocr.text_source import PlainTextOCR


def _tesseract_data(words):
    """Build an ``image_to_data`` dict from (text, conf, block, par, line, left, top, w, h) tuples."""
    keys = ("text", "conf", "block_num", "par_num", "line_num", "left", "top", "width", "height")
    return {key: [w[i] for w in words] for i, key in enumerate(keys)}


class TestGroupWords:
    def test_groups_by_line(self):
        data = _tesseract_data([
            ("SSN", 95, 1, 1, 1, 10, 10, 30, 12),
            ("123-45-6789", 91, 1, 1, 1, 45, 11, 90, 12),
            ("Jane", 88, 1, 1, 2, 10, 30, 35, 12),
        ])
        lines = group_words(data)
        assert [line.text for line in lines] == ["SSN 123-45-6789", "Jane"]
        assert lines[0].bbox == BBox(x0=10, y0=10, x1=135, y1=23)

    def test_low_confidence_and_blank_words_dropped(self):
        data = _tesseract_data([
            ("", -1, 1, 1, 1, 0, 0, 0, 0),
            ("smudge", 12, 1, 1, 1, 0, 0, 10, 10),
            ("kept", 80, 1, 1, 1, 20, 0, 10, 10),
        ])
        assert [line.text for line in group_words(data, min_confidence=30)] == ["kept"]

    def test_paragraphs_split_lines(self):
        data = _tesseract_data([
            ("one", 90, 1, 1, 1, 0, 0, 10, 10),
            ("two", 90, 1, 2, 1, 0, 20, 10, 10),
        ])
        assert len(group_words(data)) == 2

    def test_without_paragraph_numbers(self):
        data = _tesseract_data([("a", 90, 1, 1, 1, 0, 0, 5, 5), ("b", 90, 1, 2, 1, 6, 0, 5, 5)])
        del data["par_num"]
        assert [line.text for line in group_words(data)] == ["a b"]


class TestTesseractOCR:
    @pytest.mark.asyncio
    async def test_unavailable_raises(self):
        ocr = TesseractOCR()
        with patch.object(TesseractOCR, "is_available", return_value=False):
            with pytest.raises(OCRError, match="not available"):
                await ocr.recognize(b"\x89PNG")

    def test_availability_is_cached(self):
        ocr = TesseractOCR()
        ocr._available = True
        assert ocr.is_available() is True

    def test_bad_image_bytes(self):
        pytest.importorskip("PIL")
        with pytest.raises(OCRError, match="Cannot open image"):
            TesseractOCR._open_image(b"not an image")

    def test_missing_file(self, tmp_path):
        pytest.importorskip("PIL")
        with pytest.raises(OCRError):
            TesseractOCR._open_image(str(tmp_path / "absent.png"))


class TestPlainTextOCR:
    @pytest.mark.asyncio
    async def test_lines_and_boxes(self):
        result = await PlainTextOCR().recognize("first\n\n  second line  ")
        assert [line.text for line in result.lines] == ["first", "second line"]
        assert result.lines[0].bbox == BBox(x0=10, y0=10, x1=50, y1=30)
        assert result.lines[1].bbox == BBox(x0=10, y0=40, x1=98, y1=60)
        assert result.text == "first\nsecond line"

    def test_bytes(self):
        assert PlainTextOCR.recognize_sync("SSN 1".encode()).lines[0].text == "SSN 1"

    def test_non_utf8_bytes(self):
        with pytest.raises(OCRError):
            PlainTextOCR.recognize_sync(b"\xff\xfe\xfa")

    def test_sample(self):
        sample = PlainTextOCR.sample()
        assert len(sample.lines) == 9
        assert sample.lines[0].text == "HAWAII DRIVER LICENSE"
        assert "01-47-87441" in sample.text
