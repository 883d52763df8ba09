"""Tests for the pattern engine (regex + confidence scoring)."""

from __future__ import annotations

import pytest

from piilens.detection.detection_config import CARD_DOCUMENT_PADDING, CARD_DOCUMENT_TEXT
from piilens.detection.pattern_detector import (
    PatternDetector,
    detection_stats,
    first_matching_type,
    iter_matches,
)
from piilens.models.schemas import DetectionSource, OCRResult, PIIType
from piilens.ocr.text_source import PlainTextOCR


def _ocr(text: str) -> OCRResult:
    return PlainTextOCR.recognize_sync(text)


def _by_type(detections, pii_type):
    return [d for d in detections if d.type == pii_type]


@pytest.fixture
def detector() -> PatternDetector:
    return PatternDetector()


class TestCardAndSSN:
    LINE = "Card: 4111-1111-1111-1111, SSN 123-45-6789"

    def test_exact_detections(self, detector):
        dets = detector.detect(_ocr(self.LINE))
        summary = sorted((d.type.value, d.text, d.confidence) for d in dets)
        assert summary == [
            ("credit_card", "4111-1111-1111-1111", 0.95),
            ("credit_card", CARD_DOCUMENT_TEXT, 0.95),
            ("ssn", "123-45-6789", 0.90),
        ]

    def test_card_document_box_is_padded_line(self, detector):
        ocr = _ocr(self.LINE)
        line_box = ocr.lines[0].bbox
        doc = next(d for d in detector.detect(ocr) if d.text == CARD_DOCUMENT_TEXT)
        assert doc.bounding_box.x == 0.0
        assert doc.bounding_box.y == 0.0
        assert doc.bounding_box.width == pytest.approx(line_box.x1 + CARD_DOCUMENT_PADDING)
        assert doc.line == 0

    def test_invalid_luhn_scores_lower(self, detector):
        dets = detector.detect(_ocr("Card 4111-1111-1111-1112"))
        card = next(d for d in dets if d.text == "4111-1111-1111-1112")
        assert card.confidence == 0.75

    def test_threshold_drops_weak_matches(self):
        strict = PatternDetector(confidence_threshold=0.8)
        dets = strict.detect(_ocr("Card 4111-1111-1111-1112"))
        assert all(d.text != "4111-1111-1111-1112" for d in dets)

    def test_source_and_line(self, detector):
        dets = detector.detect(_ocr("nothing here\nSSN 123-45-6789"))
        ssn = _by_type(dets, PIIType.SSN)[0]
        assert ssn.source == DetectionSource.PATTERN
        assert ssn.line == 1
        assert ssn.verified is False

    def test_bbox_interpolated_from_offsets(self, detector):
        ocr = _ocr("SSN 123-45-6789")
        line = ocr.lines[0]
        ssn = _by_type(detector.detect(ocr), PIIType.SSN)[0]
        char_w = line.bbox.width / len(line.text)
        assert ssn.bounding_box.x == pytest.approx(line.bbox.x0 + 4 * char_w)
        assert ssn.bounding_box.width == pytest.approx(11 * char_w)


class TestContactDetails:
    def test_email(self, detector):
        dets = detector.detect(_ocr("Contact: jane.doe@example.com"))
        email = _by_type(dets, PIIType.EMAIL)
        assert [(d.text, d.confidence) for d in email] == [("jane.doe@example.com", 0.85)]

    def test_phone(self, detector):
        dets = detector.detect(_ocr("Tel (808) 555-0142"))
        phone = _by_type(dets, PIIType.PHONE)
        assert phone and phone[0].confidence == 0.90

    def test_address_with_context(self, detector):
        dets = detector.detect(_ocr("Address:\n12 Main Street"))
        addr = _by_type(dets, PIIType.ADDRESS)
        assert addr[0].text == "12 Main Street"
        assert addr[0].confidence == 0.80

    def test_address_without_context(self, detector):
        dets = detector.detect(_ocr("Ship to 12 Main St"))
        addr = _by_type(dets, PIIType.ADDRESS)[0]
        assert addr.text == "12 Main St"
        assert addr.confidence == 0.65


class TestDriverLicenseSample:
    def test_sample_license(self, detector):
        dets = detector.detect(PlainTextOCR.sample())
        texts = {(d.type, d.text) for d in dets}
        assert (PIIType.DRIVERS_LICENSE, "01-47-87441") in texts
        assert (PIIType.ZIP_CODE, "96820") in texts
        assert any(t == PIIType.ADDRESS and "MOMONA ST" in x for t, x in texts)


class TestLimits:
    def test_duplicates_on_a_line_collapse(self, detector):
        dets = detector.detect(_ocr("SSN 123-45-6789 / 123-45-6789"))
        assert len(_by_type(dets, PIIType.SSN)) == 1

    def test_max_detections(self):
        text = "\n".join(f"SSN 123-45-67{n:02d}" for n in range(20))
        dets = PatternDetector(max_detections=3).detect(_ocr(text))
        assert len(dets) == 3

    def test_matches_per_pattern_capped(self):
        line = " ".join(f"123-45-{n:04d}" for n in range(25))
        ssn = [m for m in iter_matches(line) if m.pii_type == PIIType.SSN]
        assert len(ssn) == 10

    def test_empty_document(self, detector):
        assert detector.detect(OCRResult.empty()) == []


class TestHelpers:
    def test_validate_pii_type(self):
        assert PatternDetector.validate_pii_type("123-45-6789", PIIType.SSN)
        assert not PatternDetector.validate_pii_type("hello", PIIType.SSN)

    def test_supported_types_cover_enum(self):
        assert set(PatternDetector.supported_types()) == set(PIIType)

    def test_first_matching_type(self):
        assert first_matching_type("123-45-6789") == PIIType.SSN
        assert first_matching_type("ORGAN DONOR") is None

    def test_value_group_only(self):
        matches = list(iter_matches("Patient ID: P123456"))
        assert any(m.text == "P123456" and m.pii_type == PIIType.PATIENT_ID for m in matches)

    def test_detection_stats(self, detector):
        dets = detector.detect(_ocr("Card: 4111-1111-1111-1111, SSN 123-45-6789"))
        stats = detection_stats(dets)
        assert stats.total == 3
        assert stats.by_type == {"credit_card": 2, "ssn": 1}
        assert stats.by_source == {"pattern": 3}
        assert stats.high_confidence_count == 3

    def test_detection_stats_empty(self):
        assert detection_stats([]).total == 0
