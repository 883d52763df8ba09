"""Tests for the region classifier (vision regions to typed detections)."""

from __future__ import annotations

from piilens.detection.region_classifier import RegionClassifier, vision_stats
from piilens.models.schemas import (
    BoundingBox,
    DetectionSource,
    PIIType,
    RegionType,
    VisionRegion,
)
from piilens.ocr.text_source import PlainTextOCR


def _summary(detections):
    return [(d.type, d.text, d.confidence) for d in detections]


def _region(region_type, x, y, w=50, h=10, confidence=0.8):
    return VisionRegion(
        type=region_type,
        confidence=confidence,
        bounding_box=BoundingBox(x=x, y=y, width=w, height=h),
    )


class TestRegionClassifier:
    OCR = PlainTextOCR.recognize_sync("Notes\n123-45-6789\n12 Main Street\nHAWAII DRIVER LICENSE")

    def _line_region(self, idx, region_type=RegionType.TEXT_REGION, **kw):
        box = self.OCR.lines[idx].bbox
        return _region(region_type, box.x0 + 1, box.y0 + 1, **kw)

    def test_text_region_takes_first_pattern_type(self):
        dets = RegionClassifier().classify([self._line_region(1, confidence=0.77)], self.OCR)
        assert _summary(dets) == [(PIIType.SSN, "123-45-6789", 0.77)]
        assert dets[0].source == DetectionSource.VISION
        assert dets[0].line == 1

    def test_region_box_is_kept(self):
        region = self._line_region(1)
        dets = RegionClassifier().classify([region], self.OCR)
        assert dets[0].bounding_box == region.bounding_box

    def test_faces_are_skipped(self):
        face = self._line_region(1, region_type=RegionType.FACE)
        assert RegionClassifier().classify([face], self.OCR) == []

    def test_document_region_license(self):
        doc = self._line_region(3, region_type=RegionType.DOCUMENT)
        dets = RegionClassifier().classify([doc], self.OCR)
        assert [d.type for d in dets] == [PIIType.DRIVERS_LICENSE]

    def test_document_region_address(self):
        doc = self._line_region(2, region_type=RegionType.DOCUMENT)
        dets = RegionClassifier().classify([doc], self.OCR)
        assert [d.type for d in dets] == [PIIType.ADDRESS]

    def test_document_region_without_cues(self):
        doc = self._line_region(0, region_type=RegionType.DOCUMENT)
        assert RegionClassifier().classify([doc], self.OCR) == []

    def test_no_overlap(self):
        far = _region(RegionType.TEXT_REGION, 5000, 5000)
        assert RegionClassifier().classify([far], self.OCR) == []

    def test_touching_edges_do_not_overlap(self):
        box = self.OCR.lines[1].bbox
        touching = _region(RegionType.TEXT_REGION, box.x1, box.y0)
        assert RegionClassifier().classify([touching], self.OCR) == []

    def test_stats(self):
        regions = [self._line_region(1), self._line_region(1, region_type=RegionType.FACE)]
        dets = RegionClassifier().classify(regions, self.OCR)
        stats = vision_stats(regions, dets)
        assert stats["regions"] == 2
        assert stats["regions_by_type"] == {"text_region": 1, "face": 1}
        assert stats["total"] == 1
