"""Region classifier: turns vision regions into typed detections.

The vision collaborator only knows *where* something is (a text region,
a whole document, a face).  This layer pairs each region with the first
OCR line it overlaps and decides *what* it is from that line's text.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from piilens.detection.bbox_utils import boxes_intersect
from piilens.detection.pattern_detector import detection_stats, first_matching_type
from piilens.detection.regex_patterns import ADDRESS_RE
from piilens.models.schemas import (
    Detection,
    DetectionSource,
    OCRResult,
    PIIType,
    RegionType,
    VisionRegion,
)

logger = logging.getLogger(__name__)

_ID_DOCUMENT_RE = re.compile(
    r"\b(?:driver'?s?\s+license|id\s+card|passport|hawaii|honolulu)\b",
    re.IGNORECASE,
)


class RegionClassifier:
    """Correlates vision regions with OCR lines."""

    def classify(self, vision_regions: list[VisionRegion], ocr_result: OCRResult) -> list[Detection]:
        detections: list[Detection] = []
        for region in vision_regions:
            if region.type == RegionType.FACE:
                # No PII type is assigned to faces.
                logger.debug("Skipping face region at (%.0f, %.0f)", region.bounding_box.x, region.bounding_box.y)
                continue

            hit = self._overlapping_line(region, ocr_result)
            if hit is None:
                continue
            idx, text = hit

            pii_type = self._classify_text(region.type, text)
            if pii_type is None:
                continue

            detections.append(Detection(
                type=pii_type,
                text=text,
                confidence=region.confidence,
                bounding_box=region.bounding_box,
                line=idx,
                source=DetectionSource.VISION,
            ))
        return detections

    @staticmethod
    def _overlapping_line(region: VisionRegion, ocr_result: OCRResult) -> Optional[tuple[int, str]]:
        for idx, line in enumerate(ocr_result.lines):
            if boxes_intersect(region.bounding_box, line.bbox):
                return idx, line.text
        return None

    @staticmethod
    def _classify_text(region_type: RegionType, text: str) -> Optional[PIIType]:
        if region_type == RegionType.TEXT_REGION:
            return first_matching_type(text)
        if region_type == RegionType.DOCUMENT:
            if _ID_DOCUMENT_RE.search(text):
                return PIIType.DRIVERS_LICENSE
            if ADDRESS_RE.search(text):
                return PIIType.ADDRESS
        return None


def vision_stats(regions: list[VisionRegion], detections: list[Detection]) -> dict:
    """Region counts by type next to the detections they produced."""
    by_region: dict[str, int] = {}
    for region in regions:
        by_region[region.type.value] = by_region.get(region.type.value, 0) + 1
    stats = detection_stats(detections).model_dump()
    stats["regions"] = len(regions)
    stats["regions_by_type"] = by_region
    return stats
