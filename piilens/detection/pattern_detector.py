"""Pattern engine: regex + validation layer of the detection pipeline.

Every OCR line is scanned independently with the declarative table in
``regex_patterns.py``; matches never span line boundaries.  Each match is
scored by ``confidence.score`` (Luhn for cards, digit counts for phones
and SSNs, context words for addresses, ...) and dropped when it falls
below the configured threshold.

Boxes are interpolated from character offsets (see ``bbox_utils``).  A
card number additionally produces one document-level detection whose box
is the card line grown by ``CARD_DOCUMENT_PADDING`` so the whole card
image can be redacted, not only the printed digits.
"""

from __future__ import annotations

import logging
from collections import Counter
from typing import Iterator, NamedTuple, Optional

from piilens.detection import confidence
from piilens.detection.bbox_utils import interpolate_span, pad_box
from piilens.detection.detection_config import (
    CARD_DOCUMENT_CONFIDENCE,
    CARD_DOCUMENT_PADDING,
    CARD_DOCUMENT_TEXT,
    CONTEXT_LINES,
    MAX_MATCHES_PER_PATTERN,
)
from piilens.detection.regex_patterns import COMPILED_PATTERNS
from piilens.models.schemas import (
    Detection,
    DetectionSource,
    DetectionStats,
    OCRLine,
    OCRResult,
    PIIType,
)

logger = logging.getLogger(__name__)


class RegexMatch(NamedTuple):
    start: int
    end: int
    text: str
    pii_type: PIIType


def iter_matches(text: str) -> Iterator[RegexMatch]:
    """Yield raw matches in *text*, at most ``MAX_MATCHES_PER_PATTERN`` per pattern.

    When a pattern has a ``value`` group, only that group is reported.
    """
    for pii_type, compiled in COMPILED_PATTERNS.items():
        for rx in compiled:
            has_value = "value" in rx.groupindex
            for n, m in enumerate(rx.finditer(text)):
                if n >= MAX_MATCHES_PER_PATTERN:
                    break
                if has_value and m.group("value") is not None:
                    start, end = m.span("value")
                else:
                    start, end = m.span()
                raw = text[start:end]
                value = raw.strip()
                if not value:
                    continue
                start += len(raw) - len(raw.lstrip())
                yield RegexMatch(start=start, end=start + len(value), text=value, pii_type=pii_type)


def first_matching_type(text: str) -> Optional[PIIType]:
    """The first type (in table order) with any pattern hitting *text*."""
    for pii_type, compiled in COMPILED_PATTERNS.items():
        if any(rx.search(text) for rx in compiled):
            return pii_type
    return None


def line_context(lines: list[OCRLine], idx: int, radius: int = CONTEXT_LINES) -> str:
    """Text of line *idx* plus *radius* neighbours on each side."""
    lo = max(0, idx - radius)
    hi = min(len(lines), idx + radius + 1)
    return "\n".join(line.text for line in lines[lo:hi])


class PatternDetector:
    """Regex/validation layer.  Stateless apart from its settings."""

    def __init__(self, confidence_threshold: float = 0.6, max_detections: int = 100):
        self.confidence_threshold = confidence_threshold
        self.max_detections = max_detections

    def detect(self, ocr_result: OCRResult) -> list[Detection]:
        """Scan every OCR line and return scored, deduplicated detections."""
        detections: list[Detection] = []
        seen: set[tuple[str, PIIType, int]] = set()

        def _emit(det: Detection) -> None:
            key = (det.text, det.type, det.line)
            if key in seen:
                return
            seen.add(key)
            detections.append(det)

        for idx, line in enumerate(ocr_result.lines):
            if len(detections) >= self.max_detections:
                logger.info("Pattern engine hit max_detections=%d", self.max_detections)
                break
            if not line.text.strip():
                continue

            context = line_context(ocr_result.lines, idx)
            for match in iter_matches(line.text):
                conf = confidence.score(match.pii_type, match.text, context)
                if conf < self.confidence_threshold:
                    continue

                _emit(Detection(
                    type=match.pii_type,
                    text=match.text,
                    confidence=conf,
                    bounding_box=interpolate_span(line, match.start, match.end),
                    line=idx,
                    source=DetectionSource.PATTERN,
                ))

                if match.pii_type == PIIType.CREDIT_CARD:
                    _emit(Detection(
                        type=PIIType.CREDIT_CARD,
                        text=CARD_DOCUMENT_TEXT,
                        confidence=CARD_DOCUMENT_CONFIDENCE,
                        bounding_box=pad_box(line.bbox, CARD_DOCUMENT_PADDING),
                        line=0,
                        source=DetectionSource.PATTERN,
                    ))

        logger.debug(f"Pattern engine: {len(detections)} detections on {len(ocr_result.lines)} lines")
        return detections[: self.max_detections]

    @staticmethod
    def validate_pii_type(text: str, pii_type: PIIType) -> bool:
        """True when some pattern of *pii_type* matches the whole of *text*."""
        return any(rx.fullmatch(text) for rx in COMPILED_PATTERNS.get(pii_type, []))

    @staticmethod
    def supported_types() -> list[PIIType]:
        return list(COMPILED_PATTERNS.keys())


def detection_stats(detections: list[Detection]) -> DetectionStats:
    """Counts by type/source plus average and high-confidence totals."""
    if not detections:
        return DetectionStats()
    by_type = Counter(d.type.value for d in detections)
    by_source = Counter(d.source.value for d in detections)
    return DetectionStats(
        total=len(detections),
        by_type=dict(by_type),
        by_source=dict(by_source),
        average_confidence=sum(d.confidence for d in detections) / len(detections),
        high_confidence_count=sum(1 for d in detections if d.confidence >= 0.9),
    )
