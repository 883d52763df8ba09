"""Specialized rule engine: domain heuristics for medical, financial and ID documents.

Same input and output shape as the pattern engine, but each rule looks at
more than the matched line: a labelled value ("Patient ID: P12345") only
fires at its high confidence when the *document* also carries the
vocabulary of its domain (insurance, hospital, pharmacy, bank ...).
Without that context the rule still fires, at its low confidence, so the
ensemble step can decide with the other layers.

Rules run in declaration order.  The licence-document rule runs first and
emits a single whole-document detection.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional

from piilens.detection.bbox_utils import interpolate_span, pad_box, union_box
from piilens.detection.confidence import aba_routing_check, iban_mod97, valid_date
from piilens.detection.detection_config import (
    LICENSE_DOCUMENT_CONFIDENCE,
    LICENSE_DOCUMENT_PADDING,
    LICENSE_DOCUMENT_TEXT,
    MAX_MATCHES_PER_PATTERN,
)
from piilens.detection.pattern_detector import detection_stats
from piilens.models.schemas import (
    Detection,
    DetectionSource,
    OCRResult,
    PIIType,
)

logger = logging.getLogger(__name__)


def _vocab(*words: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(re.escape(w) for w in words) + r")\b", re.IGNORECASE)


LICENSE_INDICATORS = _vocab(
    "driver license", "driver's license", "drivers license", "id card",
    "department of motor vehicles", "dmv", "state of",
    "hawaii", "honolulu", "california",
)

_MEDICAL_VOCAB = _vocab(
    "insurance", "medical", "hospital", "clinic", "physician", "doctor",
    "diagnosis", "health", "medicare", "medicaid", "pharmacy", "admission",
)
_INSURANCE_VOCAB = _vocab(
    "insurance", "insurer", "coverage", "plan", "copay", "deductible",
    "health", "medical", "dental", "vision", "benefits", "payer",
)
_PHARMACY_VOCAB = _vocab(
    "pharmacy", "refill", "refills", "dosage", "tablet", "tablets", "capsule",
    "mg", "prescribed", "prescriber", "physician", "dispense",
)
_BANKING_VOCAB = _vocab(
    "bank", "banking", "routing", "checking", "savings", "deposit",
    "branch", "statement", "balance", "wire", "transfer",
)
_IBAN_VOCAB = _vocab("iban", "bank", "swift", "bic", "transfer", "beneficiary")
_TRAVEL_VOCAB = _vocab(
    "nationality", "country", "travel", "visa", "issuing", "republic",
    "united states", "place of birth", "surname", "given names",
)

_HAS_DIGIT = r"(?=[A-Z-]*\d)"
_ID_VALUE = r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9][A-Z0-9-]{3,14})\b"
_NUM = r"\s*(?i:id|no\.?|number|#)"
_SEP = r"\s*[:#=]?\s*"
_DATE_VALUE = r"(?P<value>\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2})\b"


@dataclass(frozen=True)
class SpecializedRule:
    """One labelled-value heuristic.

    ``context`` is searched over the full document text; ``None`` means the
    rule always fires at ``high``.  A ``validator`` that rejects the value
    suppresses the match entirely.
    """
    name: str
    pii_type: PIIType
    pattern: re.Pattern
    context: Optional[re.Pattern]
    high: float
    low: float
    validator: Optional[Callable[[str], bool]] = None


def _rule(name, pii_type, pattern, context, high, low, validator=None) -> SpecializedRule:
    return SpecializedRule(name, pii_type, re.compile(pattern), context, high, low, validator)


RULES: list[SpecializedRule] = [
    # ── Medical ──
    _rule("patient_id", PIIType.PATIENT_ID,
          r"\b(?i:patient" + _NUM + r"|mrn|medical\s+record(?:\s*(?:no\.?|number|#))?)" + _SEP + _ID_VALUE,
          _MEDICAL_VOCAB, 0.92, 0.60),
    _rule("health_insurance", PIIType.HEALTH_INSURANCE,
          r"\b(?i:member|subscriber|group|policy\s*holder)" + _NUM + _SEP + _ID_VALUE,
          _INSURANCE_VOCAB, 0.90, 0.60),
    _rule("prescription", PIIType.PRESCRIPTION_DATA,
          r"\b(?i:rx|prescription)(?:\s*(?i:no\.?|number|#))?\s*[:#]\s*" + _ID_VALUE,
          _PHARMACY_VOCAB, 0.90, 0.60),

    # ── Financial ──
    _rule("routing_number", PIIType.FINANCIAL_DATA,
          r"\b(?i:routing|aba|rtn)(?:\s*(?i:no\.?|number|#))?" + _SEP + r"(?P<value>\d{9})\b",
          _BANKING_VOCAB, 0.92, 0.75, aba_routing_check),
    _rule("bank_account", PIIType.BANK_ACCOUNT,
          r"\b(?i:account|acct)(?:\s*(?i:no\.?|number|#))?" + _SEP + r"(?P<value>\d{6,17})\b",
          _BANKING_VOCAB, 0.90, 0.65),
    _rule("iban", PIIType.BANK_ACCOUNT,
          r"\b(?P<value>[A-Z]{2}\d{2}(?: ?[A-Z0-9]{4}){3,7}(?: ?[A-Z0-9]{1,3})?)\b",
          _IBAN_VOCAB, 0.95, 0.85, iban_mod97),

    # ── Identity documents ──
    _rule("passport_number", PIIType.PASSPORT_NUMBER,
          r"\b(?i:passport)(?:\s*(?i:no\.?|number|#))?" + _SEP
          + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9]{6,9})\b",
          _TRAVEL_VOCAB, 0.92, 0.70),
    _rule("license_number", PIIType.DRIVERS_LICENSE,
          r"\b(?i:dln?|lic(?:ense)?" + _NUM + r")" + _SEP
          + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9][A-Z0-9-]{4,14})\b",
          LICENSE_INDICATORS, 0.90, 0.65),
    _rule("date_of_birth", PIIType.DATE_OF_BIRTH,
          r"\b(?i:dob|d\.o\.b\.?|date\s+of\s+birth|birth\s*date)\s*[:.]?\s*" + _DATE_VALUE,
          None, 0.90, 0.90, valid_date),
]


class SpecializedDetector:
    """Ordered domain heuristics over the OCR text."""

    def __init__(
        self,
        confidence_threshold: float = 0.6,
        max_detections: int = 100,
        rules: Optional[list[SpecializedRule]] = None,
    ):
        self.confidence_threshold = confidence_threshold
        self.max_detections = max_detections
        self.rules = rules if rules is not None else RULES

    def detect(self, ocr_result: OCRResult) -> list[Detection]:
        detections: list[Detection] = []
        seen: set[tuple[str, PIIType, int]] = set()
        full_text = ocr_result.text

        def _emit(det: Detection) -> None:
            if det.confidence < self.confidence_threshold:
                return
            key = (det.text, det.type, det.line)
            if key not in seen:
                seen.add(key)
                detections.append(det)

        doc = self._license_document(ocr_result)
        if doc is not None:
            _emit(doc)

        # Document-level vocabulary is resolved once per rule.
        in_context = {
            rule.name: rule.context is None or bool(rule.context.search(full_text))
            for rule in self.rules
        }

        for idx, line in enumerate(ocr_result.lines):
            if len(detections) >= self.max_detections:
                break
            for rule in self.rules:
                for n, m in enumerate(rule.pattern.finditer(line.text)):
                    if n >= MAX_MATCHES_PER_PATTERN:
                        break
                    value = m.group("value")
                    if not value:
                        continue
                    if rule.validator is not None and not rule.validator(value):
                        logger.debug("Specialized rule %s rejected a value", rule.name)
                        continue
                    start, end = m.span("value")
                    _emit(Detection(
                        type=rule.pii_type,
                        text=value,
                        confidence=rule.high if in_context[rule.name] else rule.low,
                        bounding_box=interpolate_span(line, start, end),
                        line=idx,
                        source=DetectionSource.SPECIALIZED,
                    ))

        return detections[: self.max_detections]

    @staticmethod
    def _license_document(ocr_result: OCRResult) -> Optional[Detection]:
        """Whole-document detection for driver licences and ID cards."""
        if not LICENSE_INDICATORS.search(ocr_result.text):
            return None
        covering = union_box(ocr_result.lines)
        if covering is None:
            return None
        return Detection(
            type=PIIType.DRIVERS_LICENSE,
            text=LICENSE_DOCUMENT_TEXT,
            confidence=LICENSE_DOCUMENT_CONFIDENCE,
            bounding_box=pad_box(covering, LICENSE_DOCUMENT_PADDING),
            line=0,
            source=DetectionSource.SPECIALIZED,
        )


def specialized_stats(detections: list[Detection]) -> dict:
    """Detection stats plus the number of whole-document detections."""
    stats = detection_stats(detections).model_dump()
    stats["document_level"] = sum(1 for d in detections if d.text == LICENSE_DOCUMENT_TEXT)
    return stats
