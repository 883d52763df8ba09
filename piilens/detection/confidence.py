"""Deterministic confidence scoring for pattern matches.

Each PII type has a small rule, usually "format validated → high,
otherwise → low".  Types without a rule score
``DEFAULT_PATTERN_CONFIDENCE``.  Every score is finally clamped to
``[PATTERN_CONFIDENCE_FLOOR, PATTERN_CONFIDENCE_CEIL]``; tests depend on
the exact values, so changes here are behaviour changes.
"""

from __future__ import annotations

import re
from typing import Callable

from piilens.detection.detection_config import (
    DEFAULT_PATTERN_CONFIDENCE,
    PATTERN_CONFIDENCE_CEIL,
    PATTERN_CONFIDENCE_FLOOR,
)
from piilens.models.schemas import PIIType


# ═══════════════════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════════════════

def _digits(text: str) -> str:
    return "".join(ch for ch in text if ch.isdigit())


def luhn_check(number_str: str) -> bool:
    """Luhn algorithm: validates payment card numbers (13–19 digits)."""
    digits = [int(d) for d in number_str if d.isdigit()]
    if len(digits) < 13 or len(digits) > 19:
        return False
    checksum = 0
    for i, d in enumerate(reversed(digits)):
        if i % 2 == 1:
            d *= 2
            if d > 9:
                d -= 9
        checksum += d
    return checksum % 10 == 0


def valid_date(text: str) -> bool:
    """Check that a numeric date has plausible month (1-12) and day (1-31)."""
    parts = re.split(r"[/\-\.]", text)
    if len(parts) != 3:
        return False
    try:
        nums = [int(p) for p in parts]
    except ValueError:
        return False

    # YYYY-MM-DD
    if nums[0] > 31:
        _y, m, d = nums
    elif nums[0] > 12:
        d, m, _y = nums      # DD/MM/YYYY
    else:
        m, d, _y = nums      # MM/DD/YYYY (ambiguous dates accepted)

    return 1 <= m <= 12 and 1 <= d <= 31


def iban_mod97(iban_str: str) -> bool:
    """Validate IBAN via ISO 7064 modulo-97 check."""
    clean = iban_str.replace(" ", "").replace("-", "").upper()
    if len(clean) < 15 or len(clean) > 34:
        return False
    if not clean[:2].isalpha() or not clean[2:4].isdigit():
        return False
    # Move first 4 chars to end, convert letters to numbers (A=10, B=11…)
    rearranged = clean[4:] + clean[:4]
    numeric = ""
    for ch in rearranged:
        if ch.isdigit():
            numeric += ch
        elif ch.isalpha():
            numeric += str(ord(ch) - ord("A") + 10)
        else:
            return False
    return int(numeric) % 97 == 1


def aba_routing_check(text: str) -> bool:
    """ABA routing number checksum (weights 3-7-1)."""
    digits = [int(d) for d in _digits(text)]
    if len(digits) != 9:
        return False
    weights = (3, 7, 1) * 3
    return sum(w * d for w, d in zip(weights, digits)) % 10 == 0


def valid_ipv4(text: str) -> bool:
    parts = text.split(".")
    if len(parts) != 4:
        return False
    return all(p.isdigit() and 0 <= int(p) <= 255 for p in parts)


_EMAIL_STRICT_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_MAC_RE = re.compile(r"^[0-9A-Fa-f]{2}(?:[:-][0-9A-Fa-f]{2}){5}$")
_VIN_RE = re.compile(r"^[A-HJ-NPR-Z0-9]{17}$")
_TAX_ID_RE = re.compile(r"^\d{2}-\d{7}$")
_PASSPORT_RE = re.compile(r"^[A-Z]{1,2}\d{6,9}$")
_CRYPTO_RE = re.compile(
    r"^(?:0x[a-fA-F0-9]{40}|bc1[a-z0-9]{25,39}|[13][a-km-zA-HJ-NP-Z1-9]{25,34})$"
)
_HANDLE_RE = re.compile(r"^@?[A-Za-z0-9_]{3,15}$")
_ADDRESS_CONTEXT_RE = re.compile(r"\b(?:address|street|road)\b", re.IGNORECASE)
_VEHICLE_CONTEXT_RE = re.compile(r"\b(?:plate|vehicle|car)\b", re.IGNORECASE)


def valid_vin(text: str) -> bool:
    """17 VIN characters with both letters and digits present."""
    return bool(_VIN_RE.match(text)) and any(c.isalpha() for c in text) and any(
        c.isdigit() for c in text
    )


# ═══════════════════════════════════════════════════════════════════════════
# Scoring rules
# ═══════════════════════════════════════════════════════════════════════════

def _score_credit_card(text: str, context: str) -> float:
    return 0.95 if luhn_check(text) else 0.75


def _score_phone(text: str, context: str) -> float:
    return 0.90 if 10 <= len(_digits(text)) <= 15 else 0.60


def _score_email(text: str, context: str) -> float:
    return 0.85 if _EMAIL_STRICT_RE.match(text) else 0.60


def _score_ssn(text: str, context: str) -> float:
    return 0.90 if len(_digits(text)) == 9 else 0.60


def _score_address(text: str, context: str) -> float:
    return 0.80 if _ADDRESS_CONTEXT_RE.search(context) else 0.65


def _score_license_plate(text: str, context: str) -> float:
    return 0.85 if _VEHICLE_CONTEXT_RE.search(context) else 0.70


def _score_street_sign(text: str, context: str) -> float:
    if 2 <= len(text) <= 6:
        return 0.75 + len(text) * 0.02
    return DEFAULT_PATTERN_CONFIDENCE


def _score_numerical(text: str, context: str) -> float:
    n = len(_digits(text))
    if 4 <= n <= 12:
        return 0.80 + n * 0.01
    return DEFAULT_PATTERN_CONFIDENCE


def _score_barcode(text: str, context: str) -> float:
    if 6 <= len(text) <= 20:
        return 0.80 + len(text) * 0.005
    return DEFAULT_PATTERN_CONFIDENCE


def _score_passport(text: str, context: str) -> float:
    return 0.90 if _PASSPORT_RE.match(text) else 0.65


def _score_ip(text: str, context: str) -> float:
    return 0.90 if valid_ipv4(text) else 0.60


def _score_mac(text: str, context: str) -> float:
    return 0.90 if _MAC_RE.match(text) else 0.60


def _score_vin(text: str, context: str) -> float:
    return 0.90 if valid_vin(text) else 0.65


def _score_bank_account(text: str, context: str) -> float:
    return 0.85 if 8 <= len(_digits(text)) <= 12 else 0.60


def _score_tax_id(text: str, context: str) -> float:
    return 0.90 if _TAX_ID_RE.match(text) else 0.65


def _score_crypto(text: str, context: str) -> float:
    return 0.90 if _CRYPTO_RE.match(text) else 0.65


def _score_handle(text: str, context: str) -> float:
    return 0.75 if _HANDLE_RE.match(text) else 0.60


def _fixed(value: float) -> Callable[[str, str], float]:
    return lambda text, context: value


_RULES: dict[PIIType, Callable[[str, str], float]] = {
    PIIType.CREDIT_CARD: _score_credit_card,
    PIIType.PHONE: _score_phone,
    PIIType.EMAIL: _score_email,
    PIIType.SSN: _score_ssn,
    PIIType.ADDRESS: _score_address,
    PIIType.LICENSE_PLATE: _score_license_plate,
    PIIType.STREET_SIGN: _score_street_sign,
    PIIType.NUMERICAL_DATA: _score_numerical,
    PIIType.SENSITIVE_DATA: _fixed(0.85),
    PIIType.BARCODE: _score_barcode,
    PIIType.PASSPORT_NUMBER: _score_passport,
    PIIType.MEDICAL_INFO: _fixed(0.85),
    PIIType.FINANCIAL_DATA: _fixed(0.80),
    PIIType.BIOMETRIC_DATA: _fixed(0.85),
    PIIType.IP_ADDRESS: _score_ip,
    PIIType.MAC_ADDRESS: _score_mac,
    PIIType.VEHICLE_VIN: _score_vin,
    PIIType.INSURANCE_NUMBER: _fixed(0.80),
    PIIType.BANK_ACCOUNT: _score_bank_account,
    PIIType.TAX_ID: _score_tax_id,
    PIIType.STUDENT_ID: _fixed(0.80),
    PIIType.EMPLOYEE_ID: _fixed(0.80),
    PIIType.PATIENT_ID: _fixed(0.85),
    PIIType.PRESCRIPTION_DATA: _fixed(0.85),
    PIIType.HEALTH_INSURANCE: _fixed(0.85),
    PIIType.CRYPTO_WALLET: _score_crypto,
    PIIType.SOCIAL_MEDIA_HANDLE: _score_handle,
}


def score(pii_type: PIIType, text: str, context: str = "") -> float:
    """Confidence for *text* matched as *pii_type*, clamped to [0.60, 0.95]."""
    rule = _RULES.get(pii_type)
    raw = rule(text, context) if rule else DEFAULT_PATTERN_CONFIDENCE
    return round(min(PATTERN_CONFIDENCE_CEIL, max(PATTERN_CONFIDENCE_FLOOR, raw)), 4)
