"""Declarative regex pattern definitions for the pattern engine.

Each entry is ``(pattern, pii_type, flags)``.  Entries are evaluated in
list order, and the order of the first entry of each type is also the
classification order used for vision text regions.

Generic categories are label-anchored: the label (``PLATE``, ``MRN``,
``POLICY NO`` ...) is matched case-insensitively through a scoped
``(?i:...)`` group, while the ``value`` group stays case-sensitive.  When
a pattern has a ``value`` group, only that group becomes the detection
text.  Bare digit runs never fall through to a catch-all type.
"""

from __future__ import annotations

import re

from piilens.models.schemas import PIIType

_NOFLAGS = 0
_IC = re.IGNORECASE

# Label suffix shared by most "<WHAT> NO: <value>" patterns.
_NUM = r"\s*(?i:no\.?|number|#|id)"
_SEP = r"\s*[:#=]?\s*"
# Values must carry at least one digit so bare headers ("PASSPORT NUMBER") never match.
_HAS_DIGIT = r"(?=[A-Z-]*\d)"
_ID_VALUE = r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9][A-Z0-9-]{3,14})\b"


PATTERNS: list[tuple[str, PIIType, int]] = [

    # ──────────────────────────────────────────────────────────────────
    # Payment cards (Luhn-scored)
    # ──────────────────────────────────────────────────────────────────
    (r"\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b", PIIType.CREDIT_CARD, _NOFLAGS),
    # Amex 4-6-5
    (r"\b\d{4}[- ]?\d{6}[- ]?\d{5}\b", PIIType.CREDIT_CARD, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Government identifiers
    # ──────────────────────────────────────────────────────────────────
    (r"\b\d{3}-\d{2}-\d{4}\b", PIIType.SSN, _NOFLAGS),
    (r"\b\d{3} \d{2} \d{4}\b", PIIType.SSN, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Contact details
    # ──────────────────────────────────────────────────────────────────
    (r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b", PIIType.EMAIL, _NOFLAGS),

    (r"(?<!\d)\(\d{3}\)\s*\d{3}[-.\s]?\d{4}\b", PIIType.PHONE, _NOFLAGS),
    (r"\+\d{1,3}[-.\s]?\d{3}[-.\s]?\d{3}[-.\s]?\d{4}\b", PIIType.PHONE, _NOFLAGS),
    (r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b", PIIType.PHONE, _NOFLAGS),

    (r"\b\d+\s+[A-Za-z][A-Za-z\s]*?\s(?:Street|St|Avenue|Ave|Road|Rd|Boulevard|Blvd"
     r"|Lane|Ln|Drive|Dr|Court|Ct|Place|Pl|Way|Highway|Hwy)\b\.?",
     PIIType.ADDRESS, _IC),
    (r"\bP\.?\s?O\.?\s+Box\s+\d+\b", PIIType.ADDRESS, _IC),

    (r"\b(?i:zip(?:\s*code)?)" + _SEP + r"(?P<value>\d{5}(?:-\d{4})?)\b",
     PIIType.ZIP_CODE, _NOFLAGS),
    (r"\b[A-Z]{2}\s+(?P<value>\d{5}(?:-\d{4})?)\b", PIIType.ZIP_CODE, _NOFLAGS),
    (r"\b\d{5}-\d{4}\b", PIIType.ZIP_CODE, _NOFLAGS),

    (r"(?<![\w@.])@[A-Za-z0-9_]{3,15}\b", PIIType.SOCIAL_MEDIA_HANDLE, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Identity documents
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?i:dln?|lic(?:ense)?" + _NUM + r")" + _SEP
     + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9][A-Z0-9-]{4,14})\b",
     PIIType.DRIVERS_LICENSE, _NOFLAGS),
    # Hawaii-style 01-47-87441
    (r"\b\d{2}-\d{2}-\d{5}\b", PIIType.DRIVERS_LICENSE, _NOFLAGS),
    # California-style D1234567
    (r"\b[A-Z]\d{7}\b", PIIType.DRIVERS_LICENSE, _NOFLAGS),
    # Physical description block printed on licences
    (r"\b(?:HGT|HT|WGT|WT|HAIR|EYES|SEX)\s*[:=]\s*(?P<value>[A-Z0-9'\"-]{1,6})",
     PIIType.DRIVERS_LICENSE, _NOFLAGS),

    (r"\b(?i:id(?:entification)?\s*(?:card\s*)?(?:no\.?|number|#))" + _SEP
     + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9][A-Z0-9-]{4,14})\b",
     PIIType.ID_CARD, _NOFLAGS),

    (r"\b(?i:passport)(?:\s*(?i:no\.?|number|#))?" + _SEP
     + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9]{6,9})\b",
     PIIType.PASSPORT_NUMBER, _NOFLAGS),
    (r"\b[A-Z]\d{8}\b", PIIType.PASSPORT_NUMBER, _NOFLAGS),

    (r"\b(?:DRIVER'?S?\s+LICEN[CS]E|ID(?:ENTIFICATION)?\s+CARD|PASSPORT"
     r"|SOCIAL\s+SECURITY\s+CARD|BIRTH\s+CERTIFICATE)\b",
     PIIType.DOCUMENT_ID, _IC),
    (r"\b(?i:document" + _NUM + r"|doc\s*#)" + _SEP
     + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9][A-Z0-9-]{4,19})\b",
     PIIType.DOCUMENT_ID, _NOFLAGS),

    (r"\b(?i:dob|d\.o\.b\.?|date\s+of\s+birth|birth\s*date|born)\s*[:.]?\s*"
     r"(?P<value>\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{4}-\d{2}-\d{2})\b",
     PIIType.DATE_OF_BIRTH, _NOFLAGS),

    (r"\b(?i:iss(?:ued)?|exp(?:ires|iry|iration)?|valid\s+(?:until|thru))\s*[:.]?\s*"
     r"(?P<value>\d{1,2}[/-]\d{1,2}[/-]\d{2,4}|\d{1,2}/\d{2})\b",
     PIIType.SENSITIVE_DATA, _NOFLAGS),
    (r"\b(?i:restr(?:ictions)?|endorsements?)\s*[:=]\s*(?P<value>[A-Z0-9]{1,5})\b",
     PIIType.SENSITIVE_DATA, _NOFLAGS),

    (r"\b\d{1,2}/\d{1,2}/\d{4}\b", PIIType.NUMERICAL_DATA, _NOFLAGS),
    (r"\b\d{4}-\d{2}-\d{2}\b", PIIType.NUMERICAL_DATA, _NOFLAGS),
    (r"\b\d{1,2}-\d{1,2}-\d{4}\b", PIIType.NUMERICAL_DATA, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Vehicles and road signage
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?i:license\s+plate|plate|tag)(?:\s*(?i:no\.?|number|#))?" + _SEP
     + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9]{2,4}[- ]?[A-Z0-9]{2,4})\b",
     PIIType.LICENSE_PLATE, _NOFLAGS),

    (r"\b[A-HJ-NPR-Z0-9]{17}\b", PIIType.VEHICLE_VIN, _NOFLAGS),

    (r"\b(?:I|US|SR|RT|ROUTE|HWY|HIGHWAY)[- ]\d{1,4}\b", PIIType.STREET_SIGN, _NOFLAGS),
    (r"\b(?:STOP|YIELD|ONE WAY|DO NOT ENTER|NO PARKING)\b", PIIType.STREET_SIGN, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Financial
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?i:account|acct|a/c)(?:\s*(?i:no\.?|number|#))?" + _SEP + r"(?P<value>\d{6,17})\b",
     PIIType.BANK_ACCOUNT, _NOFLAGS),

    (r"\b(?i:routing|aba|swift|bic)(?:\s*(?i:no\.?|number|code|#))?" + _SEP
     + r"(?P<value>[A-Z0-9]{8,11})\b",
     PIIType.FINANCIAL_DATA, _NOFLAGS),
    (r"\b(?i:credit\s+score|fico)\s*[:=]?\s*(?P<value>\d{3})\b", PIIType.FINANCIAL_DATA, _NOFLAGS),
    (r"\b(?i:salary|income|balance)\s*[:=]\s*(?P<value>\$?\d[\d,]*(?:\.\d{2})?)",
     PIIType.FINANCIAL_DATA, _NOFLAGS),

    (r"\b\d{2}-\d{7}\b", PIIType.TAX_ID, _NOFLAGS),
    (r"\b(?i:ein|fein|tin|tax\s*id)(?:\s*(?i:no\.?|number|#))?" + _SEP
     + r"(?P<value>\d{2}-?\d{7})\b",
     PIIType.TAX_ID, _NOFLAGS),

    (r"\b0x[a-fA-F0-9]{40}\b", PIIType.CRYPTO_WALLET, _NOFLAGS),
    (r"\b(?:bc1[a-z0-9]{25,39}|[13][a-km-zA-HJ-NP-Z1-9]{25,34})\b", PIIType.CRYPTO_WALLET, _NOFLAGS),

    (r"\b(?i:insurance|policy|claim)" + _NUM + _SEP
     + r"(?P<value>" + _HAS_DIGIT + r"[A-Z0-9][A-Z0-9-]{5,19})\b",
     PIIType.INSURANCE_NUMBER, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Medical
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?i:patient)" + _NUM + _SEP + _ID_VALUE, PIIType.PATIENT_ID, _NOFLAGS),
    (r"\b(?i:mrn)" + _SEP + _ID_VALUE, PIIType.PATIENT_ID, _NOFLAGS),

    (r"\b(?i:member|subscriber|group)" + _NUM + _SEP + _ID_VALUE,
     PIIType.HEALTH_INSURANCE, _NOFLAGS),
    (r"\b(?i:medicare|medicaid)(?:" + _NUM + r")?" + _SEP
     + r"(?P<value>[A-Z0-9][A-Z0-9-]{8,14})\b",
     PIIType.HEALTH_INSURANCE, _NOFLAGS),

    (r"\b(?i:rx|prescription)(?:\s*(?i:no\.?|number))?\s*[:#]\s*" + _ID_VALUE,
     PIIType.PRESCRIPTION_DATA, _NOFLAGS),
    (r"\b(?i:refills?|dosage|qty|quantity)\s*[:=]\s*(?P<value>[A-Za-z0-9 .]{1,30}?)(?=[,;]|$)",
     PIIType.PRESCRIPTION_DATA, _NOFLAGS),

    (r"\b(?i:diagnosis|diagnosed\s+with|condition|allerg(?:y|ies)|blood\s+type|medication)"
     r"\s*[:=]\s*(?P<value>[A-Za-z0-9+\- ]{2,40}?)(?=[,;.]|$)",
     PIIType.MEDICAL_INFO, _NOFLAGS),
    (r"\b(?i:icd(?:-?10)?)" + _SEP + r"(?P<value>[A-TV-Z]\d{2}(?:\.\d{1,4})?)\b",
     PIIType.MEDICAL_INFO, _NOFLAGS),

    (r"\b(?i:fingerprint|retinal?|iris|dna|biometric|facial)(?:\s*(?i:id|scan|sample|template|hash))?"
     r"\s*[:#=]\s*(?P<value>[A-Za-z0-9-]{4,})",
     PIIType.BIOMETRIC_DATA, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Education / employment
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?i:student)" + _NUM + _SEP + _ID_VALUE, PIIType.STUDENT_ID, _NOFLAGS),
    (r"\b(?i:employee|emp|staff)" + _NUM + _SEP + _ID_VALUE, PIIType.EMPLOYEE_ID, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Network identifiers
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?:\d{1,3}\.){3}\d{1,3}\b", PIIType.IP_ADDRESS, _NOFLAGS),
    (r"\b[0-9A-Fa-f]{2}(?:[:-][0-9A-Fa-f]{2}){5}\b", PIIType.MAC_ADDRESS, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Barcodes
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?i:barcode|upc|ean)" + _SEP + r"(?P<value>\d{8,14})\b", PIIType.BARCODE, _NOFLAGS),
    (r"\b\d{12,14}\b", PIIType.BARCODE, _NOFLAGS),
    # Code 39 with start/stop asterisks
    (r"\*[A-Z0-9\-. $/+%]{6,}\*", PIIType.BARCODE, _NOFLAGS),

    # ──────────────────────────────────────────────────────────────────
    # Names (last: broadest pattern)
    # ──────────────────────────────────────────────────────────────────
    (r"\b(?i:name)\s*[:=]\s*(?P<value>[A-Z][A-Za-z'\-]+(?:\s+[A-Z][A-Za-z'\-]+){0,2})",
     PIIType.NAME, _NOFLAGS),
    (r"\b[A-Z][a-z]+(?:\s+[A-Z]\.)?\s+[A-Z][a-z]+\b", PIIType.NAME, _NOFLAGS),
]


def _compile_by_type(
    entries: list[tuple[str, PIIType, int]],
) -> dict[PIIType, list[re.Pattern]]:
    compiled: dict[PIIType, list[re.Pattern]] = {}
    for pattern, pii_type, flags in entries:
        compiled.setdefault(pii_type, []).append(re.compile(pattern, flags))
    return compiled


COMPILED_PATTERNS: dict[PIIType, list[re.Pattern]] = _compile_by_type(PATTERNS)
"""Patterns grouped by type, types in first-appearance order."""

ADDRESS_RE = COMPILED_PATTERNS[PIIType.ADDRESS][0]
"""Street-address regex, also used by the region classifier for documents."""
