"""Obscuring engine: turns a detection's text into a safe representation.

Six techniques are available:

- redaction: every character becomes a block glyph
- masking: type-aware partial reveal
- anonymization: a stand-in value from a per-type table
- encryption: XOR with the configured key, then base64
- hashing: hex digest
- tokenization: ``PII_<TYPE>_<N>`` backed by the token vault

Only encryption and tokenization are reversible, and only for values
this engine produced (ciphertexts and tokens are registered in the
vault).  Anonymization picks its table entry from a keyed BLAKE2 digest;
the key is random per engine unless ``anonymization_seed`` is set, so
stand-ins are stable within a session but cannot be matched across
sessions.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import logging
import re
import secrets
from typing import Optional, Union

from piilens.config import ObscuringSettings
from piilens.errors import ObscuringError
from piilens.models.schemas import (
    Detection,
    DetokenizeResponse,
    ObscuringResult,
    ObscuringTechnique,
    PIIType,
    TokenStatsResponse,
)
from piilens.vault.store import TokenVault

logger = logging.getLogger(__name__)

REDACTION_CHAR = "█"
ERROR_TEXT = "***ERROR***"
TABLE_SIZE = 15

_FAKE_FIRST = ["Alex", "Jordan", "Taylor", "Morgan", "Casey"]
_FAKE_LAST = ["Smith", "Lee", "Garcia"]
_FAKE_STREETS = ["Maple St", "Oak Ave", "Pine Rd", "Cedar Dr", "Elm Ln"]
_FAKE_TOWNS = ["Springfield", "Riverton", "Fairview"]

ANONYMIZATION_TABLES: dict[PIIType, list[str]] = {
    PIIType.NAME: [f"{f} {l}" for l in _FAKE_LAST for f in _FAKE_FIRST],
    PIIType.EMAIL: [f"user{i}@example.com" for i in range(1, TABLE_SIZE + 1)],
    PIIType.PHONE: [f"(555) 010-{i:04d}" for i in range(1, TABLE_SIZE + 1)],
    PIIType.ADDRESS: [
        f"{100 + 10 * i} {_FAKE_STREETS[i % 5]}, {_FAKE_TOWNS[i % 3]}, USA"
        for i in range(TABLE_SIZE)
    ],
    PIIType.SSN: [f"000-00-{i:04d}" for i in range(1, TABLE_SIZE + 1)],
    PIIType.CREDIT_CARD: [f"0000-0000-0000-{i:04d}" for i in range(1, TABLE_SIZE + 1)],
}

_ADDRESS_BODY_RE = re.compile(r"\d+\s+[A-Za-z][A-Za-z ]*")

TechniqueLike = Union[ObscuringTechnique, str, None]


class ObscuringEngine:
    """Applies obscuring techniques; owns the token vault."""

    def __init__(self, settings: Optional[ObscuringSettings] = None, vault: Optional[TokenVault] = None):
        self.settings = settings or ObscuringSettings()
        self.vault = vault or TokenVault(token_prefix=self.settings.token_prefix)
        seed = self.settings.anonymization_seed
        self._session_key = str(seed).encode() if seed is not None else secrets.token_bytes(16)

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    def obscure(self, detection: Detection, technique: TechniqueLike = None) -> ObscuringResult:
        """Obscure one detection.

        Raises ``ObscuringError`` for an unknown technique or when
        encryption is requested without a configured key.
        """
        selected = self._resolve_technique(technique)
        handler = {
            ObscuringTechnique.REDACTION: self._redact,
            ObscuringTechnique.MASKING: self._mask,
            ObscuringTechnique.ANONYMIZATION: self._anonymize,
            ObscuringTechnique.ENCRYPTION: self._encrypt,
            ObscuringTechnique.HASHING: self._hash,
            ObscuringTechnique.TOKENIZATION: self._tokenize,
        }[selected]
        return handler(detection)

    def batch_obscure(self, detections: list[Detection], technique: TechniqueLike = None) -> list[ObscuringResult]:
        return [self.obscure(d, technique) for d in detections]

    def detokenize(self, token: str) -> Optional[str]:
        mapping = self.vault.resolve_token(token)
        return mapping.original_text if mapping is not None else None

    def decrypt(self, ciphertext: str) -> Optional[str]:
        """Invert :meth:`obscure` with encryption.  ``None`` for foreign ciphertexts."""
        key = self.settings.encryption_key
        if not key or not self.vault.is_registered(ciphertext):
            return None
        try:
            raw = base64.b64decode(ciphertext, validate=True)
            return _xor(raw, key.encode("utf-8")).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            logger.warning("Could not decrypt registered ciphertext: %s", e)
            return None

    def reveal(self, obscured_text: str, technique: TechniqueLike) -> Optional[str]:
        """Recover the original for reversible techniques; ``None`` otherwise."""
        selected = self._resolve_technique(technique)
        if selected == ObscuringTechnique.ENCRYPTION:
            return self.decrypt(obscured_text)
        if selected == ObscuringTechnique.TOKENIZATION:
            return self.detokenize(obscured_text)
        return None

    def detokenize_text(self, text: str) -> DetokenizeResponse:
        """Replace every known token in free text with its original."""
        restored, count, unresolved = self.vault.resolve_all_tokens(text)
        return DetokenizeResponse(
            original_text=restored,
            tokens_replaced=count,
            unresolved_tokens=unresolved,
        )

    @staticmethod
    def available_techniques() -> list[ObscuringTechnique]:
        return list(ObscuringTechnique)

    def clear_tokens(self) -> int:
        return self.vault.clear()

    def token_stats(self) -> TokenStatsResponse:
        return self.vault.stats()

    @staticmethod
    def error_result(original_text: str, technique: TechniqueLike = None, reason: str = "Obscuring failed") -> ObscuringResult:
        try:
            selected = ObscuringTechnique(technique) if technique else ObscuringTechnique.MASKING
        except ValueError:
            selected = ObscuringTechnique.MASKING
        return ObscuringResult(
            original_text=original_text,
            obscured_text=ERROR_TEXT,
            technique=selected,
            reversible=False,
            metadata={"error": reason},
        )

    # -----------------------------------------------------------------------
    # Techniques
    # -----------------------------------------------------------------------

    def _resolve_technique(self, technique: TechniqueLike) -> ObscuringTechnique:
        if technique is None:
            return self.settings.default_technique
        try:
            return ObscuringTechnique(technique)
        except ValueError:
            raise ObscuringError(f"Unknown obscuring technique: {technique}") from None

    @staticmethod
    def _redact(detection: Detection) -> ObscuringResult:
        return ObscuringResult(
            original_text=detection.text,
            obscured_text=REDACTION_CHAR * len(detection.text),
            technique=ObscuringTechnique.REDACTION,
            metadata={"redaction_type": "full", "character": REDACTION_CHAR},
        )

    def _mask(self, detection: Detection) -> ObscuringResult:
        text = detection.text
        maskers = {
            PIIType.CREDIT_CARD: self.mask_credit_card,
            PIIType.EMAIL: self.mask_email,
            PIIType.PHONE: self.mask_phone,
            PIIType.SSN: self.mask_ssn,
            PIIType.ADDRESS: self.mask_address,
        }
        masked = maskers.get(detection.type, self.mask_generic)(text)
        return ObscuringResult(
            original_text=text,
            obscured_text=masked,
            technique=ObscuringTechnique.MASKING,
            metadata={"mask_type": detection.type.value, "mask_character": self.settings.mask_character},
        )

    def _anonymize(self, detection: Detection) -> ObscuringResult:
        digest = hashlib.blake2b(
            f"{detection.type.value}\x00{detection.text}".encode("utf-8"),
            key=self._session_key[:64],
            digest_size=8,
        ).digest()
        index = int.from_bytes(digest, "big") % TABLE_SIZE
        table = ANONYMIZATION_TABLES.get(detection.type)
        fake = table[index % len(table)] if table else f"FAKE_{detection.type.value.upper()}_{index}"
        return ObscuringResult(
            original_text=detection.text,
            obscured_text=fake,
            technique=ObscuringTechnique.ANONYMIZATION,
            metadata={"fake_data_type": detection.type.value},
        )

    def _encrypt(self, detection: Detection) -> ObscuringResult:
        key = self.settings.encryption_key
        if not key:
            raise ObscuringError("Encryption key not configured")
        raw = _xor(detection.text.encode("utf-8"), key.encode("utf-8"))
        ciphertext = base64.b64encode(raw).decode("ascii")
        self.vault.register_ciphertext(ciphertext, detection.type)
        return ObscuringResult(
            original_text=detection.text,
            obscured_text=ciphertext,
            technique=ObscuringTechnique.ENCRYPTION,
            reversible=True,
            metadata={"algorithm": "xor", "key_length": len(key)},
        )

    def _hash(self, detection: Detection) -> ObscuringResult:
        algorithm = self.settings.hash_algorithm
        h = hashlib.new(algorithm, detection.text.encode("utf-8"))
        # shake_* digests are variable length
        hexdigest = h.hexdigest(32) if algorithm.startswith("shake") else h.hexdigest()
        return ObscuringResult(
            original_text=detection.text,
            obscured_text=hexdigest,
            technique=ObscuringTechnique.HASHING,
            metadata={"algorithm": algorithm, "hash_length": len(hexdigest)},
        )

    def _tokenize(self, detection: Detection) -> ObscuringResult:
        mapping = self.vault.tokenize(detection.text, detection.type)
        return ObscuringResult(
            original_text=detection.text,
            obscured_text=mapping.token_string,
            technique=ObscuringTechnique.TOKENIZATION,
            reversible=True,
            metadata={"token_type": detection.type.value, "token_id": mapping.token_string.rsplit("_", 1)[-1]},
        )

    # -----------------------------------------------------------------------
    # Maskers
    # -----------------------------------------------------------------------

    def _mask_digits(self, text: str, keep_head: int, keep_tail: int) -> str:
        """Mask digits outside the first *keep_head* / last *keep_tail*; keep separators."""
        total = sum(ch.isdigit() for ch in text)
        out: list[str] = []
        seen = 0
        for ch in text:
            if ch.isdigit():
                visible = seen < keep_head or seen >= total - keep_tail
                out.append(ch if visible else self.settings.mask_character)
                seen += 1
            else:
                out.append(ch)
        return "".join(out)

    def mask_credit_card(self, text: str) -> str:
        if sum(ch.isdigit() for ch in text) <= 8:
            return self.mask_generic(text)
        return self._mask_digits(text, 4, 4)

    def mask_email(self, text: str) -> str:
        local, sep, domain = text.partition("@")
        if not sep or not local:
            return self.mask_generic(text)
        return f"{local[0]}{self.settings.mask_character * max(len(local) - 1, 3)}@{domain}"

    def mask_phone(self, text: str) -> str:
        if sum(ch.isdigit() for ch in text) <= 5:
            return self.mask_generic(text)
        return self._mask_digits(text, 3, 2)

    def mask_ssn(self, text: str) -> str:
        if sum(ch.isdigit() for ch in text) <= 4:
            return self.mask_generic(text)
        return self._mask_digits(text, 0, 4)

    def mask_address(self, text: str) -> str:
        mask = self.settings.mask_character
        masked, n = _ADDRESS_BODY_RE.subn(lambda m: re.sub(r"\S", mask, m.group()), text)
        return masked if n else self.mask_generic(text)

    def mask_generic(self, text: str) -> str:
        mask = self.settings.mask_character
        if len(text) <= 2:
            return mask * len(text)
        return f"{text[0]}{mask * (len(text) - 2)}{text[-1]}"


def _xor(data: bytes, key: bytes) -> bytes:
    return bytes(b ^ key[i % len(key)] for i, b in enumerate(data))
