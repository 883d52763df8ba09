"""In-memory token vault: token / ciphertext ↔ original text mappings.

Tokens look like ``PII_CREDIT_CARD_7``.  The numeric suffix comes from a
single counter shared by every type, so tokens are unique for the life of
the vault (or until :meth:`TokenVault.clear`, which also resets the
counter).  The map only ever grows between clears; its size is exposed
through :meth:`TokenVault.stats`.
"""

from __future__ import annotations

import logging
import re
import threading
from typing import Optional

from piilens.models.schemas import (
    ObscuringTechnique,
    PIIType,
    TokenMapping,
    TokenStatsResponse,
)

logger = logging.getLogger(__name__)


class TokenVault:
    """Thread-safe token map.  One lock guards both the map and the counter."""

    def __init__(self, token_prefix: str = "PII_"):
        self.token_prefix = token_prefix
        self._tokens: dict[str, TokenMapping] = {}
        self._counter = 0
        self._lock = threading.Lock()
        self._token_re = re.compile(
            r"(?<![A-Za-z0-9])" + re.escape(token_prefix) + r"[A-Z][A-Z_]*_\d+\b"
        )

    # -----------------------------------------------------------------------
    # Token operations
    # -----------------------------------------------------------------------

    def generate_token_string(self, pii_type: PIIType) -> str:
        """Next token for *pii_type*, e.g. ``PII_SSN_3``.  Bumps the counter."""
        type_str = pii_type.value if isinstance(pii_type, PIIType) else str(pii_type)
        with self._lock:
            self._counter += 1
            return f"{self.token_prefix}{type_str.upper()}_{self._counter}"

    def store_token(self, mapping: TokenMapping) -> None:
        with self._lock:
            self._tokens[mapping.token_string] = mapping

    def tokenize(self, original_text: str, pii_type: PIIType) -> TokenMapping:
        """Generate, store and return a fresh token for *original_text*."""
        mapping = TokenMapping(
            token_string=self.generate_token_string(pii_type),
            original_text=original_text,
            pii_type=pii_type,
        )
        self.store_token(mapping)
        return mapping

    def register_ciphertext(self, ciphertext: str, pii_type: PIIType) -> None:
        """Remember that *ciphertext* was produced here; the original is not kept."""
        self.store_token(TokenMapping(
            token_string=ciphertext,
            pii_type=pii_type,
            technique=ObscuringTechnique.ENCRYPTION,
        ))

    def is_registered(self, ciphertext: str) -> bool:
        with self._lock:
            mapping = self._tokens.get(ciphertext)
        return mapping is not None and mapping.technique == ObscuringTechnique.ENCRYPTION

    def resolve_token(self, token_string: str) -> Optional[TokenMapping]:
        """Look up a token; ``None`` for unknown tokens and ciphertexts."""
        with self._lock:
            mapping = self._tokens.get(token_string)
        if mapping is None or mapping.technique != ObscuringTechnique.TOKENIZATION:
            return None
        return mapping

    def resolve_all_tokens(self, text: str) -> tuple[str, int, list[str]]:
        """
        Find and replace all tokens in a text with their original values.

        Returns:
            (replaced_text, tokens_replaced_count, unresolved_tokens)
        """
        unresolved: list[str] = []
        replaced = 0

        def _swap(match: re.Match) -> str:
            nonlocal replaced
            token = match.group()
            mapping = self.resolve_token(token)
            if mapping is None or mapping.original_text is None:
                if token not in unresolved:
                    unresolved.append(token)
                return token
            replaced += 1
            return mapping.original_text

        result = self._token_re.sub(_swap, text)
        return result, replaced, unresolved

    # -----------------------------------------------------------------------
    # Maintenance
    # -----------------------------------------------------------------------

    def clear(self) -> int:
        """Forget every mapping.  The counter keeps climbing so a token is never reissued."""
        with self._lock:
            count = len(self._tokens)
            self._tokens.clear()
        logger.info("Token vault cleared (%d mappings)", count)
        return count

    def stats(self) -> TokenStatsResponse:
        with self._lock:
            return TokenStatsResponse(size=len(self._tokens), counter=self._counter)
