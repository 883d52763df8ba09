"""Prompt templates for LLM detection and verification.

The document text is always placed between a ``TEXT:`` line and an
``END TEXT`` line so that providers (and the offline mock) can find it.
"""

from __future__ import annotations

import json
import re

from piilens.detection.detection_config import LLM_MAX_PROMPT_CHARS
from piilens.models.schemas import Detection, PIIType

TEXT_START = "TEXT:"
TEXT_END = "END TEXT"

_TYPE_LIST = ", ".join(t.value for t in PIIType)

DETECTION_PROMPT = """\
You are a PII detection system analysing text extracted from a scanned document.
Identify every piece of personally identifiable information.

Allowed types: {types}
{context}
Rules:
- "text" MUST be the exact substring from the document. Do not paraphrase.
- "confidence" is a number between 0 and 1.
- Skip headers, boilerplate and form labels.

Return ONLY a JSON array:
[{{"type": "email", "text": "exact text", "confidence": 0.9}}]
No PII found: []

{start}
{text}
{end}
"""

VERIFICATION_PROMPT = """\
You are verifying PII candidates found by pattern matching in a scanned document.
For each candidate decide whether it really is PII of the stated type.
You may also add PII the candidates missed.

Allowed types: {types}

CANDIDATES:
{candidates}

Return ONLY a JSON array, one entry per candidate you checked and per new finding:
[{{"type": "ssn", "text": "exact text", "confidence": 0.95, "verified": true}}]
Use "verified": false for candidates that are not PII.

{start}
{text}
{end}
"""


def sanitize_text(text: str) -> str:
    """Strip angle brackets, flatten newlines, cap length."""
    cleaned = re.sub(r"[<>]", "", text)
    cleaned = re.sub(r"\s*\n\s*", " ", cleaned)
    return cleaned[:LLM_MAX_PROMPT_CHARS]


def build_detection_prompt(text: str, context: str | None = None) -> str:
    context_line = f"\nDocument context: {sanitize_text(context)}\n" if context else ""
    return DETECTION_PROMPT.format(
        types=_TYPE_LIST,
        context=context_line,
        start=TEXT_START,
        text=sanitize_text(text),
        end=TEXT_END,
    )


def build_verification_prompt(text: str, existing: list[Detection]) -> str:
    candidates = json.dumps(
        [{"type": d.type.value, "text": d.text, "confidence": d.confidence} for d in existing],
        ensure_ascii=False,
    )
    return VERIFICATION_PROMPT.format(
        types=_TYPE_LIST,
        candidates=candidates,
        start=TEXT_START,
        text=sanitize_text(text),
        end=TEXT_END,
    )


def extract_document_text(prompt: str) -> str:
    """Recover the document section of a prompt built by this module."""
    start = prompt.rfind(TEXT_START + "\n")
    end = prompt.rfind("\n" + TEXT_END)
    if start < 0 or end <= start:
        return prompt
    return prompt[start + len(TEXT_START) + 1 : end]
