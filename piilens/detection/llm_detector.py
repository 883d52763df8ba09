"""LLM-based PII detection and verification layer.

Providers are tried in priority order.  Each call runs under
``asyncio.wait_for`` with the per-provider timeout, and failures are
retried with exponential backoff, except that:

- authentication failures are never retried
- rate-limit failures wait ``2 ** attempt`` seconds before the next try

The reply is expected to be a JSON array but models like to wrap it in
prose or code fences, so the first balanced top-level array is cut out
of the reply before decoding.  Every element then goes through the
``LLMFinding`` model; elements missing ``type``/``text``/``confidence``
or carrying an unknown type are dropped, never patched up.

Detection stops at the first provider whose findings are confident
enough, unless provider ensembling is on, in which case only findings
reported by ≥2 providers survive.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, StrictFloat, StrictInt, ValidationError, field_validator

from piilens.config import LLMSettings
from piilens.detection.bbox_utils import locate_text
from piilens.detection.detection_config import (
    LLM_DEFAULT_BOX,
    LLM_ENSEMBLE_BOOST,
    MIN_AGREEING_SOURCES,
)
from piilens.errors import LLMError, ResponseParseError
from piilens.llm.prompts import build_detection_prompt, build_verification_prompt
from piilens.llm.providers import LLMErrorKind, LLMProvider, LLMResponse
from piilens.models.schemas import (
    BoundingBox,
    Detection,
    DetectionSource,
    OCRLine,
    PIIType,
    clamp_confidence,
)

logger = logging.getLogger(__name__)


class LLMFinding(BaseModel):
    """One validated element of an LLM reply."""
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: PIIType
    text: str = Field(min_length=1)
    confidence: Union[StrictFloat, StrictInt]
    bounding_box: Optional[BoundingBox] = Field(default=None, alias="boundingBox")
    verified: Optional[bool] = None

    @field_validator("type", mode="before")
    @classmethod
    def _normalise_type(cls, v: Any) -> Any:
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("text")
    @classmethod
    def _strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("empty text")
        return v


class LLMOutcome(NamedTuple):
    detections: list[Detection]
    provider: str


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def _balanced_array_end(text: str, start: int) -> int:
    """Index just past the ``]`` closing the array opened at *start*, or -1."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "[":
            depth += 1
        elif ch == "]":
            depth -= 1
            if depth == 0:
                return i + 1
    return -1


def extract_json_array(response: str) -> list:
    """Return the first top-level JSON array embedded in *response*."""
    pos = response.find("[")
    while pos >= 0:
        end = _balanced_array_end(response, pos)
        if end > 0:
            try:
                value = json.loads(response[pos:end])
            except json.JSONDecodeError:
                value = None
            if isinstance(value, list):
                return value
        pos = response.find("[", pos + 1)
    raise ResponseParseError(
        "No JSON array in LLM response",
        details={"response_head": response[:200]},
    )


def parse_findings(response: str, threshold: float) -> list[LLMFinding]:
    """Decode, validate, clamp and threshold an LLM reply."""
    findings: list[LLMFinding] = []
    for item in extract_json_array(response):
        try:
            finding = LLMFinding.model_validate(item)
        except ValidationError as e:
            logger.debug("Dropping invalid LLM finding: %s", e.errors()[0]["msg"])
            continue
        finding.confidence = clamp_confidence(finding.confidence)
        if finding.confidence < threshold:
            continue
        findings.append(finding)
    return findings


def _mean_confidence(detections: list[Detection]) -> float:
    if not detections:
        return 0.0
    return sum(d.confidence for d in detections) / len(detections)


# ---------------------------------------------------------------------------
# Detector
# ---------------------------------------------------------------------------

class LLMDetector:
    """Multi-provider detection / verification with retry and fallback."""

    def __init__(
        self,
        providers: list[LLMProvider],
        settings: Optional[LLMSettings] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.providers = sorted(providers, key=lambda p: p.priority)
        self.settings = settings or LLMSettings()
        self._sleep = sleep
        self._stats: dict[str, dict[str, int]] = {
            p.name: {"calls": 0, "successes": 0, "failures": 0, "retries": 0}
            for p in self.providers
        }

    @property
    def enabled_providers(self) -> list[LLMProvider]:
        return [p for p in self.providers if p.enabled]

    # ── Public API ────────────────────────────────────────────────

    async def detect(
        self,
        text: str,
        context: Optional[str] = None,
        lines: Optional[list[OCRLine]] = None,
    ) -> LLMOutcome:
        """Find PII in *text*; raises ``LLMError`` if no provider answered."""
        prompt = build_detection_prompt(text, context)
        results: list[tuple[str, list[Detection]]] = []
        failures: dict[str, str] = {}

        for provider in self.enabled_providers:
            findings, error = await self._query(provider, prompt)
            if findings is None:
                failures[provider.name] = error or "unknown error"
                continue

            detections = self._dedup([self._to_detection(f, lines) for f in findings])
            results.append((provider.name, detections))

            if (
                detections
                and not self.settings.ensemble_providers
                and _mean_confidence(detections) > self.settings.early_stop_confidence
            ):
                logger.info("LLM detection: %d findings from %s", len(detections), provider.name,
                            extra={"layer": "llm", "provider": provider.name, "detections": len(detections)})
                return LLMOutcome(detections, provider.name)

        if not results:
            raise LLMError(
                "All LLM providers failed" if failures else "No LLM provider enabled",
                details={"providers": failures},
            )

        if self.settings.ensemble_providers and len(results) > 1:
            merged = self._ensemble(results)
            return LLMOutcome(merged, "+".join(name for name, _ in results))

        name, best = max(results, key=lambda r: _mean_confidence(r[1]))
        return LLMOutcome(best, name)

    async def verify(
        self,
        text: str,
        existing: list[Detection],
        lines: Optional[list[OCRLine]] = None,
    ) -> LLMOutcome:
        """Ask the first responsive provider to confirm *existing* detections.

        Echoed candidates become verified LLM detections; candidates the
        model marks ``verified: false`` are withdrawn; anything new is
        returned unverified.
        """
        prompt = build_verification_prompt(text, existing)
        failures: dict[str, str] = {}

        for provider in self.enabled_providers:
            findings, error = await self._query(provider, prompt)
            if findings is None:
                failures[provider.name] = error or "unknown error"
                continue
            return LLMOutcome(self._apply_verification(findings, existing, lines), provider.name)

        raise LLMError(
            "All LLM providers failed verification" if failures else "No LLM provider enabled",
            details={"providers": failures},
        )

    def provider_stats(self) -> list[dict[str, Any]]:
        return [{**p.info(), **self._stats.get(p.name, {})} for p in self.providers]

    async def aclose(self) -> None:
        for provider in self.providers:
            await provider.aclose()

    # ── Internals ─────────────────────────────────────────────────

    async def _query(
        self, provider: LLMProvider, prompt: str,
    ) -> tuple[Optional[list[LLMFinding]], Optional[str]]:
        """Call *provider* with retries; return ``(findings, None)`` or ``(None, error)``."""
        stats = self._stats.setdefault(
            provider.name, {"calls": 0, "successes": 0, "failures": 0, "retries": 0},
        )
        max_retries = self.settings.max_retries
        last_error: Optional[str] = None

        for attempt in range(max_retries + 1):
            stats["calls"] += 1
            try:
                response = await asyncio.wait_for(
                    provider.call(prompt), timeout=self.settings.provider_timeout,
                )
            except asyncio.TimeoutError:
                response = LLMResponse(
                    False,
                    error=f"no response within {self.settings.provider_timeout}s",
                    error_kind=LLMErrorKind.TIMEOUT,
                )

            kind = response.error_kind
            if response.success:
                try:
                    findings = parse_findings(response.data, self.settings.confidence_threshold)
                except ResponseParseError as e:
                    last_error = e.message
                    kind = LLMErrorKind.INVALID_RESPONSE
                else:
                    stats["successes"] += 1
                    return findings, None
            else:
                last_error = response.error

            stats["failures"] += 1
            if kind == LLMErrorKind.AUTH:
                logger.warning("%s rejected credentials; not retrying", provider.name)
                break
            if attempt >= max_retries:
                break

            if kind == LLMErrorKind.RATE_LIMIT:
                wait = float(2 ** attempt)
            else:
                wait = self.settings.retry_base_delay * (2 ** attempt)
            logger.warning(
                "%s failed (%s, attempt %d/%d), retrying in %.1fs",
                provider.name, kind.value if kind else "error", attempt + 1, max_retries + 1, wait,
                extra={"layer": "llm", "provider": provider.name},
            )
            stats["retries"] += 1
            await self._sleep(wait)

        return None, last_error

    @staticmethod
    def _to_detection(
        finding: LLMFinding,
        lines: Optional[list[OCRLine]],
        verified: bool = False,
    ) -> Detection:
        line_idx = 0
        located = locate_text(finding.text, lines) if lines else None
        if located is not None:
            line_idx, box = located
        elif finding.bounding_box is not None:
            box = finding.bounding_box
        else:
            x, y, w, h = LLM_DEFAULT_BOX
            box = BoundingBox(x=x, y=y, width=w, height=h)
        return Detection(
            type=finding.type,
            text=finding.text,
            confidence=finding.confidence,
            bounding_box=box,
            line=line_idx,
            source=DetectionSource.LLM,
            verified=verified,
        )

    @staticmethod
    def _dedup(detections: list[Detection]) -> list[Detection]:
        best: dict[tuple[PIIType, str], Detection] = {}
        for det in detections:
            current = best.get(det.key)
            if current is None or det.confidence > current.confidence:
                best[det.key] = det
        return list(best.values())

    @staticmethod
    def _ensemble(results: list[tuple[str, list[Detection]]]) -> list[Detection]:
        """Keep findings reported by ≥2 providers, boosting their confidence."""
        groups: dict[tuple[PIIType, str], list[tuple[str, Detection]]] = {}
        for name, detections in results:
            for det in detections:
                groups.setdefault(det.key, []).append((name, det))

        merged: list[Detection] = []
        for members in groups.values():
            if len({name for name, _ in members}) < MIN_AGREEING_SOURCES:
                continue
            best = max((d for _, d in members), key=lambda d: d.confidence)
            mean = sum(d.confidence for _, d in members) / len(members)
            merged.append(best.model_copy(update={
                "confidence": clamp_confidence(min(mean * LLM_ENSEMBLE_BOOST, 1.0)),
                "verified": True,
            }))
        merged.sort(key=lambda d: d.confidence, reverse=True)
        return merged

    def _apply_verification(
        self,
        findings: list[LLMFinding],
        existing: list[Detection],
        lines: Optional[list[OCRLine]],
    ) -> list[Detection]:
        by_key = {d.key: d for d in existing}
        out: dict[tuple[PIIType, str], Detection] = {}
        for finding in findings:
            key = (finding.type, finding.text)
            candidate = by_key.get(key)
            if candidate is None:
                out.setdefault(key, self._to_detection(finding, lines))
                continue
            if finding.verified is False:
                logger.debug("LLM withdrew a %s candidate", finding.type.value)
                continue
            out[key] = candidate.model_copy(update={
                "confidence": finding.confidence,
                "source": DetectionSource.LLM,
                "verified": True,
            })
        return list(out.values())
