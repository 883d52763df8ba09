"""LLM provider collaborators.

Every provider exposes the same small contract:

    response = await provider.call(prompt)   # never raises
    response.success, response.data, response.error, response.error_kind

plus metadata (``name``, ``priority``, ``enabled``, ``model``,
``endpoint``, ``has_credentials``).  Retries, fallback and ensembling
are the detector's job; a provider makes exactly one HTTP request per
call and classifies what went wrong.

Each HTTP provider keeps a **persistent** ``httpx.AsyncClient`` for
connection pooling; pass ``client=`` to inject one (tests use
``httpx.MockTransport``).
"""

from __future__ import annotations

import asyncio
import enum
import json
import logging
import re
from typing import Any, NamedTuple, Optional

import httpx

from piilens.config import LLMSettings
from piilens.llm.prompts import extract_document_text

logger = logging.getLogger(__name__)

_DEFAULT_REQUEST_TIMEOUT = 30.0
_MAX_TOKENS = 1000
_TEMPERATURE = 0.1


class LLMErrorKind(str, enum.Enum):
    AUTH = "auth"
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    SERVER = "server"
    CLIENT = "client"
    NETWORK = "network"
    INVALID_RESPONSE = "invalid_response"


class LLMResponse(NamedTuple):
    success: bool
    data: str = ""
    error: Optional[str] = None
    error_kind: Optional[LLMErrorKind] = None


def _classify_status(status: int) -> LLMErrorKind:
    if status in (401, 403):
        return LLMErrorKind.AUTH
    if status == 429:
        return LLMErrorKind.RATE_LIMIT
    if status >= 500:
        return LLMErrorKind.SERVER
    return LLMErrorKind.CLIENT


class LLMProvider:
    """Base class for HTTP providers."""

    name = "base"
    requires_credentials = True

    def __init__(
        self,
        model: str = "",
        endpoint: str = "",
        api_key: str = "",
        priority: int = 0,
        enabled: bool = True,
        timeout: float = _DEFAULT_REQUEST_TIMEOUT,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.model = model
        self.endpoint = endpoint.rstrip("/")
        self.priority = priority
        self._api_key = api_key
        self._enabled = enabled
        self._timeout = timeout
        self._client = client

    @property
    def has_credentials(self) -> bool:
        return bool(self._api_key)

    @property
    def enabled(self) -> bool:
        """Disabled providers are skipped; remote ones also need a key."""
        if not self._enabled:
            return False
        return self.has_credentials or not self.requires_credentials

    def info(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "priority": self.priority,
            "enabled": self.enabled,
            "model": self.model,
            "endpoint": self.endpoint,
            "has_credentials": self.has_credentials,
        }

    # ── HTTP ──────────────────────────────────────────────────────

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, prompt: str) -> str:
        raise NotImplementedError

    async def call(self, prompt: str) -> LLMResponse:
        """One request; every failure is returned, never raised."""
        try:
            text = await self._request(prompt)
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            body = e.response.text[:200] if e.response is not None else ""
            kind = _classify_status(status)
            logger.warning("%s HTTP %s (%s)", self.name, status, kind.value)
            return LLMResponse(False, error=f"HTTP {status}: {body}", error_kind=kind)
        except httpx.TimeoutException as e:
            logger.warning("%s request timed out", self.name)
            return LLMResponse(False, error=f"timeout: {e}", error_kind=LLMErrorKind.TIMEOUT)
        except httpx.HTTPError as e:
            logger.warning("%s transport error: %s", self.name, e)
            return LLMResponse(False, error=str(e), error_kind=LLMErrorKind.NETWORK)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning("%s returned an unexpected payload: %s", self.name, e)
            return LLMResponse(False, error=f"bad response: {e}", error_kind=LLMErrorKind.INVALID_RESPONSE)
        return LLMResponse(True, data=text.strip())


class OpenAIProvider(LLMProvider):
    """OpenAI-compatible ``/chat/completions`` endpoint."""

    name = "openai"

    async def _request(self, prompt: str) -> str:
        resp = await self._get_client().post(
            f"{self.endpoint}/chat/completions",
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "messages": [{"role": "user", "content": prompt}],
                "temperature": _TEMPERATURE,
                "max_tokens": _MAX_TOKENS,
            },
        )
        resp.raise_for_status()
        return resp.json()["choices"][0]["message"]["content"]


class AnthropicProvider(LLMProvider):
    """Anthropic ``/messages`` endpoint."""

    name = "anthropic"
    api_version = "2023-06-01"

    async def _request(self, prompt: str) -> str:
        resp = await self._get_client().post(
            f"{self.endpoint}/messages",
            headers={
                "x-api-key": self._api_key,
                "anthropic-version": self.api_version,
                "Content-Type": "application/json",
            },
            json={
                "model": self.model,
                "max_tokens": _MAX_TOKENS,
                "temperature": _TEMPERATURE,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        resp.raise_for_status()
        return resp.json()["content"][0]["text"]


class LocalProvider(LLMProvider):
    """Ollama-style local server (``/api/generate``, non-streaming)."""

    name = "local"
    requires_credentials = False

    async def _request(self, prompt: str) -> str:
        resp = await self._get_client().post(
            f"{self.endpoint}/api/generate",
            json={
                "model": self.model,
                "prompt": prompt,
                "stream": False,
                "options": {"temperature": _TEMPERATURE},
            },
        )
        resp.raise_for_status()
        return resp.json()["response"]


class MockProvider(LLMProvider):
    """Offline provider: regex detection of a few high-signal types.

    Deterministic, needs no credentials.  Every finding is reported with
    ``"verified": true`` so verification prompts confirm what they find.
    ``delay`` (seconds) simulates a slow provider.
    """

    name = "mock"
    requires_credentials = False

    _RULES: tuple[tuple[re.Pattern, str, float], ...] = (
        (re.compile(r"\b\d{4}[- ]?\d{4}[- ]?\d{4}[- ]?\d{4}\b"), "credit_card", 0.95),
        (re.compile(r"\b\d{3}-\d{2}-\d{4}\b"), "ssn", 0.90),
        (re.compile(r"(?:\(\d{3}\)\s*|\b\d{3}[-.])\d{3}[-.]\d{4}\b"), "phone", 0.92),
        (re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"), "email", 0.88),
    )

    def __init__(self, priority: int = 99, enabled: bool = True, delay: float = 0.0) -> None:
        super().__init__(model="mock", endpoint="", priority=priority, enabled=enabled)
        self.delay = delay

    async def call(self, prompt: str) -> LLMResponse:
        if self.delay:
            await asyncio.sleep(self.delay)
        text = extract_document_text(prompt)
        findings: list[dict[str, Any]] = []
        for rx, pii_type, conf in self._RULES:
            for m in rx.finditer(text):
                findings.append({
                    "type": pii_type,
                    "text": m.group(),
                    "confidence": conf,
                    "verified": True,
                })
        return LLMResponse(True, data=json.dumps(findings))


def build_providers(settings: LLMSettings) -> list[LLMProvider]:
    """Providers in priority order, built from settings."""
    timeout = settings.provider_timeout
    providers: list[LLMProvider] = [
        OpenAIProvider(
            model=settings.openai_model,
            endpoint=settings.openai_endpoint,
            api_key=settings.openai_api_key,
            priority=1,
            timeout=timeout,
        ),
        AnthropicProvider(
            model=settings.anthropic_model,
            endpoint=settings.anthropic_endpoint,
            api_key=settings.anthropic_api_key,
            priority=2,
            timeout=timeout,
        ),
        LocalProvider(
            model=settings.local_model,
            endpoint=settings.local_endpoint,
            priority=3,
            enabled=settings.local_enabled,
            timeout=timeout,
        ),
        MockProvider(priority=4, enabled=settings.mock_enabled),
    ]
    providers.sort(key=lambda p: p.priority)
    logger.info(
        "LLM providers: %s",
        ", ".join(f"{p.name}{'' if p.enabled else ' (disabled)'}" for p in providers),
    )
    return providers
