"""Pipeline configuration: environment variables plus an optional JSON file.

Settings are built once at startup with :func:`load_settings` and passed
into every component that needs them.  Nested sections can be overridden
from the environment with a double underscore, e.g.
``PIILENS_LLM__OPENAI_API_KEY=sk-...`` or ``PIILENS_CACHE__TTL_SECONDS=60``.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings

from piilens.errors import ConfigurationError
from piilens.models.schemas import ObscuringTechnique

logger = logging.getLogger(__name__)


class LayerSettings(BaseModel):
    """Enable flag and time budget (seconds) of one detection layer."""
    enabled: bool = True
    timeout: float = Field(default=5.0, gt=0.0)


class LLMSettings(BaseModel):
    """LLM detection layer and its providers.

    A remote provider is only called when its API key is set; the mock
    provider needs no credentials and is on by default so the layer can be
    exercised offline.
    """
    enabled: bool = False
    timeout: float = Field(default=15.0, gt=0.0)
    provider_timeout: float = Field(default=10.0, gt=0.0)
    max_retries: int = Field(default=2, ge=0, le=10)
    retry_base_delay: float = Field(default=1.0, ge=0.0)
    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    early_stop_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    ensemble_providers: bool = False

    openai_api_key: str = ""
    openai_model: str = "gpt-4o-mini"
    openai_endpoint: str = "https://api.openai.com/v1"

    anthropic_api_key: str = ""
    anthropic_model: str = "claude-3-5-sonnet-latest"
    anthropic_endpoint: str = "https://api.anthropic.com/v1"

    local_enabled: bool = False
    local_model: str = "llama3.1"
    local_endpoint: str = "http://localhost:11434"

    mock_enabled: bool = True


class EnsembleSettings(BaseModel):
    enabled: bool = True
    timeout: float = Field(default=5.0, gt=0.0)
    boost: float = Field(
        default=1.2, ge=1.0, le=2.0,
        description="Multiplier applied to the mean confidence of agreeing layers.",
    )


class ObscuringSettings(BaseModel):
    enabled: bool = True
    timeout: float = Field(default=3.0, gt=0.0)
    default_technique: ObscuringTechnique = ObscuringTechnique.MASKING
    encryption_key: Optional[str] = None
    token_prefix: str = "PII_"
    mask_character: str = Field(default="*", min_length=1, max_length=1)
    hash_algorithm: str = "sha256"
    anonymization_seed: Optional[int] = None


class CacheSettings(BaseModel):
    enabled: bool = True
    ttl_seconds: float = Field(default=300.0, gt=0.0)


class Settings(BaseSettings):
    """Everything the pipeline reads at startup."""

    confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_detections: int = Field(default=100, ge=1, le=1000)
    ocr_timeout: float = Field(default=30.0, gt=0.0)

    # ── OCR ──
    ocr_engine: Literal["tesseract", "text"] = "tesseract"
    ocr_language: str = "eng"
    ocr_min_confidence: int = Field(default=30, ge=0, le=100)
    tesseract_cmd: Optional[str] = None

    # ── Layers ──
    vision: LayerSettings = LayerSettings(timeout=10.0)
    pattern: LayerSettings = LayerSettings(timeout=5.0)
    specialized: LayerSettings = LayerSettings(timeout=8.0)
    llm: LLMSettings = LLMSettings()
    verification: LayerSettings = LayerSettings(enabled=False, timeout=12.0)
    ensemble: EnsembleSettings = EnsembleSettings()

    # ── Output / shared state ──
    obscuring: ObscuringSettings = ObscuringSettings()
    cache: CacheSettings = CacheSettings()

    # ── Logging ──
    log_format: str = "text"  # "json" for structured log lines
    log_level: str = "INFO"

    model_config = {"env_prefix": "PIILENS_", "env_nested_delimiter": "__"}

    @model_validator(mode="after")
    def _check_consistency(self) -> "Settings":
        layers = (self.vision, self.pattern, self.specialized, self.llm, self.verification)
        if not any(layer.enabled for layer in layers):
            raise ValueError("at least one detection layer must be enabled")
        if self.obscuring.hash_algorithm not in hashlib.algorithms_available:
            raise ValueError(f"unknown hash algorithm {self.obscuring.hash_algorithm!r}")
        return self


def _deep_merge(base: dict[str, Any], overrides: dict[str, Any]) -> dict[str, Any]:
    """Merge *overrides* into *base*; nested sections are merged key by key."""
    merged = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_settings(path: Optional[Path] = None, **overrides: Any) -> Settings:
    """Build settings from the environment, an optional JSON file and overrides.

    Keyword overrides win over the file, which wins over the environment.
    Any validation problem is raised as :class:`ConfigurationError`.
    """
    data: dict[str, Any] = {}
    if path is not None:
        try:
            data = json.loads(Path(path).read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"Cannot read settings file {path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Settings file {path} must hold a JSON object")
        logger.info("Loaded settings from %s", path)

    data = _deep_merge(data, overrides)
    try:
        return Settings(**data)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid configuration: {e.error_count()} error(s)",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e
