"""Tests for settings loading and validation."""

from __future__ import annotations

import json

import pytest

from piilens.config import Settings, load_settings
from piilens.errors import ConfigurationError
from piilens.models.schemas import ObscuringTechnique


class TestDefaults:
    def test_defaults(self):
        s = load_settings()
        assert s.confidence_threshold == 0.6
        assert s.max_detections == 100
        assert s.ocr_engine == "tesseract"
        assert s.pattern.enabled and s.specialized.enabled
        assert not s.llm.enabled and not s.verification.enabled
        assert s.ensemble.enabled and s.ensemble.boost == 1.2
        assert s.obscuring.default_technique == ObscuringTechnique.MASKING
        assert s.obscuring.encryption_key is None
        assert s.cache.ttl_seconds == 300.0


class TestOverrides:
    def test_keyword_overrides(self):
        s = load_settings(max_detections=5, ocr_engine="text", cache={"enabled": False})
        assert s.max_detections == 5
        assert s.ocr_engine == "text"
        assert s.cache.enabled is False

    def test_json_file(self, tmp_path):
        path = tmp_path / "piilens.json"
        path.write_text(json.dumps({"confidence_threshold": 0.75, "llm": {"enabled": True, "timeout": 4}}))
        s = load_settings(path)
        assert s.confidence_threshold == 0.75
        assert s.llm.enabled and s.llm.timeout == 4.0

    def test_keywords_beat_file(self, tmp_path):
        path = tmp_path / "piilens.json"
        path.write_text(json.dumps({"max_detections": 10}))
        assert load_settings(path, max_detections=20).max_detections == 20

    def test_nested_override_merges_with_file(self, tmp_path):
        path = tmp_path / "piilens.json"
        path.write_text(json.dumps({"llm": {"timeout": 4, "max_retries": 5}}))
        s = load_settings(path, llm={"enabled": True})
        assert s.llm.enabled is True
        assert (s.llm.timeout, s.llm.max_retries) == (4.0, 5)

    def test_environment(self, monkeypatch):
        monkeypatch.setenv("PIILENS_MAX_DETECTIONS", "7")
        monkeypatch.setenv("PIILENS_CACHE__TTL_SECONDS", "60")
        monkeypatch.setenv("PIILENS_OBSCURING__ENCRYPTION_KEY", "k")
        s = Settings()
        assert s.max_detections == 7
        assert s.cache.ttl_seconds == 60.0
        assert s.obscuring.encryption_key == "k"


class TestValidation:
    @pytest.mark.parametrize("overrides", [
        {"max_detections": 0},
        {"confidence_threshold": 1.5},
        {"ocr_engine": "paddle"},
        {"obscuring": {"mask_character": "**"}},
        {"obscuring": {"default_technique": "shredding"}},
        {"llm": {"timeout": 0}},
    ])
    def test_invalid_values(self, overrides):
        with pytest.raises(ConfigurationError):
            load_settings(**overrides)

    def test_no_layer_enabled(self):
        off = {"enabled": False}
        with pytest.raises(ConfigurationError) as excinfo:
            load_settings(vision=off, pattern=off, specialized=off, llm=off, verification=off)
        assert any("at least one" in msg for msg in excinfo.value.details["errors"])

    def test_unknown_hash_algorithm(self):
        with pytest.raises(ConfigurationError):
            load_settings(obscuring={"hash_algorithm": "md17"})

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read settings file"):
            load_settings(tmp_path / "absent.json")

    def test_file_must_hold_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_settings(path)
