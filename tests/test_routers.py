"""
Tests for the API routes.

The app is driven through httpx.ASGITransport with text OCR so that no
Tesseract install is needed.
"""

from __future__ import annotations

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from piilens import __version__
from piilens.api.server import create_app
from piilens.config import load_settings

SSN_DETECTION = {"type": "ssn", "text": "123-45-6789", "confidence": 0.9, "source": "pattern"}


def _app(**overrides):
    settings = load_settings(ocr_engine="text", ensemble={"enabled": False}, **overrides)
    return create_app(settings)


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=_app(obscuring={"encryption_key": "k3y"}))
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def keyless_client():
    transport = ASGITransport(app=_app())
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


# ── Health ───────────────────────────────────────────────────────────


class TestHealth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok", "version": __version__}

    @pytest.mark.asyncio
    async def test_uninitialised_services(self):
        transport = ASGITransport(app=create_app())
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            resp = await ac.get("/api/techniques")
        assert resp.status_code == 503


# ── Detection ────────────────────────────────────────────────────────


class TestDetect:
    @pytest.mark.asyncio
    async def test_detect_text(self, client):
        resp = await client.post("/api/detect/text", json={"text": "Card: 4111-1111-1111-1111, SSN 123-45-6789"})
        assert resp.status_code == 200
        data = resp.json()
        assert data["success"] is True
        assert [d["text"] for d in data["detections"]] == [
            "4111-1111-1111-1111", "CREDIT CARD DOCUMENT", "123-45-6789",
        ]
        assert data["obscured"][2]["obscured_text"] == "***-**-6789"
        assert data["metadata"]["total_lines"] == 1

    @pytest.mark.asyncio
    async def test_detect_uses_configured_ocr(self, client):
        resp = await client.post("/api/detect", json={"image_source": "SSN 123-45-6789"})
        assert resp.status_code == 200
        assert [d["type"] for d in resp.json()["detections"]] == ["ssn"]

    @pytest.mark.asyncio
    async def test_blank_text_is_rejected(self, client):
        resp = await client.post("/api/detect/text", json={"text": "   "})
        assert resp.status_code == 400
        assert resp.json()["error_type"] == "validation"

    @pytest.mark.asyncio
    async def test_missing_field(self, client):
        resp = await client.post("/api/detect/text", json={})
        assert resp.status_code == 422


# ── Obscuring ────────────────────────────────────────────────────────


class TestObscure:
    @pytest.mark.asyncio
    async def test_default_masking(self, client):
        resp = await client.post("/api/obscure", json={"detection": SSN_DETECTION})
        assert resp.status_code == 200
        assert resp.json()["obscured_text"] == "***-**-6789"
        assert resp.json()["technique"] == "masking"

    @pytest.mark.asyncio
    async def test_batch(self, client):
        resp = await client.post(
            "/api/obscure/batch",
            json={"detections": [SSN_DETECTION, SSN_DETECTION], "technique": "redaction"},
        )
        assert resp.status_code == 200
        assert [r["obscured_text"] for r in resp.json()] == ["█" * 11] * 2

    @pytest.mark.asyncio
    async def test_tokenize_reveal_detokenize(self, client):
        resp = await client.post("/api/obscure", json={"detection": SSN_DETECTION, "technique": "tokenization"})
        token = resp.json()["obscured_text"]
        assert token == "PII_SSN_1"

        resp = await client.post("/api/reveal", json={"obscured_text": token, "technique": "tokenization"})
        assert resp.json() == {"found": True, "original_text": "123-45-6789"}

        resp = await client.post("/api/detokenize", json={"text": f"id={token} other=PII_SSN_9"})
        assert resp.json() == {
            "original_text": "id=123-45-6789 other=PII_SSN_9",
            "tokens_replaced": 1,
            "unresolved_tokens": ["PII_SSN_9"],
        }

    @pytest.mark.asyncio
    async def test_encrypt_and_reveal(self, client):
        resp = await client.post("/api/obscure", json={"detection": SSN_DETECTION, "technique": "encryption"})
        ciphertext = resp.json()["obscured_text"]

        resp = await client.post("/api/reveal", json={"obscured_text": ciphertext, "technique": "encryption"})
        assert resp.json() == {"found": True, "original_text": "123-45-6789"}

    @pytest.mark.asyncio
    async def test_reveal_irreversible(self, client):
        resp = await client.post("/api/reveal", json={"obscured_text": "***-**-6789", "technique": "masking"})
        assert resp.json() == {"found": False, "original_text": None}

    @pytest.mark.asyncio
    async def test_encryption_without_key(self, keyless_client):
        resp = await keyless_client.post("/api/obscure", json={"detection": SSN_DETECTION, "technique": "encryption"})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Encryption key not configured"

    @pytest.mark.asyncio
    async def test_unknown_technique(self, client):
        resp = await client.post("/api/obscure", json={"detection": SSN_DETECTION, "technique": "shredding"})
        assert resp.status_code == 422

    @pytest.mark.asyncio
    async def test_techniques(self, client):
        resp = await client.get("/api/techniques")
        assert resp.json() == [
            "redaction", "masking", "anonymization", "encryption", "hashing", "tokenization",
        ]


# ── Maintenance ──────────────────────────────────────────────────────


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_stats_and_cache_clear(self, client):
        await client.post("/api/detect/text", json={"text": "SSN 123-45-6789"})
        await client.post("/api/detect/text", json={"text": "SSN 123-45-6789"})

        stats = (await client.get("/api/stats")).json()
        assert stats["cache"]["size"] == 1
        assert stats["cache"]["hits"] == 1
        assert stats["providers"] == []

        resp = await client.delete("/api/cache")
        assert resp.json() == {"cleared": 1}
        assert (await client.get("/api/stats")).json()["cache"]["size"] == 0

    @pytest.mark.asyncio
    async def test_clear_tokens(self, client):
        await client.post("/api/obscure", json={"detection": SSN_DETECTION, "technique": "tokenization"})
        await client.post("/api/detect/text", json={"text": "SSN 123-45-6789"})
        stats = (await client.get("/api/stats")).json()
        assert stats["tokens"] == {"size": 1, "counter": 1}
        assert stats["cache"]["size"] == 1

        resp = await client.delete("/api/tokens")
        assert resp.json() == {"cleared": 1}
        assert (await client.get("/api/stats")).json()["cache"]["size"] == 0

        resp = await client.post("/api/obscure", json={"detection": SSN_DETECTION, "technique": "tokenization"})
        assert resp.json()["obscured_text"] == "PII_SSN_2"

        resp = await client.post("/api/reveal", json={"obscured_text": "PII_SSN_1", "technique": "tokenization"})
        assert resp.json() == {"found": False, "original_text": None}

    @pytest.mark.asyncio
    async def test_provider_stats_when_llm_enabled(self):
        app = _app(llm={"enabled": True})
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            stats = (await ac.get("/api/stats")).json()
        names = [p["name"] for p in stats["providers"]]
        assert names == ["openai", "anthropic", "local", "mock"]
        assert all("api_key" not in p for p in stats["providers"])
