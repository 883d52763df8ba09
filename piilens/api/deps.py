"""Service container and FastAPI dependencies shared by all routers."""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import HTTPException, Request

from piilens.config import Settings
from piilens.detection.llm_detector import LLMDetector
from piilens.detection.pipeline import DetectionPipeline
from piilens.llm.providers import build_providers
from piilens.models.schemas import CacheStatsResponse
from piilens.obscurer.engine import ObscuringEngine
from piilens.ocr.engine import TesseractOCR
from piilens.ocr.text_source import PlainTextOCR

logger = logging.getLogger(__name__)


class Services:
    """Everything a request handler needs, built once per app.

    ``pipeline`` reads images through the configured OCR engine;
    ``text_pipeline`` treats the input as document text.  Both share the
    obscuring engine (and so the token vault) and the LLM detector, but
    each keeps its own result cache since the same string means
    different things to each.
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self.obscurer = ObscuringEngine(settings.obscuring)

        llm_detector: Optional[LLMDetector] = None
        if settings.llm.enabled or settings.verification.enabled:
            llm_detector = LLMDetector(build_providers(settings.llm), settings.llm)
        self.llm_detector = llm_detector

        self.text_pipeline = DetectionPipeline(
            settings, PlainTextOCR(), llm_detector=llm_detector, obscurer=self.obscurer,
        )
        if settings.ocr_engine == "text":
            self.pipeline = self.text_pipeline
        else:
            ocr = TesseractOCR(
                language=settings.ocr_language,
                tesseract_cmd=settings.tesseract_cmd,
                min_confidence=settings.ocr_min_confidence,
            )
            self.pipeline = DetectionPipeline(
                settings, ocr, llm_detector=llm_detector, obscurer=self.obscurer,
            )

    @property
    def pipelines(self) -> list[DetectionPipeline]:
        if self.pipeline is self.text_pipeline:
            return [self.pipeline]
        return [self.pipeline, self.text_pipeline]

    def clear_cache(self) -> int:
        return sum(p.clear_cache() for p in self.pipelines)

    def clear_tokens(self) -> int:
        self.clear_cache()
        return self.obscurer.clear_tokens()

    def cache_stats(self) -> CacheStatsResponse:
        stats = [p.cache_stats() for p in self.pipelines]
        return CacheStatsResponse(
            size=sum(s.size for s in stats),
            ttl_seconds=max(s.ttl_seconds for s in stats),
            hits=sum(s.hits for s in stats),
            misses=sum(s.misses for s in stats),
        )

    async def aclose(self) -> None:
        if self.llm_detector is not None:
            await self.llm_detector.aclose()


def get_services(request: Request) -> Services:
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Services not initialized")
    return services
