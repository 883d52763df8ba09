"""Detection endpoints: run the pipeline over an image or raw text."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from piilens.api.deps import Services, get_services
from piilens.models.schemas import DetectionResult, DetectRequest, DetectTextRequest

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["detection"])


@router.post("/detect", response_model=DetectionResult)
async def detect(req: DetectRequest, services: Services = Depends(get_services)) -> DetectionResult:
    """Detect PII in an image (path or data URI) via the configured OCR engine."""
    return await services.pipeline.detect(req.image_source)


@router.post("/detect/text", response_model=DetectionResult)
async def detect_text(req: DetectTextRequest, services: Services = Depends(get_services)) -> DetectionResult:
    """Detect PII in already-extracted document text."""
    return await services.text_pipeline.detect(req.text)
