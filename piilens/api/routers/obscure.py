"""Obscuring, reveal and de-tokenization endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from piilens.api.deps import Services, get_services
from piilens.models.schemas import (
    BatchObscureRequest,
    DetokenizeRequest,
    DetokenizeResponse,
    ObscureRequest,
    ObscuringResult,
    ObscuringTechnique,
    RevealRequest,
    RevealResponse,
)

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["obscure"])


@router.post("/obscure", response_model=ObscuringResult)
async def obscure(req: ObscureRequest, services: Services = Depends(get_services)) -> ObscuringResult:
    return services.obscurer.obscure(req.detection, req.technique)


@router.post("/obscure/batch", response_model=list[ObscuringResult])
async def obscure_batch(req: BatchObscureRequest, services: Services = Depends(get_services)) -> list[ObscuringResult]:
    return services.obscurer.batch_obscure(req.detections, req.technique)


@router.post("/reveal", response_model=RevealResponse)
async def reveal(req: RevealRequest, services: Services = Depends(get_services)) -> RevealResponse:
    """Recover the original of a token or ciphertext produced by this service."""
    original = services.obscurer.reveal(req.obscured_text, req.technique)
    return RevealResponse(found=original is not None, original_text=original)


@router.post("/detokenize", response_model=DetokenizeResponse)
async def detokenize(req: DetokenizeRequest, services: Services = Depends(get_services)) -> DetokenizeResponse:
    """Replace tokens in text with their original values."""
    return services.obscurer.detokenize_text(req.text)


@router.get("/techniques", response_model=list[ObscuringTechnique])
async def techniques(services: Services = Depends(get_services)) -> list[ObscuringTechnique]:
    return services.obscurer.available_techniques()
