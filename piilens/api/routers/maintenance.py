"""Cache, token map and provider housekeeping endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from piilens.api.deps import Services, get_services
from piilens.models.schemas import StatsResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api", tags=["maintenance"])


@router.get("/stats", response_model=StatsResponse)
async def stats(services: Services = Depends(get_services)) -> StatsResponse:
    return StatsResponse(
        cache=services.cache_stats(),
        tokens=services.obscurer.token_stats(),
        providers=services.llm_detector.provider_stats() if services.llm_detector else [],
    )


@router.delete("/cache")
async def clear_cache(services: Services = Depends(get_services)) -> dict:
    cleared = services.clear_cache()
    logger.info("Cleared %d cached results", cleared)
    return {"cleared": cleared}


@router.delete("/tokens")
async def clear_tokens(services: Services = Depends(get_services)) -> dict:
    """Forget every token and registered ciphertext, and the cached results that hold them."""
    return {"cleared": services.clear_tokens()}
