"""FastAPI application: HTTP surface of the piilens detection service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from piilens import __version__
from piilens.api.deps import Services
from piilens.api.routers import detection, maintenance, obscure
from piilens.config import Settings, load_settings
from piilens.errors import InputValidationError, ObscuringError

logger = logging.getLogger(__name__)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Build the app.

    With *settings* the services are built immediately (tests drive the
    app through ``httpx.ASGITransport``, which skips lifespan events);
    without, they are built from the environment at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            app.state.services = Services(load_settings())
        logger.info("piilens %s ready", __version__)
        yield
        await app.state.services.aclose()

    app = FastAPI(
        title="piilens",
        version=__version__,
        description="Multi-layer PII detection and obscuring for OCR'd images",
        lifespan=lifespan,
    )
    app.state.services = Services(settings) if settings is not None else None

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(InputValidationError)
    async def _invalid_input(request: Request, exc: InputValidationError):
        return JSONResponse(status_code=400, content={"detail": exc.message, "error_type": exc.error_type.value})

    @app.exception_handler(ObscuringError)
    async def _obscuring_failed(request: Request, exc: ObscuringError):
        return JSONResponse(status_code=400, content={"detail": exc.message, "error_type": exc.error_type.value})

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": __version__}

    app.include_router(detection.router)
    app.include_router(obscure.router)
    app.include_router(maintenance.router)
    return app


app = create_app()
