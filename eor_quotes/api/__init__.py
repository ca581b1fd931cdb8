"""
FastAPI application factory and API package.

Run with:
    uvicorn eor_quotes.api:app --reload --port 8000

Or via main.py:
    python -m eor_quotes --serve
"""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from eor_quotes.config import get_settings
from eor_quotes.api.routes import enhancement_router, health_router
from eor_quotes.api.debug_routes import debug_router
from eor_quotes.api.reconciliation_routes import reconciliation_router

logger = logging.getLogger(__name__)


def create_app() -> FastAPI:
    """Application factory — create and configure the FastAPI instance."""
    settings = get_settings()

    application = FastAPI(
        title="EOR Quote Enhancement API",
        description="Provider quote normalization and LLM-based legal cost reconciliation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
    )

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.include_router(health_router, tags=["Health"])
    application.include_router(enhancement_router, prefix="/api/enhancement", tags=["Enhancement"])
    application.include_router(debug_router, prefix="/api/enhancement", tags=["Debug"])
    application.include_router(reconciliation_router, prefix="/api", tags=["Reconciliation"])

    @application.on_event("startup")
    async def startup():
        logger.info(f"Starting {settings.app_name} API")
        logger.info(f"LLM model: {settings.llm_model} | legal data: {settings.legal_data_dir}")

    return application


# Module-level instance for `uvicorn eor_quotes.api:app`
app = create_app()
