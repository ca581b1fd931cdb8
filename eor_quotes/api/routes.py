"""
API routes — thin HTTP layer over the enhancement engine.

Routes:
  GET  /health                    → API health check
  POST /api/enhancement/quote     → Enhance a single provider quote
  GET  /api/enhancement/quote     → Engine health + stats
  POST /api/enhancement/batch     → Enhance several provider quotes concurrently
  GET  /api/enhancement/batch     → Supported providers and batch limits
"""

from __future__ import annotations

import json
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError, field_validator

from eor_quotes.config import get_settings
from eor_quotes.enhancement.engine import EnhancementEngine, get_enhancement_engine
from eor_quotes.enhancement.errors import DEFAULT_RETRY_AFTER_S, EnhancementError
from eor_quotes.models.enhancement import dump_camel
from eor_quotes.models.enums import EnhancementErrorCode, ProviderType, QuoteType
from eor_quotes.models.schemas import CamelModel, EORFormData

logger = logging.getLogger(__name__)

# ── Routers ──────────────────────────────────────────────
health_router = APIRouter()
enhancement_router = APIRouter()

SUPPORTED_PROVIDERS = [p.value for p in ProviderType]


# ── Request schemas ──────────────────────────────────────
class EnhanceQuoteRequest(CamelModel):
    provider: ProviderType
    provider_quote: Any
    form_data: EORFormData
    quote_type: Optional[QuoteType] = None

    @field_validator("provider_quote")
    @classmethod
    def _quote_present(cls, value: Any) -> Any:
        if value is None or value == {}:
            raise ValueError("providerQuote is required")
        return value


class BatchEnhanceRequest(CamelModel):
    form_data: EORFormData
    provider_quotes: dict[str, Any]
    quote_type: Optional[QuoteType] = None
    papaya_data: Optional[dict[str, Any]] = None


# ── Helpers ──────────────────────────────────────────────

async def read_json(request: Request) -> Optional[Any]:
    """Parsed JSON body, or None when the body is empty or not JSON."""
    raw = await request.body()
    if not raw.strip():
        return None
    try:
        return json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def error_response(status_code: int, message: str, **extra: Any) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message, **extra})


def validation_details(exc: ValidationError) -> list[dict[str, str]]:
    return [
        {"field": ".".join(str(part) for part in err["loc"]), "message": err["msg"]}
        for err in exc.errors()
    ]


def enhancement_error_response(exc: EnhancementError) -> JSONResponse:
    extra: dict[str, Any] = {"code": exc.code.value}
    if exc.provider is not None:
        extra["provider"] = exc.provider.value
    headers = None
    if exc.code == EnhancementErrorCode.RATE_LIMIT_EXCEEDED:
        retry_after = exc.retry_after or DEFAULT_RETRY_AFTER_S
        extra["retryAfter"] = retry_after
        headers = {"Retry-After": str(retry_after)}
    response = error_response(exc.status_code, exc.message, **extra)
    if headers:
        response.headers.update(headers)
    return response


def _elapsed_ms(t0: float) -> int:
    return int((time.perf_counter() - t0) * 1000)


# ── Health ───────────────────────────────────────────────

@health_router.get("/health")
async def health_check():
    return {
        "status": "ok",
        "service": get_settings().app_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


# ── Single quote ─────────────────────────────────────────

@enhancement_router.post("/quote")
async def enhance_quote(request: Request, engine: EnhancementEngine = Depends(get_enhancement_engine)):
    t0 = time.perf_counter()

    body = await read_json(request)
    if body is None:
        return error_response(400, "Invalid JSON body")
    try:
        payload = EnhanceQuoteRequest.model_validate(body)
    except ValidationError as exc:
        return error_response(400, "Invalid request data", details=validation_details(exc))

    quote_type = payload.quote_type or payload.form_data.quote_type or QuoteType.ALL_INCLUSIVE
    logger.info(f"[API] Enhancement requested: {payload.provider.value} ({quote_type.value})")

    try:
        enhanced = await engine.enhance_quote_direct(
            payload.provider, payload.provider_quote, payload.form_data, quote_type,
        )
    except EnhancementError as exc:
        logger.warning(f"[API] Enhancement failed for {payload.provider.value}: {exc.code.value}")
        return enhancement_error_response(exc)
    except Exception as exc:
        logger.error(f"[API] Unexpected enhancement failure: {exc}", exc_info=True)
        return error_response(500, str(exc) or "Internal server error")

    return {"success": True, "data": dump_camel(enhanced), "processingTime": _elapsed_ms(t0)}


@enhancement_router.get("/quote")
async def enhancement_health(engine: EnhancementEngine = Depends(get_enhancement_engine)):
    health = await engine.health_check()
    return {
        "status": health["status"],
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "stats": engine.get_stats(),
    }


# ── Batch ────────────────────────────────────────────────

@enhancement_router.post("/batch")
async def enhance_batch(request: Request, engine: EnhancementEngine = Depends(get_enhancement_engine)):
    t0 = time.perf_counter()

    body = await read_json(request)
    if body is None:
        return error_response(400, "Invalid JSON body")
    try:
        payload = BatchEnhanceRequest.model_validate(body)
    except ValidationError as exc:
        return error_response(400, "Invalid request data", details=validation_details(exc))

    quotes = {k: v for k, v in payload.provider_quotes.items() if k in SUPPORTED_PROVIDERS}
    dropped = sorted(set(payload.provider_quotes) - set(quotes))
    if dropped:
        logger.info(f"[API] Ignoring unsupported providers: {dropped}")

    try:
        result = await engine.enhance_all_providers(
            payload.form_data, quotes, payload.quote_type, payload.papaya_data,
        )
    except Exception as exc:
        logger.error(f"[API] Batch enhancement failed: {exc}", exc_info=True)
        return error_response(500, str(exc) or "Internal server error")

    data = dump_camel(result)
    return {
        "success": True,
        "data": {
            "enhancements": data["enhancements"],
            "errors": data["errors"],
            "comparison": data["comparison"],
        },
        "totalProcessingTime": _elapsed_ms(t0),
        "providersProcessed": len(result.enhancements),
        "errorsOccurred": len(result.errors),
    }


@enhancement_router.get("/batch")
async def batch_info():
    return {
        "supportedProviders": SUPPORTED_PROVIDERS,
        "maxConcurrentJobs": get_settings().max_concurrent_jobs,
        "quoteTypes": [q.value for q in QuoteType],
    }
