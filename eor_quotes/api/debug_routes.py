"""
Debug routes — operational inspection of the enhancement engine.

Routes:
  GET    /api/enhancement/debug?action=stats|cache|performance|health|env|ping|cleanup
  DELETE /api/enhancement/debug?target=cache|performance|all
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from fastapi import APIRouter, Depends

from eor_quotes.api.routes import error_response
from eor_quotes.config import get_settings
from eor_quotes.enhancement.engine import EnhancementEngine, get_enhancement_engine

logger = logging.getLogger(__name__)

debug_router = APIRouter()

ACTIONS = ("stats", "cache", "performance", "health", "env", "ping", "cleanup")
TARGETS = ("cache", "performance", "all")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def ping_groq(client: Optional[httpx.AsyncClient] = None) -> dict[str, Any]:
    """GET {groq_api_base}/models with the configured key; reports reachability and latency."""
    settings = get_settings()
    if not settings.groq_api_key:
        return {"ok": False, "error": "GROQ_API_KEY is not set"}

    t0 = time.perf_counter()
    owned = client is None
    client = client or httpx.AsyncClient(timeout=settings.groq_request_timeout_s)
    try:
        response = await client.get(
            f"{settings.groq_api_base}/models",
            headers={"Authorization": f"Bearer {settings.groq_api_key}"},
        )
    except httpx.HTTPError as exc:
        logger.warning(f"[API] Groq ping failed: {exc}")
        return {"ok": False, "error": str(exc), "latencyMs": int((time.perf_counter() - t0) * 1000)}
    finally:
        if owned:
            await client.aclose()

    return {
        "ok": response.is_success,
        "status": response.status_code,
        "latencyMs": int((time.perf_counter() - t0) * 1000),
    }


@debug_router.get("/debug")
async def debug_info(action: Optional[str] = None, engine: EnhancementEngine = Depends(get_enhancement_engine)):
    if action is None:
        return {
            "success": True,
            "timestamp": _now(),
            "cache": engine.get_cache_stats(),
            "performance": engine.get_performance_metrics(),
            "availableActions": list(ACTIONS),
        }

    if action == "stats":
        data: Any = engine.get_stats()
    elif action == "cache":
        data = engine.get_cache_stats()
    elif action == "performance":
        data = engine.get_performance_metrics()
    elif action == "health":
        data = await engine.health_check()
    elif action == "env":
        settings = get_settings()
        data = {
            "groqApiKeyConfigured": bool(settings.groq_api_key),
            "model": settings.llm_model,
            "rateLimitRpm": settings.groq_rate_limit_rpm,
            "totalTimeoutS": settings.groq_total_timeout_s,
            "legalDataDir": settings.legal_data_dir,
            "remoteApiTokenConfigured": bool(settings.remote_api_token),
            "exchangerateApiKeyConfigured": bool(settings.exchangerate_api_key),
        }
    elif action == "ping":
        data = await ping_groq()
    elif action == "cleanup":
        data = {"removed": engine.cleanup_cache(), "cache": engine.get_cache_stats()}
    else:
        return error_response(400, "Invalid action", availableActions=list(ACTIONS))

    return {"success": True, "action": action, "timestamp": _now(), "data": data}


@debug_router.delete("/debug")
async def debug_reset(target: Optional[str] = None, engine: EnhancementEngine = Depends(get_enhancement_engine)):
    if target not in TARGETS:
        return error_response(400, "Invalid target", validTargets=list(TARGETS))

    if target in ("cache", "all"):
        engine.clear_cache()
    if target in ("performance", "all"):
        engine.reset_performance_metrics()

    logger.info(f"[API] Debug reset: {target}")
    return {"success": True, "target": target, "timestamp": _now()}
