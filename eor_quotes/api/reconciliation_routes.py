"""
Reconciliation route — ranks enhanced quotes in one target currency.

Routes:
  POST /api/reconciliation  → {enhancements, targetCurrency, threshold?, riskMode?}
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import Field, ValidationError, field_validator

from eor_quotes.api.routes import error_response, read_json, validation_details
from eor_quotes.enhancement.reconciliation import ReconciliationService, get_reconciliation_service
from eor_quotes.models.enhancement import EnhancedQuote, dump_camel
from eor_quotes.models.enums import ProviderType
from eor_quotes.models.schemas import CamelModel

logger = logging.getLogger(__name__)

reconciliation_router = APIRouter()


class ReconciliationRequest(CamelModel):
    enhancements: dict[ProviderType, EnhancedQuote]
    target_currency: str
    threshold: Optional[float] = Field(default=None, ge=0.0)
    risk_mode: bool = False

    @field_validator("target_currency")
    @classmethod
    def _currency_code(cls, value: str) -> str:
        code = value.strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("targetCurrency must be a 3-letter currency code")
        return code


@reconciliation_router.post("/reconciliation")
async def reconcile(request: Request, service: ReconciliationService = Depends(get_reconciliation_service)):
    t0 = time.perf_counter()

    body = await read_json(request)
    if body is None:
        return error_response(400, "Invalid JSON body")
    try:
        payload = ReconciliationRequest.model_validate(body)
    except ValidationError as exc:
        return error_response(400, "Missing or invalid parameters", details=validation_details(exc))

    logger.info(
        f"[API] Reconciliation requested: {len(payload.enhancements)} providers -> {payload.target_currency}"
    )
    try:
        result = await service.reconcile(
            payload.enhancements, payload.target_currency, payload.threshold, payload.risk_mode,
        )
    except Exception as exc:
        logger.error(f"[API] Reconciliation failed: {exc}", exc_info=True)
        return error_response(500, str(exc) or "Reconciliation failed")

    return {
        "success": True,
        "data": dump_camel(result),
        "processingTime": int((time.perf_counter() - t0) * 1000),
    }
