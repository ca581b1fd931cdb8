"""
Reconciliation schemas: enhanced provider totals brought into one currency
and ranked against the cheapest.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional
from pydantic import Field

from .enums import ProviderType, QuoteType
from .schemas import CamelModel


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReconciliationSettings(CamelModel):
    currency: str
    threshold: float = Field(default=0.04, ge=0.0)
    risk_mode: bool = False


class ProviderCoverage(CamelModel):
    includes: list[str] = []
    missing: list[str] = []
    double_counting_risk: list[str] = []


class ReconciliationProviderInput(CamelModel):
    provider: ProviderType
    normalized_monthly_total: float
    original_monthly_total: float
    original_currency: str
    confidence: float = 0.5
    coverage: ProviderCoverage = Field(default_factory=ProviderCoverage)
    quote_type: QuoteType = QuoteType.ALL_INCLUSIVE


class ExcludedProvider(CamelModel):
    provider: ProviderType
    reason: str


class ReconciliationInput(CamelModel):
    settings: ReconciliationSettings
    providers: list[ReconciliationProviderInput] = []
    excluded: list[ExcludedProvider] = []


class ReconciliationItem(CamelModel):
    provider: ProviderType
    total: float
    delta: float
    pct: float
    within_threshold: bool
    confidence: float
    notes: list[str] = []
    risk_adjusted_total: Optional[float] = None


class ReconciliationSummary(CamelModel):
    currency: str
    cheapest: Optional[ProviderType] = None
    most_expensive: Optional[ProviderType] = None
    average: float = 0.0
    median: float = 0.0
    std_dev: float = 0.0
    within_threshold_count: int = 0


class ReconciliationMetadata(CamelModel):
    threshold: float
    risk_mode: bool
    currency: str
    generated_at: str = Field(default_factory=_utc_now_iso)


class ReconciliationResult(CamelModel):
    items: list[ReconciliationItem] = []
    summary: ReconciliationSummary
    excluded: list[ExcludedProvider] = []
    metadata: ReconciliationMetadata
