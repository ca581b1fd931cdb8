"""
Reconciliation — ranks enhanced provider quotes in one target currency.

  build_input()  → converts each provider's enhanced monthly total via the currency converter
  compute()      → delta/pct against the cheapest, threshold flags and summary statistics
  reconcile()    → build_input() then compute()

Providers whose total is missing or cannot be converted are listed under
`excluded` with a reason instead of failing the whole reconciliation.
"""

from __future__ import annotations

import logging
import math
import statistics
from typing import Iterable, Optional

from eor_quotes.config import get_settings
from eor_quotes.currency.converter import CurrencyConverter, get_currency_converter
from eor_quotes.models.enhancement import EnhancedQuote
from eor_quotes.models.enums import ProviderType
from eor_quotes.models.reconciliation import (
    ExcludedProvider,
    ProviderCoverage,
    ReconciliationInput,
    ReconciliationItem,
    ReconciliationMetadata,
    ReconciliationProviderInput,
    ReconciliationResult,
    ReconciliationSettings,
    ReconciliationSummary,
)

logger = logging.getLogger(__name__)

# A provider missing any of these is never counted as within the threshold
CRITICAL_MISSING = (
    "social security", "mandatory", "statutory", "health insurance",
    "pension", "tax", "termination", "notice", "severance",
)


def clamp01(value: float) -> float:
    if math.isnan(value):
        return 0.0
    return max(0.0, min(1.0, value))


def has_critical_missing(missing: Iterable[str]) -> bool:
    lowered = [str(item or "").lower() for item in missing]
    return any(critical in item for item in lowered for critical in CRITICAL_MISSING)


def _preview(items: list[str], limit: int) -> str:
    text = ", ".join(items[:limit])
    return f"{text}…" if len(items) > limit else text


def build_notes(coverage: ProviderCoverage) -> list[str]:
    notes = []
    if coverage.missing:
        notes.append(f"Missing: {_preview(coverage.missing, 3)}")
    if coverage.double_counting_risk:
        notes.append(f"Double-counting risk: {_preview(coverage.double_counting_risk, 2)}")
    return notes


def summarize(items: list[ReconciliationItem], currency: str) -> ReconciliationSummary:
    if not items:
        return ReconciliationSummary(currency=currency)
    totals = [item.total for item in items]
    return ReconciliationSummary(
        currency=currency,
        cheapest=min(items, key=lambda item: item.total).provider,
        most_expensive=max(items, key=lambda item: item.total).provider,
        average=round(statistics.mean(totals), 2),
        median=round(statistics.median(totals), 2),
        std_dev=round(statistics.stdev(totals), 2) if len(totals) > 1 else 0.0,
        within_threshold_count=sum(1 for item in items if item.within_threshold),
    )


class ReconciliationService:

    def __init__(self, converter: Optional[CurrencyConverter] = None, risk_penalty: Optional[float] = None):
        self._converter = converter
        self.risk_penalty = get_settings().reconciliation_risk_penalty if risk_penalty is None else risk_penalty

    @property
    def converter(self) -> CurrencyConverter:
        if self._converter is None:
            self._converter = get_currency_converter()
        return self._converter

    async def build_input(
        self,
        enhancements: dict[ProviderType, EnhancedQuote],
        target_currency: str,
        threshold: Optional[float] = None,
        risk_mode: bool = False,
    ) -> ReconciliationInput:
        target = target_currency.strip().upper()
        data = ReconciliationInput(settings=ReconciliationSettings(
            currency=target,
            threshold=get_settings().reconciliation_threshold if threshold is None else threshold,
            risk_mode=risk_mode,
        ))

        for provider, enhanced in enhancements.items():
            monthly = enhanced.monthly_cost_breakdown.total
            if not monthly:
                data.excluded.append(ExcludedProvider(provider=provider, reason="No monthly total"))
                continue
            source = enhanced.base_currency or enhanced.base_quote.currency
            result = await self.converter.convert(monthly, source, target)
            if not result.success or result.data is None:
                logger.warning(f"[RECONCILE] {provider.value}: {source}->{target} conversion failed")
                data.excluded.append(ExcludedProvider(
                    provider=provider,
                    reason=f"Currency conversion failed: {result.error or 'unknown error'}",
                ))
                continue

            overlap = enhanced.overlap_analysis
            data.providers.append(ReconciliationProviderInput(
                provider=provider,
                normalized_monthly_total=result.data.conversion_data.target_amount,
                original_monthly_total=monthly,
                original_currency=source,
                confidence=enhanced.overall_confidence,
                coverage=ProviderCoverage(
                    includes=overlap.provider_includes,
                    missing=overlap.provider_missing,
                    double_counting_risk=overlap.double_counting_risk,
                ),
                quote_type=enhanced.quote_type,
            ))
        return data

    def compute(self, data: ReconciliationInput) -> ReconciliationResult:
        settings = data.settings
        excluded = list(data.excluded)
        valid = []
        for entry in data.providers:
            if math.isfinite(entry.normalized_monthly_total):
                valid.append(entry)
            else:
                excluded.append(ExcludedProvider(provider=entry.provider, reason="Total is not a finite number"))

        items: list[ReconciliationItem] = []
        if valid:
            floor = min(entry.normalized_monthly_total for entry in valid)
            for entry in valid:
                total = round(entry.normalized_monthly_total, 2)
                delta = round(total - floor, 2)
                pct = round(delta / floor, 4) if floor > 0 else 0.0
                item = ReconciliationItem(
                    provider=entry.provider,
                    total=total,
                    delta=delta,
                    pct=pct,
                    within_threshold=pct <= settings.threshold and not has_critical_missing(entry.coverage.missing),
                    confidence=clamp01(entry.confidence),
                    notes=build_notes(entry.coverage),
                )
                # Reported alongside the raw ranking, never used to reorder it
                if settings.risk_mode:
                    penalty = clamp01((1 - item.confidence) * self.risk_penalty)
                    item.risk_adjusted_total = round(total * (1 + penalty), 2)
                items.append(item)

        summary = summarize(items, settings.currency)
        logger.info(
            f"[RECONCILE] {len(items)} ranked in {settings.currency}, {len(excluded)} excluded, "
            f"{summary.within_threshold_count} within {settings.threshold:.1%}"
        )
        return ReconciliationResult(
            items=items,
            summary=summary,
            excluded=excluded,
            metadata=ReconciliationMetadata(
                threshold=settings.threshold,
                risk_mode=settings.risk_mode,
                currency=settings.currency,
            ),
        )

    async def reconcile(
        self,
        enhancements: dict[ProviderType, EnhancedQuote],
        target_currency: str,
        threshold: Optional[float] = None,
        risk_mode: bool = False,
    ) -> ReconciliationResult:
        data = await self.build_input(enhancements, target_currency, threshold, risk_mode)
        return self.compute(data)


_service: Optional[ReconciliationService] = None


def get_reconciliation_service() -> ReconciliationService:
    """Return the process-wide ReconciliationService (singleton)."""
    global _service
    if _service is None:
        _service = ReconciliationService()
    return _service
