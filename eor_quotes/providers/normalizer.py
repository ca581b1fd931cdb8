"""
NormalizedQuote helpers: provider dispatch, sanity checks, summaries and
side-by-side comparison.
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import ValidationError

from eor_quotes.models.enums import ProviderType
from eor_quotes.models.schemas import NormalizedQuote, Quote
from eor_quotes.normalization.benefits import parse_amount
from eor_quotes.providers.transformers import NORMALIZED_TRANSFORMERS, breakdown_from_costs, sum_costs

logger = logging.getLogger(__name__)


def quote_to_normalized(provider: ProviderType | str, quote: Quote) -> NormalizedQuote:
    """Derive a NormalizedQuote from an already-transformed display Quote."""
    breakdown = breakdown_from_costs(quote.costs)
    breakdown["statutoryContributions"] = round(sum_costs(quote.costs), 2)
    fee = parse_amount(quote.deel_fee)
    if fee:
        breakdown["platformFee"] = fee
    return NormalizedQuote(
        provider=ProviderType(provider),
        base_cost=parse_amount(quote.salary),
        currency=quote.currency,
        country=quote.country,
        monthly_total=parse_amount(quote.total_costs),
        breakdown=breakdown,
        original_response=quote.model_dump(),
    )


def normalize_quote(provider: ProviderType | str, provider_quote: Any) -> NormalizedQuote:
    """
    Produce the NormalizedQuote for *provider_quote*.

    Accepts an existing NormalizedQuote (returned unchanged), a display Quote,
    a dict already in NormalizedQuote form, or the provider's raw response.
    """
    provider = ProviderType(provider)

    if isinstance(provider_quote, NormalizedQuote):
        return provider_quote
    if isinstance(provider_quote, Quote):
        return quote_to_normalized(provider, provider_quote)

    if is_normalized_payload(provider_quote):
        try:
            return NormalizedQuote.model_validate({**provider_quote, "provider": provider.value})
        except ValidationError as exc:
            logger.warning(f"[NORMALIZE] {provider.value}: normalized payload rejected ({exc.error_count()} errors), transforming raw")

    return NORMALIZED_TRANSFORMERS[provider](provider_quote)


def is_normalized_payload(value: Any) -> bool:
    if not isinstance(value, dict):
        return False
    has_total = "monthlyTotal" in value or "monthly_total" in value
    has_base = "baseCost" in value or "base_cost" in value
    return has_total and has_base


def validate_normalized_quote(quote: NormalizedQuote) -> bool:
    """True when the quote carries identity fields and non-negative amounts."""
    return bool(
        quote.provider
        and quote.currency
        and quote.country
        and quote.base_cost >= 0
        and quote.monthly_total >= 0
    )


def get_quote_summary(quote: NormalizedQuote) -> str:
    return (
        f"{quote.provider.value.upper()}: {quote.monthly_total:,.2f} {quote.currency}/month "
        f"(base {quote.base_cost:,.2f}, {len(quote.breakdown)} breakdown items) | {quote.country}"
    )


def compare_quotes(quotes: list[NormalizedQuote]) -> list[dict[str, Any]]:
    """Sort quotes by monthly total and flag the cheapest / most expensive."""
    ranked = sorted(quotes, key=lambda q: q.monthly_total)
    if not ranked:
        return []

    cheapest = ranked[0].monthly_total
    result: list[dict[str, Any]] = []
    for position, quote in enumerate(ranked):
        result.append({
            "provider": quote.provider.value,
            "monthly_total": quote.monthly_total,
            "currency": quote.currency,
            "rank": position + 1,
            "difference_from_cheapest": round(quote.monthly_total - cheapest, 2),
            "is_cheapest": position == 0,
            "is_most_expensive": position == len(ranked) - 1,
        })
    return result
