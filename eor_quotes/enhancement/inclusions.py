"""
Provider Inclusions Extractor — works out which benefits a provider quote
already covers, so the LLM is only asked about what is missing.

The quote's cost lines are recovered from its original response (or, when
that is unusable, from the normalized breakdown) and run through the same
classify → monthly-normalize → deduplicate pipeline as display quotes.
Unclassified employer cost lines count as social security.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from eor_quotes.models.enums import BenefitKey, Frequency, ProviderType
from eor_quotes.models.schemas import IncludedBenefit, NormalizedQuote, QuoteCost, StandardizedBenefitData
from eor_quotes.normalization.benefits import (
    identify_benefit_key,
    normalize_and_deduplicate_quote_costs,
    parse_amount,
)
from eor_quotes.providers.transformers import QUOTE_TRANSFORMERS, is_fee_name

logger = logging.getLogger(__name__)

PROVIDER_BASE_CONFIDENCE: dict[ProviderType, float] = {
    ProviderType.REMOTE: 0.7,
    ProviderType.RIVERMATE: 0.65,
    ProviderType.OYSTER: 0.6,
    ProviderType.DEEL: 0.5,
    ProviderType.RIPPLING: 0.5,
    ProviderType.SKUAD: 0.5,
    ProviderType.VELOCITY: 0.5,
}

MANDATORY_KEYS = (BenefitKey.THIRTEENTH_SALARY, BenefitKey.FOURTEENTH_SALARY, BenefitKey.SOCIAL_SECURITY)

# Breakdown entries that summarize other lines rather than describing one
_SUMMARY_KEYS = {"statutoryContributions", "platformFee", "baseSalary", "total", "monthlyTotal"}


class ProviderInclusionsExtractor:
    """Builds StandardizedBenefitData from a NormalizedQuote."""

    def extract(self, provider: ProviderType, quote: NormalizedQuote) -> StandardizedBenefitData:
        included: dict[BenefitKey, IncludedBenefit] = {}

        rows = normalize_and_deduplicate_quote_costs(
            self._cost_lines(provider, quote),
            base_monthly=quote.base_cost or None,
        )
        for row in rows:
            if is_fee_name(row.name):
                continue
            key = identify_benefit_key(row.name) or BenefitKey.SOCIAL_SECURITY
            self._add(included, key, parse_amount(row.amount), row.name)

        if not included:
            statutory = quote.breakdown.get("statutoryContributions", 0.0)
            self._add(included, BenefitKey.SOCIAL_SECURITY, statutory, "Employer statutory contributions")

        total = round(sum(b.amount for b in included.values()), 2)
        confidence = self.estimate_confidence(provider, included)
        logger.debug(
            f"[INCLUSIONS] {provider.value}: {len(included)} categories, "
            f"{total:.2f} {quote.currency}/month, confidence={confidence:.2f}"
        )
        return StandardizedBenefitData(
            provider=provider,
            base_salary=quote.base_cost,
            currency=quote.currency,
            country=quote.country,
            monthly_total=quote.monthly_total,
            included_benefits=included,
            total_monthly_benefits=total,
            extraction_confidence=confidence,
            extracted_at=datetime.now(timezone.utc).isoformat(),
        )

    def _cost_lines(self, provider: ProviderType, quote: NormalizedQuote) -> list[Any]:
        original = quote.original_response
        if isinstance(original, dict) and isinstance(original.get("costs"), list) and "total_costs" in original:
            return [c for c in original["costs"] if isinstance(c, (dict, QuoteCost))]

        if isinstance(original, dict) and original:
            costs = QUOTE_TRANSFORMERS[provider](original).costs
            if costs:
                return list(costs)

        return [
            QuoteCost(name=name, amount=f"{amount:.2f}")
            for name, amount in quote.breakdown.items()
            if name not in _SUMMARY_KEYS and amount > 0
        ]

    @staticmethod
    def _add(included: dict[BenefitKey, IncludedBenefit], key: BenefitKey, amount: float, description: str) -> None:
        if amount <= 0:
            return
        existing = included.get(key)
        if existing is None:
            included[key] = IncludedBenefit(amount=round(amount, 2), frequency=Frequency.MONTHLY, description=description)
        else:
            existing.amount = round(existing.amount + amount, 2)

    @staticmethod
    def estimate_confidence(provider: ProviderType, included: dict[BenefitKey, IncludedBenefit]) -> float:
        if not included:
            return 0.3
        confidence = PROVIDER_BASE_CONFIDENCE.get(provider, 0.45) + 0.04 * len(included)
        if any(key in included for key in MANDATORY_KEYS):
            confidence += 0.1
        return round(min(0.9, confidence), 4)
