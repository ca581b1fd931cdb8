"""
Display merge of enhancement extras into a provider Quote.

Extras are the monthly costs an enhancement found missing from the
provider's quote. They are appended as cost rows on a deep copy; the
source Quote is never touched.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from pydantic import BaseModel

from eor_quotes.enhancement.totals import monthly_enhancement_items
from eor_quotes.models.enhancement import EnhancedQuote
from eor_quotes.models.schemas import Quote, QuoteCost
from eor_quotes.normalization.benefits import parse_amount

logger = logging.getLogger(__name__)


class QuoteExtra(BaseModel):
    name: str
    amount: float
    guards: Optional[list[str]] = None


_GUARDS: list[tuple[tuple[str, ...], list[str]]] = [
    (("termination",), ["termination", "severance", "notice", "provision", "accrual"]),
    (("13",), ["13th", "thirteenth", "aguinaldo"]),
    (("14",), ["14th", "fourteenth"]),
    (("meal",), ["meal", "voucher", "ticket", "food"]),
    (("transport",), ["transport", "commute", "bus", "metro"]),
    (("employer", "contrib"), [
        "employer contributions", "employer contribution",
        "statutory contributions", "statutory contribution",
    ]),
]


def _norm(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", (text or "").lower()).strip()


def default_guards(name: str) -> list[str]:
    """Cost-name fragments that mark an extra as already present on the quote."""
    lowered = name.lower()
    for needles, guards in _GUARDS:
        if all(n in lowered for n in needles):
            return guards
    return [name]


def _has_item_like(costs: list[QuoteCost], needle: str) -> bool:
    needle = _norm(needle)
    for cost in costs:
        cost_name = _norm(cost.name)
        # Employer contributions only match rows naming both words
        if "employer" in needle and "contribution" in needle:
            if "employer" in cost_name and "contribution" in cost_name:
                return True
        elif needle and needle in cost_name:
            return True
    return False


def merge_enhancement_extras(quote: Quote, extras: Iterable[QuoteExtra | dict], scale: float = 1.0) -> Quote:
    """
    Return a copy of *quote* with each positive, not-yet-listed extra
    appended as a monthly cost row and the totals raised accordingly.

    *scale* converts extra amounts into the quote's currency (e.g. the
    ratio between a selected-currency quote and the local one).
    """
    factor = scale if scale > 0 else 1.0
    merged = quote.model_copy(deep=True)
    existing = list(merged.costs)
    added = 0.0

    for raw in extras:
        extra = raw if isinstance(raw, QuoteExtra) else QuoteExtra.model_validate(raw)
        if extra.amount <= 0:
            continue
        guards = extra.guards if extra.guards is not None else default_guards(extra.name)
        if any(_has_item_like(existing, g) for g in guards):
            logger.debug(f"[DISPLAY] Skipping '{extra.name}': already on {quote.provider or 'quote'}")
            continue
        amount = extra.amount * factor
        merged.costs.append(QuoteCost(
            name=extra.name,
            amount=f"{amount:.2f}",
            frequency="monthly",
            country=merged.country,
            country_code=merged.country_code,
        ))
        added += amount

    if added:
        merged.total_costs = f"{parse_amount(quote.total_costs) + added:.2f}"
        merged.employer_costs = f"{parse_amount(quote.employer_costs) + added:.2f}"
    return merged


def extras_from_enhanced(enhanced: EnhancedQuote) -> list[QuoteExtra]:
    """Monthly extras for every enhancement that counts toward `final_total`."""
    items = monthly_enhancement_items(enhanced.enhancements, enhanced.quote_type)
    return [QuoteExtra(name=label, amount=amount) for label, amount in items]
