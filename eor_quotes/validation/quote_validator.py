"""
Quote Validator — checks display Quotes before they go downstream and
explains why a quote was rejected.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

from pydantic import BaseModel

from eor_quotes.models.schemas import NormalizedQuote, QuoteValidationResult

logger = logging.getLogger(__name__)

REQUIRED_STRING_PROPS = ("provider", "salary", "currency", "country", "total_costs")
NUMERIC_STRING_PROPS = ("salary", "total_costs")

_MONEY_NOISE = re.compile(r"[$,\s]")


def _to_mapping(quote: Any) -> Any:
    if isinstance(quote, BaseModel):
        return quote.model_dump()
    return quote


def _is_numeric_string(value: str) -> bool:
    try:
        float(_MONEY_NOISE.sub("", value))
    except ValueError:
        return False
    return True


def is_valid_quote(quote: Any) -> bool:
    """True when *quote* has every required Quote field in a usable form."""
    quote = _to_mapping(quote)
    if not isinstance(quote, dict) or not quote:
        return False

    for prop in REQUIRED_STRING_PROPS:
        value = quote.get(prop)
        if not isinstance(value, str) or not value:
            return False

    if not all(_is_numeric_string(quote[prop]) for prop in NUMERIC_STRING_PROPS):
        return False

    for list_prop in ("costs", "benefits_data"):
        if quote.get(list_prop) is not None and not isinstance(quote[list_prop], list):
            return False

    additional = quote.get("additional_data")
    if additional is not None:
        if not isinstance(additional, dict) or not isinstance(additional.get("additional_notes"), list):
            return False

    return True


def is_valid_quote_with_context(quote: Any, expected_provider: Optional[str] = None) -> bool:
    """Like is_valid_quote, but a missing provider tag is filled from context."""
    quote = _to_mapping(quote)
    if not isinstance(quote, dict) or not quote:
        return False
    if not quote.get("provider") and expected_provider:
        quote = {**quote, "provider": expected_provider}
    return is_valid_quote(quote)


def is_valid_normalized_quote(quote: Any) -> bool:
    if isinstance(quote, NormalizedQuote):
        quote = quote.model_dump(by_alias=True)
    if not isinstance(quote, dict):
        return False

    base_cost = quote.get("baseCost", quote.get("base_cost"))
    monthly_total = quote.get("monthlyTotal", quote.get("monthly_total"))
    numeric = (int, float)
    return (
        isinstance(quote.get("provider"), str)
        and isinstance(base_cost, numeric) and not isinstance(base_cost, bool)
        and isinstance(monthly_total, numeric) and not isinstance(monthly_total, bool)
        and isinstance(quote.get("currency"), str) and len(quote["currency"]) > 0
        and isinstance(quote.get("country"), str) and len(quote["country"]) > 0
        and base_cost >= 0
        and monthly_total >= 0
    )


def _sample(quote: dict[str, Any], provider_placeholder: Any) -> dict[str, Any]:
    return {
        "provider": quote.get("provider") or provider_placeholder,
        "salary": quote.get("salary"),
        "currency": quote.get("currency"),
        "country": quote.get("country"),
        "total_costs": quote.get("total_costs"),
    }


def validate_quote_with_debugging(provider: str, quote: Any) -> QuoteValidationResult:
    """
    Validate *quote* and explain any failure.

    A quote whose only defect is the missing provider tag is reported as
    recoverable (quote_info.can_be_fixed) so the caller can inject *provider*;
    anything else lists the missing and mistyped fields.
    """
    quote = _to_mapping(quote)

    if quote is None:
        return QuoteValidationResult(
            is_valid=False, reason="Quote is null or undefined", quote_info={"quote": None},
        )
    if not isinstance(quote, dict):
        return QuoteValidationResult(
            is_valid=False,
            reason="Quote is not an object",
            quote_info={"quote": repr(quote), "type": type(quote).__name__},
        )

    keys = list(quote.keys())
    if not keys:
        return QuoteValidationResult(
            is_valid=False, reason="Quote is an empty object", quote_info={"quote": quote, "keys": keys},
        )

    if is_valid_quote(quote):
        return QuoteValidationResult(is_valid=True)

    missing_props = [prop for prop in REQUIRED_STRING_PROPS if not quote.get(prop)]
    invalid_props = [
        prop for prop in REQUIRED_STRING_PROPS
        if quote.get(prop) and not isinstance(quote.get(prop), str)
    ]

    if missing_props == ["provider"] and not invalid_props and is_valid_quote_with_context(quote, provider):
        logger.debug(f"[VALIDATOR] {provider}: quote valid apart from missing provider tag")
        return QuoteValidationResult(
            is_valid=False,
            reason=f'Quote data is valid but missing provider field (should be "{provider}")',
            quote_info={
                "provider": provider,
                "keys": keys,
                "missing_props": missing_props,
                "can_be_fixed": True,
                "sample_data": _sample(quote, f'[MISSING - should be "{provider}"]'),
            },
        )

    logger.warning(
        f"[VALIDATOR] {provider}: invalid quote | missing={missing_props} invalid={invalid_props}"
    )
    return QuoteValidationResult(
        is_valid=False,
        reason="Quote is missing required properties or has invalid data",
        quote_info={
            "provider": provider,
            "keys": keys,
            "missing_props": missing_props,
            "invalid_props": invalid_props,
            "sample_data": _sample(quote, None),
        },
    )
