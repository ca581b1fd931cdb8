"""
Provider response transformers.

Each provider gets two pure functions:
  - transform_<provider>_response_to_quote(raw) → Quote (display shape)
  - transform_to_<provider>_quote(raw)          → NormalizedQuote (LLM input)

The caller always knows which provider it called, so no shape sniffing
happens here. Missing fields default to 0 / "" / []; a missing or malformed
top-level object yields a zero-valued quote instead of raising.

Total-cost exclusions:
  deel       API total minus deel_fee and severance_accural
  rivermate  management fee and accruals provision excluded
  oyster     Oyster fee excluded (annual figures ÷ 12)
  rippling   platform fee excluded
  skuad      platform fee and accruals excluded
  velocity   markup fee excluded (annual figures ÷ 12)
"""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from eor_quotes.models.enums import BenefitKey, ProviderType
from eor_quotes.models.schemas import AdditionalData, NormalizedQuote, Quote, QuoteCost
from eor_quotes.normalization.benefits import identify_benefit_key, parse_amount

logger = logging.getLogger(__name__)

_FEE_WORDS = ("fee", "platform", "management")


# ── Shared helpers ───────────────────────────────────────


def _as_dict(value: Any) -> dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def _money(value: float) -> str:
    return f"{value:.2f}"


def _currency_code(value: Any, default: str = "") -> str:
    if isinstance(value, dict):
        return str(value.get("code") or default)
    return str(value or default)


def _country(value: Any, name_fallback: Any = "", code_fallback: Any = "") -> tuple[str, str]:
    """Return (name, code) from either a {name, code} object or plain strings."""
    if isinstance(value, dict):
        name = value.get("name") or name_fallback or ""
        code = value.get("code") or value.get("iso2") or value.get("iso3") or code_fallback or ""
        return str(name), str(code)
    return str(value or name_fallback or ""), str(code_fallback or "")


def _cost_rows(
    items: Iterable[Any],
    country: str,
    country_code: str,
    *,
    name_keys: tuple[str, ...] = ("name",),
    amount_keys: tuple[str, ...] = ("amount",),
    divisor: float = 1.0,
    frequency_key: str | None = None,
) -> list[QuoteCost]:
    """Build monthly QuoteCost rows from provider line items, skipping zero rows."""
    rows: list[QuoteCost] = []
    for raw in items:
        item = _as_dict(raw)
        name = next((str(item[k]) for k in name_keys if item.get(k)), "Cost Item")
        amount = next((parse_amount(item[k]) for k in amount_keys if item.get(k) is not None), 0.0)

        row_divisor = divisor
        if frequency_key:
            freq = str(item.get(frequency_key) or "").lower()
            if "year" in freq or "annual" in freq:
                row_divisor = 12.0

        monthly = amount / row_divisor
        if monthly == 0:
            continue
        rows.append(QuoteCost(
            name=name,
            amount=_money(monthly),
            frequency="monthly",
            country=country,
            country_code=country_code,
        ))
    return rows


def sum_costs(costs: Iterable[QuoteCost]) -> float:
    return sum(parse_amount(c.amount) for c in costs)


def is_fee_name(name: str) -> bool:
    lowered = name.lower()
    return any(word in lowered for word in _FEE_WORDS)


def _is_accrual_row(name: str) -> bool:
    return identify_benefit_key(name) in (BenefitKey.SEVERANCE_PROVISION, BenefitKey.PROBATION_PROVISION)


def normalize_breakdown_key(name: str) -> str:
    """Lowercase, strip punctuation, underscores for spaces, max 30 chars."""
    if not name:
        return "unknown"
    key = re.sub(r"[^\w\s]", "", name.lower())
    key = re.sub(r"\s+", "_", key)
    return key[:30] or "unknown"


def breakdown_from_costs(costs: Iterable[QuoteCost]) -> dict[str, float]:
    breakdown: dict[str, float] = {}
    for cost in costs:
        breakdown[normalize_breakdown_key(cost.name)] = parse_amount(cost.amount)
    return breakdown


def _normalized_from_quote(
    provider: ProviderType,
    quote: Quote,
    raw: Any,
    extra: dict[str, float] | None = None,
) -> NormalizedQuote:
    breakdown = breakdown_from_costs(quote.costs)
    breakdown["statutoryContributions"] = round(sum_costs(quote.costs), 2)
    breakdown.update({k: v for k, v in (extra or {}).items() if v})
    return NormalizedQuote(
        provider=provider,
        base_cost=parse_amount(quote.salary),
        currency=quote.currency,
        country=quote.country,
        monthly_total=parse_amount(quote.total_costs),
        breakdown=breakdown,
        original_response=raw,
    )


# ── Deel ─────────────────────────────────────────────────


def transform_deel_response_to_quote(raw: Any) -> Quote:
    data = _as_dict(raw)
    country, country_code = _country(data.get("country"), code_fallback=data.get("country_code"))

    salary = parse_amount(data.get("salary"))
    fee = parse_amount(data.get("deel_fee"))
    accrual = parse_amount(data.get("severance_accural"))
    api_total = parse_amount(data.get("total_costs"))

    kept = [
        item for item in _as_list(data.get("costs"))
        if not (is_fee_name(str(_as_dict(item).get("name") or ""))
                or _is_accrual_row(str(_as_dict(item).get("name") or "")))
    ]
    costs = _cost_rows(kept, country, country_code, frequency_key="frequency")

    total = max(0.0, api_total - fee - accrual) if api_total else salary + sum_costs(costs)
    notes = _as_list(_as_dict(data.get("additional_data")).get("additional_notes"))

    return Quote(
        provider=ProviderType.DEEL.value,
        salary=_money(salary),
        currency=_currency_code(data.get("currency")),
        country=country,
        country_code=country_code,
        deel_fee=_money(fee),
        severance_accural=_money(accrual),
        total_costs=_money(total),
        employer_costs=_money(max(0.0, total - salary)),
        costs=costs,
        benefits_data=_as_list(data.get("benefits_data")),
        additional_data=AdditionalData(additional_notes=[str(n) for n in notes]),
    )


def transform_to_deel_quote(raw: Any) -> NormalizedQuote:
    quote = transform_deel_response_to_quote(raw)
    return _normalized_from_quote(
        ProviderType.DEEL, quote, raw,
        extra={"platformFee": parse_amount(quote.deel_fee)},
    )


# ── Remote ───────────────────────────────────────────────


def _remote_employment(raw: Any) -> dict[str, Any]:
    data = _as_dict(raw)
    if "employment" not in data and isinstance(data.get("data"), dict):
        data = data["data"]
    return _as_dict(data.get("employment"))


def transform_remote_response_to_quote(raw: Any) -> Quote:
    employment = _remote_employment(raw)
    costs_block = _as_dict(employment.get("employer_currency_costs"))
    country, country_code = _country(employment.get("country"))

    salary = parse_amount(costs_block.get("monthly_gross_salary"))
    total = parse_amount(costs_block.get("monthly_total"))

    items = (
        _as_list(costs_block.get("monthly_contributions_breakdown"))
        + _as_list(costs_block.get("extra_statutory_payments_breakdown"))
    )
    costs = _cost_rows(items, country, country_code, name_keys=("name", "description"),
                       amount_keys=("amount", "cost"))

    if not total:
        total = salary + sum_costs(costs)

    return Quote(
        provider=ProviderType.REMOTE.value,
        salary=_money(salary),
        currency=_currency_code(costs_block.get("currency")),
        country=country,
        country_code=country_code,
        total_costs=_money(total),
        employer_costs=_money(max(0.0, total - salary)),
        costs=costs,
    )


def transform_to_remote_quote(raw: Any) -> NormalizedQuote:
    quote = transform_remote_response_to_quote(raw)
    costs_block = _as_dict(_remote_employment(raw).get("employer_currency_costs"))
    normalized = _normalized_from_quote(ProviderType.REMOTE, quote, raw)
    reported = parse_amount(costs_block.get("monthly_contributions_total"))
    if reported:
        normalized.breakdown["statutoryContributions"] = reported
    return normalized


# ── Rivermate ────────────────────────────────────────────


def _rivermate_fees(data: dict[str, Any]) -> tuple[float, float]:
    employer_costs = _as_dict(data.get("employer_costs"))
    management_fee = parse_amount(data.get("management_fee", employer_costs.get("management_fee")))
    accruals = parse_amount(data.get("accruals_provision", employer_costs.get("accruals_provision")))
    return management_fee, accruals


def transform_rivermate_response_to_quote(raw: Any) -> Quote:
    data = _as_dict(raw)
    country, country_code = _country(data.get("country"), code_fallback=data.get("country_code"))
    salary = parse_amount(data.get("salary"))

    tax_items = _as_dict(_as_dict(data.get("employer_costs")).get("tax_items"))
    costs = _cost_rows(tax_items.values(), country, country_code)
    total = salary + sum_costs(costs)

    return Quote(
        provider=ProviderType.RIVERMATE.value,
        salary=_money(salary),
        currency=_currency_code(data.get("currency")),
        country=country,
        country_code=country_code,
        total_costs=_money(total),
        employer_costs=_money(max(0.0, total - salary)),
        costs=costs,
    )


def transform_to_rivermate_quote(raw: Any) -> NormalizedQuote:
    quote = transform_rivermate_response_to_quote(raw)
    management_fee, accruals = _rivermate_fees(_as_dict(raw))
    return _normalized_from_quote(
        ProviderType.RIVERMATE, quote, raw,
        extra={"managementFee": management_fee, "accrualsProvision": accruals},
    )


# ── Oyster ───────────────────────────────────────────────


def _oyster_calculation(raw: Any) -> dict[str, Any]:
    data = _as_dict(raw)
    inner = _as_dict(data.get("data")) or data
    calculations = _as_list(inner.get("bulkSalaryCalculations"))
    return _as_dict(calculations[0]) if calculations else {}


def _oyster_fee_monthly(calc: dict[str, Any]) -> float:
    oyster_fees = _as_dict(_as_dict(calc.get("fees")).get("oyster"))
    fee = _as_dict(oyster_fees.get("feeInEngagementSalaryCurrency"))
    # Oyster quotes its fee per month already
    return parse_amount(fee.get("value"))


def transform_oyster_response_to_quote(raw: Any) -> Quote:
    calc = _oyster_calculation(raw)
    country, country_code = _country(calc.get("country"))
    salary = parse_amount(calc.get("annualGrossSalary")) / 12

    employer_taxes = _as_dict(_as_dict(calc.get("taxes")).get("employer"))
    costs = _cost_rows(_as_list(employer_taxes.get("contributions")), country, country_code, divisor=12.0)
    total = salary + sum_costs(costs)

    return Quote(
        provider=ProviderType.OYSTER.value,
        salary=_money(salary),
        currency=_currency_code(calc.get("currency")),
        country=country,
        country_code=country_code,
        total_costs=_money(total),
        employer_costs=_money(max(0.0, total - salary)),
        costs=costs,
    )


def transform_to_oyster_quote(raw: Any) -> NormalizedQuote:
    quote = transform_oyster_response_to_quote(raw)
    return _normalized_from_quote(
        ProviderType.OYSTER, quote, raw,
        extra={"platformFee": _oyster_fee_monthly(_oyster_calculation(raw))},
    )


# ── Rippling ─────────────────────────────────────────────


def transform_rippling_response_to_quote(raw: Any) -> Quote:
    data = _as_dict(raw)
    country, country_code = _country(data.get("country_name"), code_fallback=data.get("country_code"))
    salary = parse_amount(data.get("salary"))

    rows = [
        item for item in _as_list(data.get("employer_cost_breakdown"))
        if not is_fee_name(str(_as_dict(item).get("label") or _as_dict(item).get("name") or ""))
    ]
    costs = _cost_rows(rows, country, country_code, name_keys=("label", "name"),
                       frequency_key="frequency")
    total = salary + sum_costs(costs)

    return Quote(
        provider=ProviderType.RIPPLING.value,
        salary=_money(salary),
        currency=_currency_code(data.get("currency")),
        country=country,
        country_code=country_code,
        total_costs=_money(total),
        employer_costs=_money(max(0.0, total - salary)),
        costs=costs,
    )


def _fee_from_rows(rows: Iterable[Any], name_keys: tuple[str, ...] = ("name", "label")) -> float:
    for raw in rows:
        item = _as_dict(raw)
        name = next((str(item[k]) for k in name_keys if item.get(k)), "")
        if is_fee_name(name):
            return parse_amount(item.get("amount"))
    return 0.0


def transform_to_rippling_quote(raw: Any) -> NormalizedQuote:
    data = _as_dict(raw)
    quote = transform_rippling_response_to_quote(raw)
    fee = parse_amount(data.get("platform_fee")) or _fee_from_rows(_as_list(data.get("employer_cost_breakdown")))
    return _normalized_from_quote(ProviderType.RIPPLING, quote, raw, extra={"platformFee": fee})


# ── Skuad ────────────────────────────────────────────────


def _skuad_data(raw: Any) -> dict[str, Any]:
    data = _as_dict(raw)
    return _as_dict(data.get("data")) or data


def transform_skuad_response_to_quote(raw: Any) -> Quote:
    data = _skuad_data(raw)
    country, country_code = _country(data.get("country"), code_fallback=data.get("countryCode"))
    salary = parse_amount(data.get("grossSalary"))

    rows = [
        item for item in _as_list(data.get("employerContributions"))
        if not (is_fee_name(str(_as_dict(item).get("name") or ""))
                or _is_accrual_row(str(_as_dict(item).get("name") or "")))
    ]
    costs = _cost_rows(rows, country, country_code)
    total = salary + sum_costs(costs)

    return Quote(
        provider=ProviderType.SKUAD.value,
        salary=_money(salary),
        currency=_currency_code(data.get("currency")),
        country=country,
        country_code=country_code,
        total_costs=_money(total),
        employer_costs=_money(max(0.0, total - salary)),
        costs=costs,
    )


def transform_to_skuad_quote(raw: Any) -> NormalizedQuote:
    data = _skuad_data(raw)
    quote = transform_skuad_response_to_quote(raw)
    fee = parse_amount(data.get("platformFee")) or _fee_from_rows(_as_list(data.get("employerContributions")))
    accruals = sum(parse_amount(_as_dict(a).get("amount")) for a in _as_list(data.get("accruals")))
    return _normalized_from_quote(
        ProviderType.SKUAD, quote, raw,
        extra={"platformFee": fee, "accrualsProvision": round(accruals, 2)},
    )


# ── Velocity ─────────────────────────────────────────────


def transform_velocity_response_to_quote(raw: Any) -> Quote:
    data = _as_dict(raw)
    country, country_code = _country(data.get("countryName"), code_fallback=data.get("countryCode"))
    salary = parse_amount(data.get("annualSalary")) / 12

    rows = [
        item for item in _as_list(data.get("lineItems"))
        if not is_fee_name(str(_as_dict(item).get("name") or ""))
    ]
    costs = _cost_rows(rows, country, country_code, amount_keys=("annualAmount", "amount"), divisor=12.0)
    total = salary + sum_costs(costs)

    return Quote(
        provider=ProviderType.VELOCITY.value,
        salary=_money(salary),
        currency=_currency_code(data.get("currency")),
        country=country,
        country_code=country_code,
        total_costs=_money(total),
        employer_costs=_money(max(0.0, total - salary)),
        costs=costs,
    )


def transform_to_velocity_quote(raw: Any) -> NormalizedQuote:
    data = _as_dict(raw)
    quote = transform_velocity_response_to_quote(raw)
    fee = parse_amount(data.get("markupFee")) / 12
    if not fee:
        fee = _fee_from_rows(_as_list(data.get("lineItems"))) / 12
    return _normalized_from_quote(ProviderType.VELOCITY, quote, raw, extra={"platformFee": round(fee, 2)})


# ── Dispatch tables ──────────────────────────────────────

QUOTE_TRANSFORMERS = {
    ProviderType.DEEL: transform_deel_response_to_quote,
    ProviderType.REMOTE: transform_remote_response_to_quote,
    ProviderType.RIVERMATE: transform_rivermate_response_to_quote,
    ProviderType.OYSTER: transform_oyster_response_to_quote,
    ProviderType.RIPPLING: transform_rippling_response_to_quote,
    ProviderType.SKUAD: transform_skuad_response_to_quote,
    ProviderType.VELOCITY: transform_velocity_response_to_quote,
}

NORMALIZED_TRANSFORMERS = {
    ProviderType.DEEL: transform_to_deel_quote,
    ProviderType.REMOTE: transform_to_remote_quote,
    ProviderType.RIVERMATE: transform_to_rivermate_quote,
    ProviderType.OYSTER: transform_to_oyster_quote,
    ProviderType.RIPPLING: transform_to_rippling_quote,
    ProviderType.SKUAD: transform_to_skuad_quote,
    ProviderType.VELOCITY: transform_to_velocity_quote,
}


def transform_response_to_quote(provider: ProviderType | str, raw: Any) -> Quote:
    """Run the display transformer registered for *provider*."""
    transformer = QUOTE_TRANSFORMERS[ProviderType(provider)]
    quote = transformer(raw)
    logger.debug(
        f"[TRANSFORM] {quote.provider}: salary={quote.salary} total={quote.total_costs} "
        f"costs={len(quote.costs)} {quote.currency}"
    )
    return quote
