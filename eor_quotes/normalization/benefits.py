"""
Benefit normalization — classify free-text cost line items into canonical
benefit categories, convert amounts to monthly equivalents, and merge
duplicate rows.

Provides:
  - identify_benefit_key()                  → canonical BenefitKey or None
  - normalize_benefit_amount()              → monthly-equivalent amount (0 = discard)
  - normalize_and_deduplicate_quote_costs() → one summed row per category
  - parse_amount()                          → tolerant money-string parser

None of these raise: unknown names return None, unusable amounts return 0.
"""

from __future__ import annotations

import logging
import math
import re
import unicodedata
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Iterable, Optional

from eor_quotes.config import get_settings
from eor_quotes.models.enums import BenefitKey
from eor_quotes.models.schemas import QuoteCost

logger = logging.getLogger(__name__)


# ── Category tables ──────────────────────────────────────

YEARLY_BENEFIT_KEYS: frozenset[BenefitKey] = frozenset({
    BenefitKey.THIRTEENTH_SALARY,
    BenefitKey.FOURTEENTH_SALARY,
    BenefitKey.VACATION_BONUS,
})

# Ordered: first match wins.
BENEFIT_PATTERNS: list[tuple[BenefitKey, re.Pattern[str]]] = [
    (BenefitKey.THIRTEENTH_SALARY, re.compile(
        r"(?:^|\b)(?:13(?:th)?(?:\s*month)?|13º|13o|thirteenth|trece[a-z]*|d[ée]cim[ao]\s*terc|"
        r"aguinaldos?|christmas(?:[-\s]*(?:bonus|pay|salary))?|year[-\s]*end\s*(?:bonus|pay)|"
        r"bonus\s*de\s*natal|gratific[aã]?[cç][aã]o\s*de\s*natal|sueldo\s*anual)",
        re.IGNORECASE,
    )),
    (BenefitKey.FOURTEENTH_SALARY, re.compile(
        r"(?:^|\b)(?:14(?:th)?(?:\s*month)?|14º|14o|fourteenth|d[ée]cim[ao]\s*quart|decim[ao]\s*cuart)",
        re.IGNORECASE,
    )),
    (BenefitKey.VACATION_BONUS, re.compile(
        r"(vacation|holiday|annual\s*leave)\s*(bonus|allowance|pay)",
        re.IGNORECASE,
    )),
    (BenefitKey.TRANSPORTATION_ALLOWANCE, re.compile(
        r"(transport|commut|bus|metro|transit|car\s*allowance|auto\s*allowance|vehicle|"
        r"travel\s*allowance|gas\s*allowance|fuel|vale\s*transport)",
        re.IGNORECASE,
    )),
    (BenefitKey.REMOTE_WORK_ALLOWANCE, re.compile(
        r"(remote|work\s*from\s*home|wfh|telework|home\s*office|telecommut|distance\s*work|"
        r"home.*allowance|office.*allowance)",
        re.IGNORECASE,
    )),
    (BenefitKey.MEAL_VOUCHERS, re.compile(
        r"(meal|food|voucher|ticket\s*restaurant|lunch|dining|cafeteria|vale\s*refei[cç][aã]o|"
        r"vale\s*aliment|restaurant\s*card|food\s*card)",
        re.IGNORECASE,
    )),
    (BenefitKey.SOCIAL_SECURITY, re.compile(
        r"(social\s*security|social\s*insur|employer\s*contrib|pension|\bni\b|inps|ssf|"
        r"contrib.*social|fica|ssi|unemployment\s*insur|disability\s*insur|workers.*comp|"
        r"\bfgts\b|indemnity\s*fund|severance\s*indemnity)",
        re.IGNORECASE,
    )),
    (BenefitKey.HEALTH_INSURANCE, re.compile(
        r"(health\s*insur|medical\s*insur|\bhi\b|health.*care|medical.*care|dental|vision|"
        r"life\s*insur|disability.*insur)",
        re.IGNORECASE,
    )),
    (BenefitKey.SEVERANCE_PROVISION, re.compile(
        r"(severance|termination|redundancy|indemnity|gratuity|separation)\s*"
        r"(?:provisions?|accruals?|costs?|payments?|pay|funds?|reserves?|liabilit(?:y|ies)|"
        r"obligations?|packages?|charges?|estimates?|benefits?|allowances?)",
        re.IGNORECASE,
    )),
    (BenefitKey.PROBATION_PROVISION, re.compile(
        r"(probation)\s*(?:provisions?|accruals?|costs?|payments?|pay|termination|obligations?)",
        re.IGNORECASE,
    )),
]

# Names that imply a yearly figure even when the key was not resolved.
YEARLY_NAME_PATTERNS: list[re.Pattern[str]] = [pattern for _, pattern in BENEFIT_PATTERNS[:3]]

BENEFIT_SYNONYMS: dict[BenefitKey, list[str]] = {
    BenefitKey.THIRTEENTH_SALARY: [
        "christmas bonus",
        "christmas salary",
        "year end bonus",
        "13 month pay",
        "13 month salary",
        "13th salary",
        "13th month",
        "annual bonus",
    ],
    BenefitKey.VACATION_BONUS: [
        "annual leave bonus",
        "vacation allowance",
        "holiday allowance",
    ],
    BenefitKey.SEVERANCE_PROVISION: [
        "severance accrual",
        "severance accruals",
        "severance reserve",
        "severance provision",
        "termination reserve",
        "termination provision",
        "redundancy reserve",
        "redundancy provision",
        "end of service",
        "eos accrual",
        "eos provision",
        "gratuity",
    ],
    BenefitKey.PROBATION_PROVISION: [
        "probation reserve",
        "probation provision",
        "probation accrual",
    ],
}


# ── Text helpers ─────────────────────────────────────────

_COMBINING_MARKS = re.compile(r"[\u0300-\u036f]")
_SEPARATORS = re.compile(r"[_-]+")
_WHITESPACE = re.compile(r"\s+")
_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")


def normalize_for_matching(value: str) -> str:
    """Strip diacritics, turn _/- into spaces and collapse whitespace."""
    decomposed = unicodedata.normalize("NFD", value)
    stripped = _COMBINING_MARKS.sub("", decomposed)
    spaced = _SEPARATORS.sub(" ", stripped)
    return _WHITESPACE.sub(" ", spaced).strip()


def _matching_candidates(name: str) -> list[str]:
    trimmed = name.strip()
    base = [trimmed, trimmed.lower(), _CAMEL_BOUNDARY.sub(r"\1 \2", trimmed)]

    candidates: list[str] = []
    for value in base:
        normalized = normalize_for_matching(value)
        for candidate in (value, normalized, normalized.lower()):
            if candidate and candidate not in candidates:
                candidates.append(candidate)
    return candidates


def sanitize_key(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", " ", value.lower()).strip()


def _round2(value: float) -> float:
    """Half-up rounding to cents (avoids banker's rounding on .xx5)."""
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


_LEADING_NUMBER = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")


def _normalize_separators(cleaned: str) -> str:
    if "," in cleaned and "." in cleaned:
        # The right-most separator is the decimal point
        thousands = "." if cleaned.rfind(",") > cleaned.rfind(".") else ","
        cleaned = cleaned.replace(thousands, "")
        return cleaned.replace(",", ".")
    if cleaned.count(".") > 1:
        return cleaned.replace(".", "")
    cleaned = re.sub(r",(?=\d{3}(?:\D|$))", "", cleaned)
    return cleaned.replace(",", ".", 1)


def parse_amount(value: Any) -> float:
    """
    Parse a provider amount (number or money string) into a float.

    Currency symbols and spaces are dropped. When both "," and "." appear
    the last one is the decimal separator; otherwise thousands commas are
    removed and a remaining comma is the decimal separator. Returns 0.0 when
    nothing numeric is found.
    """
    if isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        return float(value) if math.isfinite(value) else 0.0
    if not isinstance(value, str):
        return 0.0

    cleaned = _normalize_separators(re.sub(r"[^0-9,.\-]", "", value))

    match = _LEADING_NUMBER.match(cleaned)
    if not match:
        return 0.0
    try:
        parsed = float(match.group())
    except ValueError:
        return 0.0
    return parsed if math.isfinite(parsed) else 0.0


# ── Classifier ───────────────────────────────────────────


def identify_benefit_key(name: Optional[str]) -> Optional[BenefitKey]:
    """Map a free-text line-item name to its canonical benefit category."""
    if not name or not isinstance(name, str):
        return None

    for candidate in _matching_candidates(name):
        normalized = normalize_for_matching(candidate).lower()
        compact = normalized.replace(" ", "")

        for key, pattern in BENEFIT_PATTERNS:
            if pattern.search(candidate) or pattern.search(normalized):
                return key

        for key, phrases in BENEFIT_SYNONYMS.items():
            for phrase in phrases:
                phrase_normalized = normalize_for_matching(phrase).lower()
                if phrase_normalized in normalized:
                    return key
                if phrase_normalized.replace(" ", "") in compact:
                    return key

    return None


# ── Amount Normalizer ────────────────────────────────────


def normalize_benefit_amount(
    amount: float,
    *,
    benefit_key: Optional[BenefitKey] = None,
    raw_name: Optional[str] = None,
    frequency: Optional[str] = None,
    reference_monthly: Optional[float] = None,
    tolerance: Optional[float] = None,
    multiplier: Optional[float] = None,
) -> float:
    """
    Convert *amount* to a monthly equivalent. Returns 0.0 for amounts that
    should be discarded (non-finite or not positive).

    Yearly benefits reported as "monthly" are checked against
    reference_monthly / 12: a figure near the full reference salary, or above
    multiplier × expected, is treated as a mislabelled yearly total.
    """
    if not isinstance(amount, (int, float)) or not math.isfinite(amount) or amount <= 0:
        return 0.0

    settings = get_settings()
    tolerance = settings.mislabel_tolerance if tolerance is None else tolerance
    multiplier = settings.mislabel_multiplier if multiplier is None else multiplier

    freq = (frequency or "").lower()
    is_yearly_key = benefit_key in YEARLY_BENEFIT_KEYS
    reference = reference_monthly if isinstance(reference_monthly, (int, float)) else 0.0

    if is_yearly_key and reference > 0 and "month" in freq:
        expected = _round2(reference / 12)
        if abs(amount - expected) <= expected * tolerance:
            return _round2(amount)
        if abs(amount - reference) <= reference * tolerance or amount > expected * multiplier:
            logger.debug(
                f"[NORMALIZE] {raw_name or benefit_key}: {amount} labelled monthly looks yearly "
                f"(expected ≈ {expected}) → using {expected}"
            )
            return expected

    if "month" in freq:
        return _round2(amount)

    name_is_yearly = bool(raw_name) and any(p.search(raw_name) for p in YEARLY_NAME_PATTERNS)
    if is_yearly_key or name_is_yearly or "year" in freq or "annual" in freq:
        return amount / 12

    return float(amount)


# ── Deduplicator ─────────────────────────────────────────


def normalize_and_deduplicate_quote_costs(
    costs: Iterable[QuoteCost | dict[str, Any]],
    *,
    base_monthly: Optional[float] = None,
) -> list[QuoteCost]:
    """
    Classify, monthly-normalize and merge cost rows.

    One output row per canonical category (or per sanitized name for
    unclassified rows), in first-seen order, amounts summed and formatted to
    two decimals with frequency "monthly". Rows that normalize to zero are
    dropped.
    """
    groups: dict[str, dict[str, Any]] = {}

    for idx, raw in enumerate(costs or []):
        item = raw.model_dump() if isinstance(raw, QuoteCost) else dict(raw or {})
        name = str(item.get("name") or "").strip()

        amount = parse_amount(item.get("amount"))
        if amount <= 0:
            continue

        key = identify_benefit_key(name)
        monthly = normalize_benefit_amount(
            amount,
            benefit_key=key,
            raw_name=name,
            frequency=str(item.get("frequency") or ""),
            reference_monthly=base_monthly,
        )
        if monthly <= 0:
            continue

        if key is not None:
            group_key = f"benefit:{key.value}"
        else:
            group_key = f"name:{sanitize_key(name) or f'idx_{idx}'}"

        group = groups.get(group_key)
        if group is None:
            groups[group_key] = {
                "index": idx,
                "name": name or "Cost Item",
                "amount": monthly,
                "country": str(item.get("country") or ""),
                "country_code": str(item.get("country_code") or ""),
            }
            continue

        group["amount"] += monthly
        if not group["country"] and item.get("country"):
            group["country"] = str(item["country"])
        if not group["country_code"] and item.get("country_code"):
            group["country_code"] = str(item["country_code"])

    ordered = sorted(groups.values(), key=lambda g: g["index"])
    return [
        QuoteCost(
            name=g["name"],
            amount=f"{_round2(g['amount']):.2f}",
            frequency="monthly",
            country=g["country"],
            country_code=g["country_code"],
        )
        for g in ordered
    ]
