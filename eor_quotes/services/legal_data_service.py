"""
Legal Data Service — loads per-country legal/benefits profiles and flattens
them into the compact text block embedded in enhancement prompts.

Profiles are JSON files named papaya_global_data_{CODE}.json under
settings.legal_data_dir. A file may hold a {"results": [...]} envelope or
the country record itself ({"country", "data": {...}}).
"""

from __future__ import annotations

import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import pycountry
from pydantic import BaseModel

from eor_quotes.config import get_settings

logger = logging.getLogger(__name__)

NO_LEGAL_DATA = "No legal data available"
MAX_PROFILE_CHARS = 20_000

CODE_ALIASES: dict[str, str] = {
    "UK": "GB",
    "EL": "GR",
}

COUNTRY_CURRENCIES: dict[str, str] = {
    "brazil": "BRL",
    "argentina": "ARS",
    "colombia": "COP",
    "mexico": "MXN",
    "chile": "CLP",
    "peru": "PEN",
    "germany": "EUR",
    "france": "EUR",
    "spain": "EUR",
    "italy": "EUR",
    "netherlands": "EUR",
    "united kingdom": "GBP",
    "uk": "GBP",
    "united states": "USD",
    "usa": "USD",
}

_CURRENCY_CODE = re.compile(r"\b([A-Z]{3})\b")
_WHITESPACE = re.compile(r"\s+")


class FlattenedLegalProfile(BaseModel):
    country: str
    currency: str = ""
    data: str = NO_LEGAL_DATA
    extracted_at: str = ""


def _clean(text: Any) -> str:
    if not isinstance(text, str):
        return ""
    return _WHITESPACE.sub(" ", text).strip()


def _lookup_iso_country(name: str) -> Optional[str]:
    try:
        return pycountry.countries.lookup(name).alpha_2
    except LookupError:
        logger.debug(f"[LEGAL] No exact ISO match for '{name}', trying fuzzy search")
    try:
        matches = pycountry.countries.search_fuzzy(name)
    except LookupError:
        return None
    return matches[0].alpha_2 if matches else None


def resolve_country_code(country: str) -> str:
    """Map a country name or code to the ISO-2 code legal profiles are filed under."""
    raw = (country or "").strip()
    if not raw:
        return ""
    upper = raw.upper()
    if upper in CODE_ALIASES:
        return CODE_ALIASES[upper]
    code = _lookup_iso_country(raw)
    if code:
        return code
    logger.warning(f"[LEGAL] Unknown country '{raw}', falling back to '{upper[:2]}'")
    return upper[:2]


def _extract_currency(country: str, data: dict[str, Any]) -> str:
    contributions = (data.get("contribution") or {}).get("employer_contributions") or []
    haystack = " ".join([
        str(data.get("minimum_wage") or ""),
        *(f"{c.get('rate', '')} {c.get('description', '')}" for c in contributions if isinstance(c, dict)),
        *(str(b) for b in data.get("common_benefits") or []),
    ])
    match = _CURRENCY_CODE.search(haystack)
    if match:
        return match.group(1)
    return COUNTRY_CURRENCIES.get((country or "").lower(), "USD")


def _contribution_lines(title: str, items: list[Any]) -> list[str]:
    lines = [f"{title}:"]
    for item in items:
        if isinstance(item, dict):
            lines.append(f"- {_clean(item.get('description'))}: {_clean(item.get('rate'))}")
    lines.append("")
    return lines


def flatten_for_quote(country_data: Optional[dict[str, Any]]) -> FlattenedLegalProfile:
    """Keep only the sections that influence monthly cost, capped in length."""
    now = datetime.now(timezone.utc).isoformat()
    country = (country_data or {}).get("country") or "Unknown"
    data = (country_data or {}).get("data")
    if not isinstance(data, dict) or not data:
        return FlattenedLegalProfile(country=country, extracted_at=now)

    sections: list[str] = []

    employer = (data.get("contribution") or {}).get("employer_contributions")
    if employer:
        sections += _contribution_lines("EMPLOYER_CONTRIBUTIONS", employer)

    payroll = data.get("payroll") or {}
    if payroll:
        sections.append("PAYROLL_REQUIREMENTS:")
        if payroll.get("13th_salary"):
            sections.append(f"13th Salary: {_clean(payroll['13th_salary'])}")
        if payroll.get("14th_salary"):
            sections.append(f"14th Salary: {_clean(payroll['14th_salary'])}")
        sections.append("")

    termination = data.get("termination") or {}
    if termination:
        sections.append("TERMINATION_REQUIREMENTS:")
        for key, label in (
            ("notice_period", "Notice Period"),
            ("severance_pay", "Severance Pay"),
            ("probation_period", "Probation Period"),
        ):
            if termination.get(key):
                sections.append(f"{label}: {_clean(termination[key])}")
        sections.append("")

    leave = data.get("leave") or {}
    if isinstance(leave, dict) and leave:
        sections.append("LEAVE_ENTITLEMENTS:")
        for key, value in leave.items():
            if isinstance(value, str) and value:
                sections.append(f"{key.replace('_', ' ').upper()}: {_clean(value)}")
        sections.append("")

    benefits = data.get("common_benefits")
    if isinstance(benefits, list) and benefits:
        sections.append("COMMON_BENEFITS:")
        sections += [f"- {_clean(b)}" for b in benefits]
        sections.append("")

    if data.get("remote_work"):
        sections += ["REMOTE_WORK_RULES:", _clean(data["remote_work"]), ""]

    text = "\n".join(sections).strip() or NO_LEGAL_DATA
    if len(text) > MAX_PROFILE_CHARS:
        text = text[:MAX_PROFILE_CHARS] + "\n[truncated]"

    return FlattenedLegalProfile(
        country=country,
        currency=_extract_currency(country, data),
        data=text,
        extracted_at=now,
    )


class LegalDataService:
    """File-backed legal profile lookup with an in-memory cache."""

    def __init__(self, data_dir: Optional[str | Path] = None):
        self.data_dir = Path(data_dir or get_settings().legal_data_dir)
        self._cache: dict[str, dict[str, Any]] = {}

    def register(self, country_code: str, country_data: dict[str, Any]) -> None:
        """Install a profile directly, e.g. one supplied with a batch request."""
        self._cache[resolve_country_code(country_code)] = country_data

    def get_country_data(self, country_code: str) -> Optional[dict[str, Any]]:
        code = resolve_country_code(country_code)
        if not code:
            return None
        if code in self._cache:
            return self._cache[code]

        path = self.data_dir / f"papaya_global_data_{code}.json"
        if not path.exists():
            logger.warning(f"[LEGAL] No legal profile for {country_code} (resolved: {code})")
            return None

        try:
            payload = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(f"[LEGAL] Failed to load {path.name}: {exc}")
            return None

        results = payload.get("results") if isinstance(payload, dict) else None
        country_data = results[0] if isinstance(results, list) and results else payload
        self._cache[code] = country_data
        logger.debug(f"[LEGAL] Loaded profile {path.name}")
        return country_data

    def get_flattened_profile(self, country_code: str) -> FlattenedLegalProfile:
        country_data = self.get_country_data(country_code)
        if country_data is None:
            return FlattenedLegalProfile(
                country=country_code or "Unknown",
                extracted_at=datetime.now(timezone.utc).isoformat(),
            )
        return flatten_for_quote(country_data)

    def clear(self) -> None:
        self._cache.clear()

    def get_stats(self) -> dict[str, Any]:
        return {"data_dir": str(self.data_dir), "cached_profiles": sorted(self._cache)}
