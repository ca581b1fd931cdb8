"""
Prompt Engine — assembles the gap-analysis prompts sent to the LLM.

Templates live in eor_quotes/prompts/*.txt and are filled with plain
.replace() so the JSON example inside them needs no brace escaping.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from eor_quotes.models.enums import QuoteType
from eor_quotes.models.schemas import EORFormData, NormalizedQuote, StandardizedBenefitData
from eor_quotes.services.legal_data_service import FlattenedLegalProfile

_PROMPTS_DIR = Path(__file__).resolve().parent.parent / "prompts"
_SYSTEM_PROMPT_PATH = _PROMPTS_DIR / "enhancement_system.txt"
_USER_PROMPT_PATH = _PROMPTS_DIR / "enhancement_prompt.txt"

QUOTE_MODE = {
    QuoteType.STATUTORY_ONLY: "mandatory items only",
    QuoteType.ALL_INCLUSIVE: "mandatory items plus customary allowances",
}


def contract_months(form_data: EORFormData) -> int:
    """Contract length in months; unparseable or non-positive values mean 12."""
    try:
        months = int(float(form_data.contract_duration))
    except (TypeError, ValueError):
        return 12
    return months if months > 0 else 12


def _inclusions_json(benefits: StandardizedBenefitData) -> str:
    included: dict[str, Any] = {
        key.value: {
            "amount": benefit.amount,
            "frequency": benefit.frequency.value,
            "description": benefit.description,
        }
        for key, benefit in benefits.included_benefits.items()
    }
    return json.dumps({
        "included_benefits": included,
        "total_monthly_benefits": benefits.total_monthly_benefits,
        "extraction_confidence": benefits.extraction_confidence,
    }, indent=2, ensure_ascii=False)


def build_system_prompt() -> str:
    return _SYSTEM_PROMPT_PATH.read_text(encoding="utf-8").strip()


def build_enhancement_prompt(
    quote: NormalizedQuote,
    form_data: EORFormData,
    quote_type: QuoteType,
    legal_profile: FlattenedLegalProfile,
    benefits: StandardizedBenefitData,
    country_code: str = "",
) -> str:
    template = _USER_PROMPT_PATH.read_text(encoding="utf-8")
    return (
        template
        .replace("{provider}", quote.provider.value)
        .replace("{quote_type}", quote_type.value)
        .replace("{quote_mode}", QUOTE_MODE[quote_type])
        .replace("{base_monthly}", f"{quote.monthly_total:.2f}")
        .replace("{base_salary}", f"{quote.base_cost:.2f}")
        .replace("{currency}", quote.currency or form_data.currency or legal_profile.currency)
        .replace("{contract_months}", str(contract_months(form_data)))
        .replace("{employment_type}", form_data.employment_type)
        .replace("{country}", quote.country or form_data.country)
        .replace("{country_code}", country_code or "N/A")
        .replace("{legal_profile}", legal_profile.data)
        .replace("{provider_inclusions}", _inclusions_json(benefits))
    )
