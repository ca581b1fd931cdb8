"""
Quote data schemas shared by the transformers, the validator and the
enhancement engine.

Quote keeps the snake_case, string-amount wire shape the providers' display
layer expects. Everything that travels over the enhancement API uses
camelCase aliases (CamelModel) but is populated by field name internally.
"""

from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import BenefitKey, Frequency, ProviderType, QuoteType


class CamelModel(BaseModel):
    """Base for models exchanged as camelCase JSON."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Display Quote ────────────────────────────────────────


class QuoteCost(BaseModel):
    """A single cost line item as displayed on a quote card."""
    name: str = "Cost Item"
    amount: str = "0.00"
    frequency: str = "monthly"
    country: str = ""
    country_code: str = ""


class AdditionalData(BaseModel):
    additional_notes: list[str] = []


class Quote(BaseModel):
    """Display-ready, provider-tagged monthly cost breakdown."""
    provider: str = ""
    salary: str = "0"
    currency: str = ""
    country: str = ""
    country_code: str = ""
    deel_fee: str = "0"
    severance_accural: str = "0"
    total_costs: str = "0"
    employer_costs: str = "0"
    costs: list[QuoteCost] = []
    benefits_data: list[Any] = []
    additional_data: AdditionalData = Field(default_factory=AdditionalData)


# ── Normalized Quote (LLM input) ─────────────────────────


class NormalizedQuote(CamelModel):
    """Compact numeric view of a provider quote."""
    provider: ProviderType
    base_cost: float = 0.0
    currency: str = ""
    country: str = ""
    monthly_total: float = 0.0
    breakdown: dict[str, float] = {}
    original_response: Any = None


# ── Extracted Provider Benefits ──────────────────────────


class IncludedBenefit(CamelModel):
    amount: float = 0.0
    frequency: Frequency = Frequency.MONTHLY
    description: str = ""


class StandardizedBenefitData(CamelModel):
    """Benefits a provider quote already includes, keyed by canonical category."""
    provider: ProviderType
    base_salary: float = 0.0
    currency: str = ""
    country: str = ""
    monthly_total: float = 0.0
    included_benefits: dict[BenefitKey, IncludedBenefit] = {}
    total_monthly_benefits: float = 0.0
    extraction_confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    extracted_at: str = ""


# ── Validation ───────────────────────────────────────────


class QuoteValidationResult(BaseModel):
    is_valid: bool
    reason: Optional[str] = None
    quote_info: Optional[dict[str, Any]] = None


# ── Form Data ────────────────────────────────────────────


class EORFormData(CamelModel):
    """Employment scenario submitted alongside a quote."""
    country: str
    base_salary: str
    contract_duration: str = "12"
    employment_type: str = "full-time"
    quote_type: Optional[QuoteType] = None
    currency: Optional[str] = None
    client_name: Optional[str] = None
    client_country: Optional[str] = None
    work_visa_required: Optional[bool] = None
    start_date: Optional[str] = None
    local_office_info: Optional[dict[str, Any]] = None

    @field_validator("base_salary", "contract_duration", mode="before")
    @classmethod
    def _numbers_as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value

    @field_validator("quote_type", mode="before")
    @classmethod
    def _ignore_unknown_quote_type(cls, value: Any) -> Any:
        if value in (QuoteType.ALL_INCLUSIVE.value, QuoteType.STATUTORY_ONLY.value, None):
            return value
        if isinstance(value, QuoteType):
            return value
        return None
