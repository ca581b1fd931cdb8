"""
Enhancement schemas: the LLM wire format (snake_case, as the model is
instructed to emit it) and the EnhancedQuote produced by the engine.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from pydantic import BaseModel, Field, field_validator

from .enums import EnhancementErrorCode, Frequency, ProviderType, QuoteType
from .schemas import CamelModel, NormalizedQuote


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ── LLM Response (wire format) ───────────────────────────
# Item fields accept null; the engine reads amounts as `value or 0`.
# Only totals and confidence_scores are range-checked.


def clamp_confidence(value: Any) -> float:
    if value is None:
        return 0.5
    try:
        number = float(value)
    except TypeError as exc:
        raise ValueError(f"confidence must be a number, got {type(value).__name__}") from exc
    return min(max(number, 0.0), 1.0)


class _Confidence(BaseModel):
    explanation: Optional[str] = None
    confidence: float = 0.5

    @field_validator("confidence", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> float:
        return clamp_confidence(value)


class GroqTerminationCosts(_Confidence):
    notice_period_cost: Optional[float] = None
    severance_cost: Optional[float] = None
    total: Optional[float] = None


class GroqProvision(_Confidence):
    monthly_amount: Optional[float] = None
    total_amount: Optional[float] = None
    already_included: Optional[bool] = None


class GroqSalaryItem(_Confidence):
    monthly_amount: Optional[float] = None
    yearly_amount: Optional[float] = None
    already_included: Optional[bool] = None


class GroqVacationBonus(_Confidence):
    amount: Optional[float] = None
    already_included: Optional[bool] = None


class GroqAllowance(_Confidence):
    monthly_amount: Optional[float] = None
    already_included: Optional[bool] = None
    mandatory: Optional[bool] = None


class GroqMedicalExam(_Confidence):
    required: Optional[bool] = None
    estimated_cost: Optional[float] = None


class GroqContributionsTotal(BaseModel):
    monthly_amount: Optional[float] = None
    explanation: Optional[str] = None


class GroqEnhancements(BaseModel):
    termination_costs: Optional[GroqTerminationCosts] = None
    severance_provision: Optional[GroqProvision] = None
    probation_provision: Optional[GroqProvision] = None
    thirteenth_salary: Optional[GroqSalaryItem] = None
    fourteenth_salary: Optional[GroqSalaryItem] = None
    vacation_bonus: Optional[GroqVacationBonus] = None
    transportation_allowance: Optional[GroqAllowance] = None
    remote_work_allowance: Optional[GroqAllowance] = None
    meal_vouchers: Optional[GroqAllowance] = None
    medical_exam: Optional[GroqMedicalExam] = None
    employer_contributions_total: Optional[GroqContributionsTotal] = None


class GroqTotals(BaseModel):
    total_monthly_enhancement: float = Field(default=0.0, ge=0.0)
    final_monthly_total: float = Field(default=0.0, ge=0.0)


class GroqConfidenceScores(BaseModel):
    overall: float = Field(default=0.5, ge=0.0, le=1.0)


class GroqAnalysis(BaseModel):
    provider_coverage: list[str] = []
    missing_requirements: list[str] = []
    double_counting_risks: list[str] = []


class GroqEnhancementResponse(BaseModel):
    """Structured JSON the LLM returns for one provider quote."""
    enhancements: GroqEnhancements = Field(default_factory=GroqEnhancements)
    totals: GroqTotals = Field(default_factory=GroqTotals)
    confidence_scores: GroqConfidenceScores = Field(default_factory=GroqConfidenceScores)
    analysis: GroqAnalysis = Field(default_factory=GroqAnalysis)
    warnings: list[str] = []
    recommendations: list[str] = []

    @field_validator("enhancements", "totals", "confidence_scores", "analysis", mode="before")
    @classmethod
    def _null_section(cls, value: Any) -> Any:
        return {} if value is None else value

    @field_validator("warnings", "recommendations", mode="before")
    @classmethod
    def _null_list(cls, value: Any) -> Any:
        return [] if value is None else value


# ── Enhanced Quote ───────────────────────────────────────


class TerminationCostBreakdown(CamelModel):
    notice_period_cost: float = 0.0
    severance_cost: float = 0.0
    total_termination_cost: float = 0.0
    explanation: str = ""
    confidence: float = 0.5
    based_on_contract_months: int = 12


class TerminationComponentEnhancement(CamelModel):
    monthly_amount: float = 0.0
    total_amount: float = 0.0
    explanation: str = ""
    confidence: float = 0.5
    is_already_included: bool = False


class SalaryEnhancement(CamelModel):
    monthly_amount: float = 0.0
    yearly_amount: float = 0.0
    explanation: str = ""
    confidence: float = 0.5
    is_already_included: bool = False


class BonusEnhancement(CamelModel):
    amount: float = 0.0
    frequency: Frequency = Frequency.YEARLY
    explanation: str = ""
    confidence: float = 0.5
    is_already_included: bool = False


class AllowanceEnhancement(CamelModel):
    monthly_amount: float = 0.0
    currency: str = ""
    explanation: str = ""
    confidence: float = 0.5
    is_already_included: bool = False
    is_mandatory: bool = False


class MedicalExamCosts(CamelModel):
    required: bool = False
    estimated_cost: float = 0.0
    confidence: float = 0.5


class Enhancements(CamelModel):
    """Sparse map of enhancement categories; absent means not applicable."""
    termination_costs: Optional[TerminationCostBreakdown] = None
    severance_provision: Optional[TerminationComponentEnhancement] = None
    probation_provision: Optional[TerminationComponentEnhancement] = None
    thirteenth_salary: Optional[SalaryEnhancement] = None
    fourteenth_salary: Optional[SalaryEnhancement] = None
    vacation_bonus: Optional[BonusEnhancement] = None
    transportation_allowance: Optional[AllowanceEnhancement] = None
    remote_work_allowance: Optional[AllowanceEnhancement] = None
    meal_vouchers: Optional[AllowanceEnhancement] = None
    medical_exam: Optional[MedicalExamCosts] = None
    additional_contributions: Optional[dict[str, float]] = None


class OverlapAnalysis(CamelModel):
    provider_includes: list[str] = []
    provider_missing: list[str] = []
    double_counting_risk: list[str] = []
    recommendations: list[str] = []


class MonthlyCostBreakdown(CamelModel):
    base_cost: float = 0.0
    enhancements: float = 0.0
    total: float = 0.0


class EnhancedQuote(CamelModel):
    """A provider quote plus the legally required costs it omits."""
    provider: ProviderType
    base_quote: NormalizedQuote
    quote_type: QuoteType = QuoteType.ALL_INCLUSIVE
    enhancements: Enhancements = Field(default_factory=Enhancements)
    total_enhancement: float = 0.0
    final_total: float = 0.0
    monthly_cost_breakdown: MonthlyCostBreakdown = Field(default_factory=MonthlyCostBreakdown)
    overall_confidence: float = 0.5
    explanations: list[str] = []
    warnings: list[str] = []
    overlap_analysis: OverlapAnalysis = Field(default_factory=OverlapAnalysis)
    calculated_at: str = Field(default_factory=_utc_now_iso)
    base_currency: str = ""


# ── Batch ────────────────────────────────────────────────


class EnhancementErrorInfo(CamelModel):
    code: EnhancementErrorCode
    message: str
    provider: Optional[ProviderType] = None
    retry_after: Optional[int] = None


class ProviderComparison(CamelModel):
    cheapest: Optional[ProviderType] = None
    most_expensive: Optional[ProviderType] = None
    average_cost: float = 0.0
    recommendations: list[str] = []


class MultiProviderResult(CamelModel):
    enhancements: dict[ProviderType, EnhancedQuote] = {}
    errors: dict[ProviderType, list[EnhancementErrorInfo]] = {}
    comparison: ProviderComparison = Field(default_factory=ProviderComparison)
    processed_at: str = Field(default_factory=_utc_now_iso)


def dump_camel(model: BaseModel) -> dict[str, Any]:
    """JSON-ready camelCase dump used by the HTTP layer."""
    return model.model_dump(mode="json", by_alias=True)
