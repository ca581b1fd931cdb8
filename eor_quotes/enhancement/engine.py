"""
Enhancement Engine — reconciles provider quotes against country legal data.

Per provider quote:
  normalize → cache lookup → inclusions extraction → legal profile +
  prompt → Groq → EnhancedQuote (totals recomputed locally) → cache store

The engine owns the cache and performance monitor. A process-wide
instance is returned by get_enhancement_engine() and injected into the
API routes via FastAPI Depends.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Optional

from eor_quotes.config import get_settings
from eor_quotes.enhancement.cache import EnhancementCache, EnhancementPerformanceMonitor
from eor_quotes.enhancement.errors import EnhancementError
from eor_quotes.enhancement.inclusions import ProviderInclusionsExtractor
from eor_quotes.enhancement.totals import monthly_enhancement_items
from eor_quotes.models.enhancement import (
    AllowanceEnhancement,
    BonusEnhancement,
    EnhancedQuote,
    Enhancements,
    GroqAllowance,
    GroqEnhancementResponse,
    GroqProvision,
    GroqSalaryItem,
    MedicalExamCosts,
    MonthlyCostBreakdown,
    MultiProviderResult,
    OverlapAnalysis,
    ProviderComparison,
    SalaryEnhancement,
    TerminationComponentEnhancement,
    TerminationCostBreakdown,
)
from eor_quotes.models.enums import EnhancementErrorCode, ProviderType, QuoteType
from eor_quotes.models.schemas import EORFormData, NormalizedQuote, StandardizedBenefitData
from eor_quotes.providers.normalizer import normalize_quote
from eor_quotes.services.legal_data_service import NO_LEGAL_DATA, LegalDataService, resolve_country_code
from eor_quotes.services.llm_service import GroqService, get_llm_service
from eor_quotes.services.prompt_engine import build_enhancement_prompt, build_system_prompt, contract_months

logger = logging.getLogger(__name__)


def _provision(item: Optional[GroqProvision]) -> Optional[TerminationComponentEnhancement]:
    if item is None:
        return None
    return TerminationComponentEnhancement(
        monthly_amount=item.monthly_amount or 0,
        total_amount=item.total_amount or 0,
        explanation=item.explanation or "",
        confidence=item.confidence,
        is_already_included=item.already_included or False,
    )


def _salary(item: Optional[GroqSalaryItem], default_explanation: str) -> Optional[SalaryEnhancement]:
    if item is None:
        return None
    return SalaryEnhancement(
        monthly_amount=item.monthly_amount or 0,
        yearly_amount=item.yearly_amount or 0,
        explanation=item.explanation or default_explanation,
        confidence=item.confidence,
        is_already_included=item.already_included or False,
    )


def _allowance(item: Optional[GroqAllowance], currency: str, default_explanation: str) -> Optional[AllowanceEnhancement]:
    if item is None:
        return None
    return AllowanceEnhancement(
        monthly_amount=item.monthly_amount or 0,
        currency=currency,
        explanation=item.explanation or default_explanation,
        confidence=item.confidence,
        is_already_included=item.already_included or False,
        is_mandatory=item.mandatory or False,
    )


class EnhancementEngine:

    def __init__(
        self,
        cache: Optional[EnhancementCache] = None,
        monitor: Optional[EnhancementPerformanceMonitor] = None,
        llm: Optional[GroqService] = None,
        legal_data: Optional[LegalDataService] = None,
        extractor: Optional[ProviderInclusionsExtractor] = None,
    ):
        self.cache = cache or EnhancementCache()
        self.monitor = monitor or EnhancementPerformanceMonitor()
        self._llm = llm
        self.legal_data = legal_data or LegalDataService()
        self.extractor = extractor or ProviderInclusionsExtractor()

    @property
    def llm(self) -> GroqService:
        if self._llm is None:
            self._llm = get_llm_service()
        return self._llm

    # ── Single provider ──────────────────────────────────

    async def enhance_quote_direct(
        self,
        provider: ProviderType | str,
        provider_quote: Any,
        form_data: EORFormData,
        quote_type: Optional[QuoteType] = None,
    ) -> EnhancedQuote:
        """
        Enhance one provider quote.

        Raises EnhancementError: LLM-side codes pass through unchanged, any
        other failure is wrapped as ENHANCEMENT_ERROR.
        """
        provider = ProviderType(provider)
        quote_type = quote_type or form_data.quote_type or QuoteType.ALL_INCLUSIVE
        t0 = time.perf_counter()

        try:
            normalized = normalize_quote(provider, provider_quote)
            country_code = resolve_country_code(form_data.country or normalized.country)

            key = self.cache.generate_key(provider, normalized, form_data, quote_type, country_code)
            cached = self.cache.get(key)
            if cached is not None:
                self.monitor.record_hit()
                logger.info(f"[ENGINE] Cache hit for {provider.value} ({country_code})")
                return cached
            self.monitor.record_miss()

            benefits = self._extract_inclusions(provider, normalized)
            profile = self.legal_data.get_flattened_profile(country_code)
            logger.info(
                f"[ENGINE] Enhancing {provider.value} | {country_code} | {quote_type.value} | "
                f"{len(benefits.included_benefits)} included categories"
            )

            response = await self.llm.enhance(
                build_system_prompt(),
                build_enhancement_prompt(normalized, form_data, quote_type, profile, benefits, country_code),
            )

            enhanced = self._transform_response(response, normalized, quote_type, contract_months(form_data))
            if profile.data == NO_LEGAL_DATA:
                enhanced.warnings.append(
                    f"No legal data available for {country_code or form_data.country}; "
                    f"enhancements are based on provider data only"
                )
            self._validate_enhanced_quote(enhanced)
            self.cache.set(key, enhanced)

            logger.info(
                f"[ENGINE] {provider.value}: base {normalized.monthly_total:.2f} + "
                f"{enhanced.total_enhancement:.2f} = {enhanced.final_total:.2f} {enhanced.base_currency}"
            )
            return enhanced

        except EnhancementError as exc:
            self.monitor.record_error(provider.value, exc.message)
            raise exc.with_provider(provider)
        except Exception as exc:
            logger.error(f"[ENGINE] {provider.value}: enhancement failed: {exc}", exc_info=True)
            self.monitor.record_error(provider.value, str(exc))
            raise EnhancementError(
                EnhancementErrorCode.ENHANCEMENT_ERROR,
                str(exc) or "Unknown enhancement error",
                provider=provider,
            ) from exc
        finally:
            self.monitor.record_request(provider.value, time.perf_counter() - t0)

    def _extract_inclusions(self, provider: ProviderType, quote: NormalizedQuote) -> StandardizedBenefitData:
        key = self.cache.extraction_key(provider, quote)
        cached = self.cache.get_extraction(key)
        if cached is not None:
            return cached
        extracted = self.extractor.extract(provider, quote)
        self.cache.set_extraction(key, extracted)
        return extracted

    # ── Batch ────────────────────────────────────────────

    async def enhance_all_providers(
        self,
        form_data: EORFormData,
        provider_quotes: dict[ProviderType | str, Any],
        quote_type: Optional[QuoteType] = None,
        papaya_data: Optional[dict[str, Any]] = None,
    ) -> MultiProviderResult:
        """Enhance every quote concurrently; one provider failing never affects the others."""
        if papaya_data:
            self.legal_data.register(form_data.country, papaya_data)

        jobs = [(ProviderType(p), quote) for p, quote in provider_quotes.items()]
        outcomes = await asyncio.gather(
            *(self.enhance_quote_direct(p, quote, form_data, quote_type) for p, quote in jobs),
            return_exceptions=True,
        )

        result = MultiProviderResult()
        for (provider, _), outcome in zip(jobs, outcomes):
            if isinstance(outcome, EnhancedQuote):
                result.enhancements[provider] = outcome
            elif isinstance(outcome, EnhancementError):
                result.errors[provider] = [outcome.with_provider(provider).to_info()]
            elif isinstance(outcome, BaseException):
                result.errors[provider] = [
                    EnhancementError(EnhancementErrorCode.ENHANCEMENT_ERROR, str(outcome), provider).to_info()
                ]

        result.comparison = self._generate_comparison(result.enhancements)
        logger.info(
            f"[ENGINE] Batch done: {len(result.enhancements)} enhanced, {len(result.errors)} failed"
        )
        return result

    # ── Response → EnhancedQuote ─────────────────────────

    def _transform_response(
        self,
        response: GroqEnhancementResponse,
        base_quote: NormalizedQuote,
        quote_type: QuoteType,
        months: int,
    ) -> EnhancedQuote:
        raw = response.enhancements
        currency = base_quote.currency
        enhancements = Enhancements(
            severance_provision=_provision(raw.severance_provision),
            probation_provision=_provision(raw.probation_provision),
            thirteenth_salary=_salary(raw.thirteenth_salary, "13th month salary as required by law"),
            fourteenth_salary=_salary(raw.fourteenth_salary, "14th month salary as required by law"),
            transportation_allowance=_allowance(raw.transportation_allowance, currency, "Transportation allowance"),
            remote_work_allowance=_allowance(raw.remote_work_allowance, currency, "Remote work allowance"),
            meal_vouchers=_allowance(raw.meal_vouchers, currency, "Meal voucher allowance"),
        )
        if raw.termination_costs is not None:
            tc = raw.termination_costs
            enhancements.termination_costs = TerminationCostBreakdown(
                notice_period_cost=tc.notice_period_cost or 0,
                severance_cost=tc.severance_cost or 0,
                total_termination_cost=tc.total or 0,
                explanation=tc.explanation or "Standard termination provisions",
                confidence=tc.confidence,
                based_on_contract_months=months,
            )
        if raw.vacation_bonus is not None:
            vb = raw.vacation_bonus
            enhancements.vacation_bonus = BonusEnhancement(
                amount=vb.amount or 0,
                explanation=vb.explanation or "Vacation bonus as required by law",
                confidence=vb.confidence,
                is_already_included=vb.already_included or False,
            )
        if raw.medical_exam is not None:
            enhancements.medical_exam = MedicalExamCosts(
                required=raw.medical_exam.required or False,
                estimated_cost=raw.medical_exam.estimated_cost or 0,
                confidence=raw.medical_exam.confidence,
            )
        contributions = raw.employer_contributions_total
        if contributions is not None and (contributions.monthly_amount or 0) > 0:
            enhancements.additional_contributions = {"employer_contributions": contributions.monthly_amount}

        items = monthly_enhancement_items(enhancements, quote_type, months)
        total_enhancement = round(sum(amount for _, amount in items), 2)
        final_total = round(base_quote.monthly_total + total_enhancement, 2)

        return EnhancedQuote(
            provider=base_quote.provider,
            base_quote=base_quote,
            quote_type=quote_type,
            enhancements=enhancements,
            total_enhancement=total_enhancement,
            final_total=final_total,
            monthly_cost_breakdown=MonthlyCostBreakdown(
                base_cost=base_quote.monthly_total,
                enhancements=total_enhancement,
                total=final_total,
            ),
            overall_confidence=response.confidence_scores.overall,
            explanations=self._extract_explanations(enhancements),
            warnings=list(response.warnings),
            overlap_analysis=OverlapAnalysis(
                provider_includes=response.analysis.provider_coverage,
                provider_missing=response.analysis.missing_requirements,
                double_counting_risk=response.analysis.double_counting_risks,
                recommendations=response.recommendations,
            ),
            base_currency=base_quote.currency,
        )

    @staticmethod
    def _extract_explanations(enhancements: Enhancements) -> list[str]:
        explanations = []
        for name in Enhancements.model_fields:
            item = getattr(enhancements, name)
            explanation = getattr(item, "explanation", "")
            if explanation:
                explanations.append(explanation)
        return explanations

    @staticmethod
    def _validate_enhanced_quote(quote: EnhancedQuote) -> None:
        if not quote.base_currency:
            raise EnhancementError(
                EnhancementErrorCode.ENHANCEMENT_ERROR, "Invalid enhanced quote structure: missing currency",
            )
        if quote.final_total < 0 or quote.total_enhancement < 0:
            raise EnhancementError(
                EnhancementErrorCode.ENHANCEMENT_ERROR, "Invalid monetary values in enhanced quote",
            )
        if not 0 <= quote.overall_confidence <= 1:
            logger.warning(f"[ENGINE] Confidence out of range: {quote.overall_confidence}")

    @staticmethod
    def _generate_comparison(results: dict[ProviderType, EnhancedQuote]) -> ProviderComparison:
        if not results:
            return ProviderComparison(recommendations=["No valid quotes to compare"])

        ranked = sorted(results.items(), key=lambda item: item[1].final_total)
        average = sum(q.final_total for _, q in ranked) / len(ranked)
        cheapest = ranked[0][0].value
        recommendations = [
            f"{cheapest} offers the most cost-effective solution",
            f"Consider {cheapest} for budget optimization",
        ]
        if len(ranked) > 1:
            recommendations.append(f"{ranked[1][0].value} is the second-best option")

        return ProviderComparison(
            cheapest=ranked[0][0],
            most_expensive=ranked[-1][0],
            average_cost=round(average, 2),
            recommendations=recommendations,
        )

    # ── Admin ────────────────────────────────────────────

    def get_stats(self) -> dict[str, Any]:
        return {
            "cache": self.get_cache_stats(),
            "performance": self.get_performance_metrics(),
            "llm": self.llm.get_stats(),
            "legal_data": self.legal_data.get_stats(),
        }

    def get_cache_stats(self) -> dict[str, Any]:
        return self.cache.get_stats()

    def get_performance_metrics(self) -> dict[str, Any]:
        return self.monitor.get_metrics()

    async def health_check(self) -> dict[str, Any]:
        llm_ok = await self.llm.health_check()
        return {
            "status": "healthy" if llm_ok else "unhealthy",
            "llm": llm_ok,
            "cache_entries": len(self.cache),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def clear_cache(self) -> None:
        self.cache.clear()

    def cleanup_cache(self) -> int:
        return self.cache.cleanup()

    def reset_performance_metrics(self) -> None:
        self.monitor.reset()


_engine: Optional[EnhancementEngine] = None


def get_enhancement_engine() -> EnhancementEngine:
    """Return the process-wide EnhancementEngine (singleton)."""
    global _engine
    if _engine is None:
        _engine = EnhancementEngine()
        logger.info(f"[ENGINE] Initialized (max concurrent jobs: {get_settings().max_concurrent_jobs})")
    return _engine
