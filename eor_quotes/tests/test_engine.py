"""
Tests: Enhancement engine, provider inclusions, legal profiles and prompts.

The Groq service is replaced by an in-process fake so these tests never
touch the network.

Run with:
    pytest eor_quotes/tests/test_engine.py -v
"""

import asyncio
import json

import pytest

from eor_quotes.enhancement.cache import EnhancementCache
from eor_quotes.enhancement.engine import EnhancementEngine
from eor_quotes.enhancement.errors import EnhancementError
from eor_quotes.enhancement.inclusions import ProviderInclusionsExtractor
from eor_quotes.models.enhancement import GroqEnhancementResponse
from eor_quotes.models.enums import BenefitKey, EnhancementErrorCode, ProviderType, QuoteType
from eor_quotes.models.schemas import EORFormData, NormalizedQuote
from eor_quotes.providers import normalize_quote
from eor_quotes.services.legal_data_service import (
    NO_LEGAL_DATA,
    LegalDataService,
    flatten_for_quote,
    resolve_country_code,
)
from eor_quotes.services.prompt_engine import build_enhancement_prompt, build_system_prompt, contract_months


class FakeLLM:
    """Stands in for GroqService: returns canned responses or raises per provider."""

    def __init__(self, response=None, failures=None, delay_s=0.0):
        self.response = response or {}
        self.failures = failures or {}
        self.delay_s = delay_s
        self.calls = []

    async def enhance(self, system_prompt, user_prompt):
        self.calls.append((system_prompt, user_prompt))
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        for provider, error in self.failures.items():
            if f"PROVIDER: {provider}\n" in user_prompt:
                raise error
        return GroqEnhancementResponse.model_validate(self.response)

    async def health_check(self):
        return True

    def get_stats(self):
        return {"model": "fake"}


def _deel_raw(currency="EUR", total="6649") -> dict:
    return {
        "salary": "5000",
        "currency": currency,
        "country": "Germany",
        "country_code": "DE",
        "deel_fee": "599",
        "total_costs": total,
        "costs": [
            {"name": "Pension", "amount": "500", "frequency": "monthly"},
            {"name": "Health Insurance", "amount": "550", "frequency": "monthly"},
            {"name": "Deel Fee", "amount": "599", "frequency": "monthly"},
        ],
    }


def _form(**overrides) -> EORFormData:
    data = {"country": "Germany", "baseSalary": "5000", "contractDuration": "12"}
    data.update(overrides)
    return EORFormData.model_validate(data)


def _full_response() -> dict:
    return {
        "enhancements": {
            "termination_costs": {"total": 1200, "explanation": "Notice plus severance"},
            "severance_provision": {"monthly_amount": 400, "total_amount": 4800,
                                    "explanation": "Monthly severance accrual", "already_included": False},
            "thirteenth_salary": {"monthly_amount": 0, "yearly_amount": 6000, "explanation": "13th salary"},
            "vacation_bonus": {"amount": 1200, "explanation": "Holiday bonus"},
            "transportation_allowance": {"monthly_amount": 150, "mandatory": False},
            "meal_vouchers": {"monthly_amount": 200, "already_included": True},
            "employer_contributions_total": {"monthly_amount": 50, "explanation": "Extra insurance"},
        },
        "confidence_scores": {"overall": 0.8},
        "analysis": {
            "provider_coverage": ["Pension"],
            "missing_requirements": ["13th salary"],
            "double_counting_risks": [],
        },
        "warnings": ["Check collective agreement"],
        "recommendations": ["Budget for the 13th salary"],
    }


def _legal_dir(tmp_path):
    profile = {
        "results": [{
            "country": "Germany",
            "data": {
                "contribution": {"employer_contributions": [
                    {"description": "Pension insurance", "rate": "9.3%"},
                ]},
                "payroll": {"13th_salary": "Customary but not mandatory"},
                "termination": {"notice_period": "4 weeks", "probation_period": "Up to 6 months"},
                "common_benefits": ["Meal vouchers up to 7.50 EUR per day"],
            },
        }]
    }
    (tmp_path / "papaya_global_data_DE.json").write_text(json.dumps(profile), encoding="utf-8")
    return LegalDataService(tmp_path)


def _engine(llm, legal_data=None, tmp_path=None) -> EnhancementEngine:
    return EnhancementEngine(
        cache=EnhancementCache(ttl_s=60),
        llm=llm,
        legal_data=legal_data or LegalDataService(tmp_path),
    )


# ── Single quote ─────────────────────────────────────────

class TestEnhanceQuoteDirect:
    def test_all_inclusive_totals(self, tmp_path):
        engine = _engine(FakeLLM(_full_response()), _legal_dir(tmp_path))
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form(), QuoteType.ALL_INCLUSIVE))

        # 100 termination + 500 thirteenth + 100 vacation + 150 transport + 50 contributions
        assert enhanced.total_enhancement == 900
        assert enhanced.final_total == 6950
        assert enhanced.monthly_cost_breakdown.base_cost == 6050
        assert enhanced.monthly_cost_breakdown.total == 6950
        assert enhanced.base_currency == "EUR"
        assert enhanced.overall_confidence == 0.8
        assert enhanced.enhancements.meal_vouchers.is_already_included
        assert enhanced.enhancements.termination_costs.based_on_contract_months == 12
        assert enhanced.enhancements.additional_contributions == {"employer_contributions": 50}
        assert "Monthly severance accrual" in enhanced.explanations
        assert enhanced.warnings == ["Check collective agreement"]
        assert enhanced.overlap_analysis.provider_missing == ["13th salary"]

    def test_statutory_only_skips_optional_allowances(self, tmp_path):
        engine = _engine(FakeLLM(_full_response()), _legal_dir(tmp_path))
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form(), QuoteType.STATUTORY_ONLY))
        assert enhanced.total_enhancement == 750
        assert enhanced.quote_type == QuoteType.STATUTORY_ONLY

    def test_mandatory_allowance_counts_for_statutory_only(self, tmp_path):
        response = {"enhancements": {"transportation_allowance": {"monthly_amount": 80, "mandatory": True}}}
        engine = _engine(FakeLLM(response), tmp_path=tmp_path)
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form(), QuoteType.STATUTORY_ONLY))
        assert enhanced.total_enhancement == 80

    def test_termination_spread_over_contract(self, tmp_path):
        response = {"enhancements": {"termination_costs": {"total": 1200}}}
        engine = _engine(FakeLLM(response), tmp_path=tmp_path)
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form(contractDuration="24")))
        assert enhanced.total_enhancement == 50
        assert enhanced.enhancements.termination_costs.based_on_contract_months == 24

    def test_provisions_reported_but_not_summed(self, tmp_path):
        response = {"enhancements": {
            "termination_costs": {"total": 1200},
            "probation_provision": {"monthly_amount": 0, "total_amount": 600},
        }}
        engine = _engine(FakeLLM(response), tmp_path=tmp_path)
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form(contractDuration="6")))
        assert enhanced.total_enhancement == 200
        assert enhanced.enhancements.probation_provision.total_amount == 600

    def test_null_amounts_fall_back_to_yearly(self, tmp_path):
        response = {"enhancements": {
            "thirteenth_salary": {"monthly_amount": None, "yearly_amount": 1200, "confidence": 1.4},
            "meal_vouchers": {"monthly_amount": None, "already_included": None},
        }}
        engine = _engine(FakeLLM(response), tmp_path=tmp_path)
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        assert enhanced.total_enhancement == 100
        assert enhanced.enhancements.thirteenth_salary.confidence == 1.0
        assert enhanced.enhancements.meal_vouchers.monthly_amount == 0

    def test_quote_type_defaults_to_form_then_all_inclusive(self, tmp_path):
        engine = _engine(FakeLLM(), tmp_path=tmp_path)
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        assert enhanced.quote_type == QuoteType.ALL_INCLUSIVE
        enhanced = asyncio.run(engine.enhance_quote_direct(
            "deel", _deel_raw(), _form(quoteType="statutory-only"),
        ))
        assert enhanced.quote_type == QuoteType.STATUTORY_ONLY

    def test_missing_legal_data_adds_warning(self, tmp_path):
        engine = _engine(FakeLLM(), tmp_path=tmp_path)
        enhanced = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        assert enhanced.total_enhancement == 0
        assert enhanced.final_total == 6050
        assert any("No legal data available for DE" in w for w in enhanced.warnings)

    def test_legal_profile_reaches_prompt(self, tmp_path):
        llm = FakeLLM()
        engine = _engine(llm, _legal_dir(tmp_path))
        asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        system_prompt, user_prompt = llm.calls[0]
        assert system_prompt == build_system_prompt()
        assert "Pension insurance: 9.3%" in user_prompt
        assert "PROVIDER: deel" in user_prompt
        assert "BASE MONTHLY: 6050.00 EUR" in user_prompt

    def test_second_call_is_served_from_cache(self, tmp_path):
        llm = FakeLLM(_full_response())
        engine = _engine(llm, tmp_path=tmp_path)
        first = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        second = asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        assert len(llm.calls) == 1
        assert second.final_total == first.final_total
        metrics = engine.get_performance_metrics()
        assert metrics["cache_hits"] == 1
        assert metrics["cache_misses"] == 1
        assert metrics["total_requests"] == 2

    def test_changed_quote_misses_cache(self, tmp_path):
        llm = FakeLLM()
        engine = _engine(llm, tmp_path=tmp_path)
        asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(total="6649"), _form()))
        asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(total="6700"), _form()))
        assert len(llm.calls) == 2

    def test_llm_error_propagates_with_provider(self, tmp_path):
        error = EnhancementError(EnhancementErrorCode.REQUEST_TIMEOUT, "LLM request timed out after 60s")
        engine = _engine(FakeLLM(failures={"deel": error}), tmp_path=tmp_path)
        with pytest.raises(EnhancementError) as exc_info:
            asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        assert exc_info.value.code == EnhancementErrorCode.REQUEST_TIMEOUT
        assert exc_info.value.provider == ProviderType.DEEL
        assert exc_info.value.status_code == 504
        assert engine.get_performance_metrics()["recent_errors"][0]["provider"] == "deel"

    def test_unexpected_error_is_wrapped(self, tmp_path):
        engine = _engine(FakeLLM(failures={"deel": RuntimeError("socket closed")}), tmp_path=tmp_path)
        with pytest.raises(EnhancementError) as exc_info:
            asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        assert exc_info.value.code == EnhancementErrorCode.ENHANCEMENT_ERROR
        assert exc_info.value.message == "socket closed"
        assert exc_info.value.status_code == 500

    def test_missing_currency_fails_validation(self, tmp_path):
        engine = _engine(FakeLLM(), tmp_path=tmp_path)
        with pytest.raises(EnhancementError) as exc_info:
            asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(currency=""), _form()))
        assert exc_info.value.code == EnhancementErrorCode.ENHANCEMENT_ERROR
        assert "currency" in exc_info.value.message

    def test_failed_result_is_not_cached(self, tmp_path):
        error = EnhancementError(EnhancementErrorCode.GROQ_ERROR, "upstream")
        engine = _engine(FakeLLM(failures={"deel": error}), tmp_path=tmp_path)
        with pytest.raises(EnhancementError):
            asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        assert engine.get_cache_stats()["total_entries"] == 0


# ── Batch ────────────────────────────────────────────────

class TestEnhanceAllProviders:
    def _quotes(self):
        return {
            "deel": _deel_raw(),
            "remote": {
                "employment": {
                    "country": {"name": "Germany", "code": "DEU"},
                    "employer_currency_costs": {
                        "currency": {"code": "EUR"},
                        "monthly_gross_salary": 5000,
                        "monthly_total": 6100,
                    },
                }
            },
            "rivermate": {"salary": 5000, "currency": "EUR", "country": "Germany"},
        }

    def test_one_failure_does_not_affect_others(self, tmp_path):
        llm = FakeLLM(
            {"enhancements": {"thirteenth_salary": {"monthly_amount": 100}}},
            failures={"remote": EnhancementError(EnhancementErrorCode.REQUEST_TIMEOUT, "timed out")},
        )
        engine = _engine(llm, tmp_path=tmp_path)
        result = asyncio.run(engine.enhance_all_providers(_form(), self._quotes()))

        assert set(result.enhancements) == {ProviderType.DEEL, ProviderType.RIVERMATE}
        assert set(result.errors) == {ProviderType.REMOTE}
        info = result.errors[ProviderType.REMOTE][0]
        assert info.code == EnhancementErrorCode.REQUEST_TIMEOUT
        assert info.provider == ProviderType.REMOTE

        comparison = result.comparison
        assert comparison.cheapest == ProviderType.RIVERMATE
        assert comparison.most_expensive == ProviderType.DEEL
        assert comparison.average_cost == 5625
        assert comparison.recommendations == [
            "rivermate offers the most cost-effective solution",
            "Consider rivermate for budget optimization",
            "deel is the second-best option",
        ]

    def test_providers_run_concurrently(self, tmp_path):
        llm = FakeLLM(delay_s=0.2)
        engine = _engine(llm, tmp_path=tmp_path)

        async def timed():
            loop = asyncio.get_running_loop()
            start = loop.time()
            result = await engine.enhance_all_providers(_form(), self._quotes())
            return result, loop.time() - start

        result, elapsed = asyncio.run(timed())
        assert len(result.enhancements) == 3
        assert elapsed < 0.5

    def test_empty_batch(self, tmp_path):
        engine = _engine(FakeLLM(), tmp_path=tmp_path)
        result = asyncio.run(engine.enhance_all_providers(_form(), {}))
        assert result.enhancements == {}
        assert result.errors == {}
        assert result.comparison.recommendations == ["No valid quotes to compare"]

    def test_papaya_data_registered_for_batch(self, tmp_path):
        llm = FakeLLM()
        engine = _engine(llm, tmp_path=tmp_path)
        papaya = {"country": "Germany", "data": {"remote_work": "Home office allowance customary"}}
        result = asyncio.run(engine.enhance_all_providers(_form(), {"deel": _deel_raw()}, papaya_data=papaya))
        assert "REMOTE_WORK_RULES:" in llm.calls[0][1]
        assert not any("No legal data" in w for w in result.enhancements[ProviderType.DEEL].warnings)


class TestEngineAdmin:
    def test_health_and_stats(self, tmp_path):
        engine = _engine(FakeLLM(), tmp_path=tmp_path)
        health = asyncio.run(engine.health_check())
        assert health["status"] == "healthy"
        assert health["cache_entries"] == 0
        stats = engine.get_stats()
        assert stats["llm"] == {"model": "fake"}
        assert set(stats) == {"cache", "performance", "llm", "legal_data"}

    def test_clear_and_reset(self, tmp_path):
        engine = _engine(FakeLLM(), tmp_path=tmp_path)
        asyncio.run(engine.enhance_quote_direct("deel", _deel_raw(), _form()))
        engine.clear_cache()
        engine.reset_performance_metrics()
        assert engine.get_cache_stats()["total_entries"] == 0
        assert engine.get_performance_metrics()["total_requests"] == 0


# ── Inclusions ───────────────────────────────────────────

class TestProviderInclusions:
    def test_display_cost_lines(self):
        quote = normalize_quote("deel", _deel_raw())
        benefits = ProviderInclusionsExtractor().extract(ProviderType.DEEL, quote)
        assert set(benefits.included_benefits) == {BenefitKey.SOCIAL_SECURITY, BenefitKey.HEALTH_INSURANCE}
        assert benefits.total_monthly_benefits == 1050
        assert benefits.extraction_confidence == 0.68

    def test_raw_response_is_transformed(self):
        quote = normalize_quote("remote", {
            "employment": {
                "country": {"name": "Germany"},
                "employer_currency_costs": {
                    "currency": {"code": "EUR"},
                    "monthly_gross_salary": 5000,
                    "monthly_total": 6100,
                    "monthly_contributions_breakdown": [
                        {"name": "Pension", "amount": 600},
                        {"name": "Christmas Bonus", "amount": 416.67},
                    ],
                },
            }
        })
        benefits = ProviderInclusionsExtractor().extract(ProviderType.REMOTE, quote)
        assert benefits.included_benefits[BenefitKey.SOCIAL_SECURITY].amount == 600
        assert benefits.included_benefits[BenefitKey.THIRTEENTH_SALARY].amount == 416.67

    def test_breakdown_used_without_original_response(self):
        quote = NormalizedQuote(
            provider=ProviderType.OYSTER, base_cost=5000, currency="EUR", country="DE", monthly_total=5800,
            breakdown={"meal_vouchers": 150, "statutoryContributions": 650, "platformFee": 500, "misc": 650},
        )
        benefits = ProviderInclusionsExtractor().extract(ProviderType.OYSTER, quote)
        assert benefits.included_benefits[BenefitKey.MEAL_VOUCHERS].amount == 150
        assert benefits.included_benefits[BenefitKey.SOCIAL_SECURITY].amount == 650

    def test_nothing_included(self):
        quote = NormalizedQuote(provider=ProviderType.SKUAD, currency="EUR", country="DE")
        benefits = ProviderInclusionsExtractor().extract(ProviderType.SKUAD, quote)
        assert benefits.included_benefits == {}
        assert benefits.extraction_confidence == 0.3


# ── Legal data and prompts ───────────────────────────────

class TestLegalData:
    @pytest.mark.parametrize("country, expected", [
        ("Germany", "DE"),
        ("de", "DE"),
        ("UK", "GB"),
        ("el", "GR"),
        ("Portugal", "PT"),
        ("Poland", "PL"),
        ("Austria", "AT"),
        ("Switzerland", "CH"),
        ("Japan", "JP"),
        ("usa", "US"),
        ("", ""),
    ])
    def test_resolve_country_code(self, country, expected):
        assert resolve_country_code(country) == expected

    def test_loads_results_envelope(self, tmp_path):
        service = _legal_dir(tmp_path)
        data = service.get_country_data("Germany")
        assert data["country"] == "Germany"
        assert service.get_stats()["cached_profiles"] == ["DE"]

    def test_flattened_profile_sections(self, tmp_path):
        profile = _legal_dir(tmp_path).get_flattened_profile("DE")
        assert profile.country == "Germany"
        assert profile.currency == "EUR"
        assert "EMPLOYER_CONTRIBUTIONS:" in profile.data
        assert "13th Salary: Customary but not mandatory" in profile.data
        assert "Notice Period: 4 weeks" in profile.data
        assert "COMMON_BENEFITS:" in profile.data

    def test_missing_profile(self, tmp_path):
        profile = LegalDataService(tmp_path).get_flattened_profile("FR")
        assert profile.data == NO_LEGAL_DATA

    def test_currency_falls_back_to_country_table(self):
        profile = flatten_for_quote({"country": "Brazil", "data": {"remote_work": "allowed"}})
        assert profile.currency == "BRL"

    def test_long_profile_is_truncated(self):
        profile = flatten_for_quote({"country": "Chile", "data": {"common_benefits": ["x" * 30000]}})
        assert profile.data.endswith("[truncated]")


class TestPromptEngine:
    @pytest.mark.parametrize("duration, expected", [("24", 24), ("6.0", 6), ("abc", 12), ("0", 12)])
    def test_contract_months(self, duration, expected):
        assert contract_months(_form(contractDuration=duration)) == expected

    def test_placeholders_filled(self, tmp_path):
        quote = normalize_quote("deel", _deel_raw())
        benefits = ProviderInclusionsExtractor().extract(ProviderType.DEEL, quote)
        profile = _legal_dir(tmp_path).get_flattened_profile("DE")
        prompt = build_enhancement_prompt(quote, _form(), QuoteType.STATUTORY_ONLY, profile, benefits, "DE")
        assert "QUOTE TYPE: statutory-only (mandatory items only)" in prompt
        assert "COUNTRY: Germany (DE)" in prompt
        assert '"socialSecurity"' in prompt
        assert "{legal_profile}" not in prompt
        assert "{provider_inclusions}" not in prompt
