"""
Tests: Quote validation and failure diagnostics.

Run with:
    pytest eor_quotes/tests/test_validator.py -v
"""

import pytest

from eor_quotes.models.enums import ProviderType
from eor_quotes.models.schemas import NormalizedQuote, Quote
from eor_quotes.validation import (
    is_valid_normalized_quote,
    is_valid_quote,
    is_valid_quote_with_context,
    validate_quote_with_debugging,
)


def _quote(**overrides) -> dict:
    quote = {
        "provider": "deel",
        "salary": "5000",
        "currency": "EUR",
        "country": "Germany",
        "total_costs": "6050.00",
        "costs": [],
        "benefits_data": [],
        "additional_data": {"additional_notes": []},
    }
    quote.update(overrides)
    return quote


class TestIsValidQuote:
    def test_complete_quote(self):
        assert is_valid_quote(_quote())

    def test_pydantic_quote(self):
        assert is_valid_quote(Quote(provider="deel", salary="5000", currency="EUR",
                                    country="Germany", total_costs="6050"))

    def test_money_formatting_is_tolerated(self):
        assert is_valid_quote(_quote(salary="$5,000", total_costs="6 050.00"))

    @pytest.mark.parametrize("field", ["provider", "salary", "currency", "country", "total_costs"])
    def test_missing_required_field(self, field):
        quote = _quote()
        del quote[field]
        assert not is_valid_quote(quote)

    def test_non_numeric_salary(self):
        assert not is_valid_quote(_quote(salary="five thousand"))

    def test_costs_must_be_list(self):
        assert not is_valid_quote(_quote(costs="none"))

    def test_additional_notes_must_be_list(self):
        assert not is_valid_quote(_quote(additional_data={"additional_notes": "x"}))

    @pytest.mark.parametrize("value", [None, {}, [], "quote"])
    def test_non_quotes(self, value):
        assert not is_valid_quote(value)

    def test_context_fills_missing_provider(self):
        quote = _quote(provider="")
        assert not is_valid_quote(quote)
        assert is_valid_quote_with_context(quote, "deel")
        assert quote["provider"] == ""


class TestValidateWithDebugging:
    def test_valid(self):
        result = validate_quote_with_debugging("deel", _quote())
        assert result.is_valid
        assert result.reason is None

    def test_null(self):
        result = validate_quote_with_debugging("deel", None)
        assert not result.is_valid
        assert result.reason == "Quote is null or undefined"

    def test_not_an_object(self):
        result = validate_quote_with_debugging("deel", "oops")
        assert result.reason == "Quote is not an object"
        assert result.quote_info["type"] == "str"

    def test_empty_object(self):
        result = validate_quote_with_debugging("deel", {})
        assert result.reason == "Quote is an empty object"
        assert result.quote_info["keys"] == []

    def test_missing_total_costs_is_reported(self):
        quote = _quote()
        del quote["total_costs"]
        result = validate_quote_with_debugging("remote", quote)
        assert not result.is_valid
        assert result.reason == "Quote is missing required properties or has invalid data"
        assert result.quote_info["missing_props"] == ["total_costs"]
        assert result.quote_info["invalid_props"] == []
        assert "can_be_fixed" not in result.quote_info

    def test_mistyped_field_is_reported(self):
        result = validate_quote_with_debugging("deel", _quote(salary=5000))
        assert result.quote_info["invalid_props"] == ["salary"]

    def test_missing_provider_can_be_fixed(self):
        quote = _quote()
        del quote["provider"]
        result = validate_quote_with_debugging("oyster", quote)
        assert not result.is_valid
        assert result.quote_info["can_be_fixed"] is True
        assert result.quote_info["missing_props"] == ["provider"]
        assert "oyster" in result.reason
        assert result.quote_info["sample_data"]["provider"] == '[MISSING - should be "oyster"]'


class TestIsValidNormalizedQuote:
    def test_model_instance(self):
        quote = NormalizedQuote(provider=ProviderType.DEEL, base_cost=5000, currency="EUR",
                                country="Germany", monthly_total=6050)
        assert is_valid_normalized_quote(quote)

    def test_camel_case_dict(self):
        assert is_valid_normalized_quote({
            "provider": "deel", "baseCost": 5000, "monthlyTotal": 6050, "currency": "EUR", "country": "DE",
        })

    @pytest.mark.parametrize("overrides", [
        {"baseCost": "5000"},
        {"monthlyTotal": -1},
        {"currency": ""},
        {"country": None},
        {"monthlyTotal": True},
    ])
    def test_rejections(self, overrides):
        quote = {"provider": "deel", "baseCost": 5000, "monthlyTotal": 6050, "currency": "EUR", "country": "DE"}
        quote.update(overrides)
        assert not is_valid_normalized_quote(quote)
