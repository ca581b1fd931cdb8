"""
Tests: HTTP API (health, single/batch enhancement, debug routes).

The engine dependency is overridden with one backed by a fake LLM.

Run with:
    pytest eor_quotes/tests/test_api.py -v
"""

import pytest
from fastapi.testclient import TestClient

from eor_quotes.api import create_app
from eor_quotes.enhancement.cache import EnhancementCache
from eor_quotes.enhancement.engine import EnhancementEngine, get_enhancement_engine
from eor_quotes.enhancement.errors import EnhancementError
from eor_quotes.models.enhancement import GroqEnhancementResponse
from eor_quotes.models.enums import EnhancementErrorCode
from eor_quotes.services.legal_data_service import LegalDataService


class FakeLLM:
    def __init__(self, error=None):
        self.error = error

    async def enhance(self, system_prompt, user_prompt):
        if self.error is not None:
            raise self.error
        return GroqEnhancementResponse.model_validate({
            "enhancements": {"thirteenth_salary": {"monthly_amount": 500, "explanation": "13th salary"}},
            "confidence_scores": {"overall": 0.9},
        })

    async def health_check(self):
        return self.error is None

    def get_stats(self):
        return {"model": "fake"}


def _client(tmp_path, error=None) -> TestClient:
    engine = EnhancementEngine(
        cache=EnhancementCache(ttl_s=60),
        llm=FakeLLM(error),
        legal_data=LegalDataService(tmp_path),
    )
    app = create_app()
    app.dependency_overrides[get_enhancement_engine] = lambda: engine
    return TestClient(app)


DEEL_QUOTE = {
    "salary": "5000",
    "currency": "EUR",
    "country": "Germany",
    "deel_fee": "599",
    "total_costs": "6649",
    "costs": [{"name": "Pension", "amount": "500", "frequency": "monthly"}],
}

FORM_DATA = {"country": "Germany", "baseSalary": 5000, "contractDuration": "12"}


def _quote_body(**overrides) -> dict:
    body = {"provider": "deel", "providerQuote": DEEL_QUOTE, "formData": FORM_DATA}
    body.update(overrides)
    return body


class TestHealth:
    def test_health(self, tmp_path):
        response = _client(tmp_path).get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_enhancement_health(self, tmp_path):
        body = _client(tmp_path).get("/api/enhancement/quote").json()
        assert body["status"] == "healthy"
        assert body["stats"]["llm"] == {"model": "fake"}

    def test_unhealthy_llm(self, tmp_path):
        error = EnhancementError(EnhancementErrorCode.GROQ_ERROR, "down")
        body = _client(tmp_path, error).get("/api/enhancement/quote").json()
        assert body["status"] == "unhealthy"


class TestEnhanceQuote:
    def test_success(self, tmp_path):
        response = _client(tmp_path).post("/api/enhancement/quote", json=_quote_body())
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["data"]["provider"] == "deel"
        assert body["data"]["baseQuote"]["monthlyTotal"] == 6050
        assert body["data"]["totalEnhancement"] == 500
        assert body["data"]["finalTotal"] == 6550
        assert body["data"]["enhancements"]["thirteenthSalary"]["monthlyAmount"] == 500
        assert isinstance(body["processingTime"], int)

    def test_quote_type_forwarded(self, tmp_path):
        response = _client(tmp_path).post(
            "/api/enhancement/quote", json=_quote_body(quoteType="statutory-only"),
        )
        assert response.json()["data"]["quoteType"] == "statutory-only"

    @pytest.mark.parametrize("raw", [b"", b"{not json"])
    def test_invalid_json_body(self, tmp_path, raw):
        response = _client(tmp_path).post(
            "/api/enhancement/quote", content=raw, headers={"content-type": "application/json"},
        )
        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid JSON body"}

    def test_unknown_provider(self, tmp_path):
        response = _client(tmp_path).post("/api/enhancement/quote", json=_quote_body(provider="acme"))
        assert response.status_code == 400
        body = response.json()
        assert body["error"] == "Invalid request data"
        assert [d["field"] for d in body["details"]] == ["provider"]

    def test_empty_provider_quote(self, tmp_path):
        response = _client(tmp_path).post("/api/enhancement/quote", json=_quote_body(providerQuote={}))
        assert response.status_code == 400
        assert any(d["field"] == "providerQuote" for d in response.json()["details"])

    def test_missing_form_data(self, tmp_path):
        body = _quote_body()
        del body["formData"]
        response = _client(tmp_path).post("/api/enhancement/quote", json=body)
        assert response.status_code == 400
        assert any(d["field"] == "formData" for d in response.json()["details"])

    def test_rate_limited(self, tmp_path):
        error = EnhancementError(EnhancementErrorCode.RATE_LIMIT_EXCEEDED, "Rate limit exceeded", retry_after=30)
        response = _client(tmp_path, error).post("/api/enhancement/quote", json=_quote_body())
        assert response.status_code == 429
        assert response.headers["retry-after"] == "30"
        body = response.json()
        assert body["retryAfter"] == 30
        assert body["code"] == "RATE_LIMIT_EXCEEDED"
        assert body["provider"] == "deel"

    def test_rate_limited_default_retry_after(self, tmp_path):
        error = EnhancementError(EnhancementErrorCode.RATE_LIMIT_EXCEEDED, "Rate limit exceeded")
        response = _client(tmp_path, error).post("/api/enhancement/quote", json=_quote_body())
        assert response.json()["retryAfter"] == 60

    @pytest.mark.parametrize("code, status", [
        (EnhancementErrorCode.REQUEST_TIMEOUT, 504),
        (EnhancementErrorCode.GROQ_ERROR, 503),
        (EnhancementErrorCode.INVALID_API_KEY, 503),
        (EnhancementErrorCode.RESPONSE_PARSE_ERROR, 503),
        (EnhancementErrorCode.ENHANCEMENT_ERROR, 500),
    ])
    def test_error_status_mapping(self, tmp_path, code, status):
        error = EnhancementError(code, "failed")
        response = _client(tmp_path, error).post("/api/enhancement/quote", json=_quote_body())
        assert response.status_code == status
        body = response.json()
        assert body == {"success": False, "error": "failed", "code": code.value, "provider": "deel"}


class TestBatch:
    def test_batch_filters_unsupported_providers(self, tmp_path):
        response = _client(tmp_path).post("/api/enhancement/batch", json={
            "formData": FORM_DATA,
            "providerQuotes": {"deel": DEEL_QUOTE, "acme": {"total": 1}},
        })
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["providersProcessed"] == 1
        assert body["errorsOccurred"] == 0
        assert list(body["data"]["enhancements"]) == ["deel"]
        assert body["data"]["comparison"]["cheapest"] == "deel"
        assert isinstance(body["totalProcessingTime"], int)

    def test_batch_reports_errors_per_provider(self, tmp_path):
        error = EnhancementError(EnhancementErrorCode.REQUEST_TIMEOUT, "timed out")
        response = _client(tmp_path, error).post("/api/enhancement/batch", json={
            "formData": FORM_DATA,
            "providerQuotes": {"deel": DEEL_QUOTE},
        })
        body = response.json()
        assert response.status_code == 200
        assert body["errorsOccurred"] == 1
        assert body["data"]["errors"]["deel"][0]["code"] == "REQUEST_TIMEOUT"
        assert body["data"]["comparison"]["recommendations"] == ["No valid quotes to compare"]

    def test_batch_requires_form_data(self, tmp_path):
        response = _client(tmp_path).post("/api/enhancement/batch", json={"providerQuotes": {}})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request data"

    def test_batch_info(self, tmp_path):
        body = _client(tmp_path).get("/api/enhancement/batch").json()
        assert body["supportedProviders"] == [
            "deel", "remote", "rivermate", "oyster", "rippling", "skuad", "velocity",
        ]
        assert body["maxConcurrentJobs"] == 7
        assert body["quoteTypes"] == ["all-inclusive", "statutory-only"]


class TestDebugRoutes:
    def test_overview(self, tmp_path):
        body = _client(tmp_path).get("/api/enhancement/debug").json()
        assert body["success"] is True
        assert "stats" in body["availableActions"]

    @pytest.mark.parametrize("action", ["stats", "cache", "performance", "health", "env", "cleanup"])
    def test_actions(self, tmp_path, action):
        response = _client(tmp_path).get("/api/enhancement/debug", params={"action": action})
        assert response.status_code == 200
        assert response.json()["action"] == action

    def test_env_hides_secrets(self, tmp_path):
        data = _client(tmp_path).get("/api/enhancement/debug", params={"action": "env"}).json()["data"]
        assert "groqApiKeyConfigured" in data
        assert "groq_api_key" not in data

    def test_invalid_action(self, tmp_path):
        response = _client(tmp_path).get("/api/enhancement/debug", params={"action": "explode"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid action"

    @pytest.mark.parametrize("target", ["cache", "performance", "all"])
    def test_reset(self, tmp_path, target):
        client = _client(tmp_path)
        client.post("/api/enhancement/quote", json=_quote_body())
        response = client.delete("/api/enhancement/debug", params={"target": target})
        assert response.status_code == 200
        assert response.json()["target"] == target

    def test_reset_clears_cache(self, tmp_path):
        client = _client(tmp_path)
        client.post("/api/enhancement/quote", json=_quote_body())
        client.delete("/api/enhancement/debug", params={"target": "cache"})
        cache = client.get("/api/enhancement/debug", params={"action": "cache"}).json()["data"]
        assert cache["total_entries"] == 0

    @pytest.mark.parametrize("params", [{}, {"target": "everything"}])
    def test_invalid_target(self, tmp_path, params):
        response = _client(tmp_path).delete("/api/enhancement/debug", params=params)
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid target"
