"""
Application configuration using Pydantic Settings.
All environment-specific values are centralized here.
"""

from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # ── App ──────────────────────────────────────────────
    app_name: str = "EOR Quote Enhancement"
    debug: bool = True

    # ── LLM (Groq) ───────────────────────────────────────
    groq_api_key: str = ""
    groq_api_base: str = "https://api.groq.com/openai/v1"
    llm_model: str = "llama-3.3-70b-versatile"
    llm_temperature: float = 0.1
    llm_max_tokens: int = 8192
    groq_rate_limit_rpm: int = 30
    groq_tokens_per_minute: int = 6000
    groq_request_timeout_s: float = 30.0
    groq_total_timeout_s: float = 60.0
    groq_max_retries: int = 0  # SDK transport retries

    # ── Enhancement ──────────────────────────────────────
    enhancement_cache_ttl_s: int = 30 * 60
    extraction_cache_ttl_s: int = 60 * 60
    enhancement_cache_max_size: int = 100
    slow_query_threshold_s: float = 5.0
    max_concurrent_jobs: int = 7

    # Reconciliation: share above the cheapest still counted as competitive
    reconciliation_threshold: float = 0.04
    reconciliation_risk_penalty: float = 0.10

    # Yearly-benefit mislabel heuristic (see normalization.benefits)
    mislabel_tolerance: float = 0.25
    mislabel_multiplier: float = 2.0

    # ── Legal / Country Data ─────────────────────────────
    legal_data_dir: str = "./country_data"

    # ── Currency Conversion ──────────────────────────────
    remote_api_token: str = ""
    remote_api_base: str = "https://gateway.remote.com"
    exchangerate_api_key: str = ""
    exchangerate_api_base: str = "https://v6.exchangerate-api.com"
    exchangerate_api_free_base: str = "https://api.exchangerate-api.com"
    exchangerate_host_base: str = "https://api.exchangerate.host"
    papaya_currency_url: str = "https://www.papayaglobal.com/wp-content/plugins/wp-create-react-app/json.php"
    currency_primary_timeout_s: float = 5.0
    currency_fallback_timeout_s: float = 10.0

    # ── Server ───────────────────────────────────────────
    host: str = "0.0.0.0"
    port: int = 8000

    # ── Logging ──────────────────────────────────────────
    log_level: str = "INFO"

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


@lru_cache()
def get_settings() -> Settings:
    """Return cached application settings (singleton)."""
    return Settings()
