"""
Enhancement error type shared by the LLM service, the engine and the API.
"""

from __future__ import annotations

from typing import Optional

from eor_quotes.models.enhancement import EnhancementErrorInfo
from eor_quotes.models.enums import EnhancementErrorCode, ProviderType

# HTTP status for each code surfaced by the enhancement endpoints
STATUS_BY_CODE: dict[EnhancementErrorCode, int] = {
    EnhancementErrorCode.RATE_LIMIT_EXCEEDED: 429,
    EnhancementErrorCode.REQUEST_TIMEOUT: 504,
    EnhancementErrorCode.GROQ_ERROR: 503,
    EnhancementErrorCode.INVALID_API_KEY: 503,
    EnhancementErrorCode.RESPONSE_PARSE_ERROR: 503,
    EnhancementErrorCode.ENHANCEMENT_ERROR: 500,
}

DEFAULT_RETRY_AFTER_S = 60


class EnhancementError(Exception):
    """A coded failure raised at the LLM or engine boundary."""

    def __init__(
        self,
        code: EnhancementErrorCode,
        message: str,
        provider: Optional[ProviderType] = None,
        retry_after: Optional[int] = None,
    ):
        super().__init__(message)
        self.code = code
        self.message = message
        self.provider = provider
        self.retry_after = retry_after

    @property
    def status_code(self) -> int:
        return STATUS_BY_CODE.get(self.code, 500)

    def with_provider(self, provider: ProviderType) -> "EnhancementError":
        if self.provider is None:
            self.provider = provider
        return self

    def to_info(self) -> EnhancementErrorInfo:
        return EnhancementErrorInfo(
            code=self.code,
            message=self.message,
            provider=self.provider,
            retry_after=self.retry_after,
        )

    def __repr__(self) -> str:
        return f"EnhancementError({self.code.value}, {self.message!r}, provider={self.provider})"
