"""
LLM Service — centralized Groq client for quote enhancement.

Provides:
  - GroqService.enhance()       → GroqEnhancementResponse for one prompt pair
  - GroqService.health_check()  → cheap "ping" completion
  - get_llm_service()           → process-wide instance

Every failure leaves this module as an EnhancementError carrying one of
the EnhancementErrorCode values; nothing here retries on its own.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
import re
import time
from typing import Any, Callable, Optional

import groq
from groq import AsyncGroq
from pydantic import ValidationError

from eor_quotes.config import get_settings
from eor_quotes.enhancement.errors import DEFAULT_RETRY_AFTER_S, EnhancementError
from eor_quotes.models.enhancement import GroqEnhancementResponse
from eor_quotes.models.enums import EnhancementErrorCode

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*\n(.*?)\n\s*```", re.DOTALL | re.IGNORECASE)

WINDOW_S = 60.0


class RateLimiter:
    """
    Fixed one-minute window over requests and tokens.

    Exceeding the request budget fails fast with RATE_LIMIT_EXCEEDED; an
    exhausted token budget waits for the window to roll over instead.
    """

    def __init__(
        self,
        requests_per_minute: int,
        tokens_per_minute: int,
        max_tokens: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.requests_per_minute = requests_per_minute
        self.tokens_per_minute = tokens_per_minute
        self.projected_tokens = max(256, min(max_tokens, 2048))
        self._clock = clock
        self.window_start = clock()
        self.request_count = 0
        self.token_count = 0

    def _reset(self, now: float) -> None:
        self.window_start = now
        self.request_count = 0
        self.token_count = 0

    async def acquire(self) -> None:
        now = self._clock()
        if now - self.window_start > WINDOW_S:
            self._reset(now)

        if self.request_count >= self.requests_per_minute:
            wait_s = math.ceil(WINDOW_S - (now - self.window_start))
            raise EnhancementError(
                EnhancementErrorCode.RATE_LIMIT_EXCEEDED,
                f"Rate limit exceeded. Please wait {wait_s} seconds.",
                retry_after=max(wait_s, 1),
            )

        if self.token_count + self.projected_tokens > self.tokens_per_minute:
            wait_s = max(WINDOW_S - (now - self.window_start), 0.25)
            logger.info(f"[LLM] Token budget exhausted, waiting {wait_s:.1f}s for the window to reset")
            await asyncio.sleep(wait_s)
            self._reset(self._clock())

        self.request_count += 1

    def record_tokens(self, tokens: int) -> None:
        self.token_count += tokens


def extract_json(text: str) -> str:
    """Pull the JSON object out of a completion that may carry fences or prose."""
    trimmed = text.strip()
    if trimmed.startswith("{") and trimmed.endswith("}"):
        return trimmed

    fence = _CODE_FENCE.search(trimmed)
    if fence and fence.group(1).strip().startswith("{"):
        return fence.group(1).strip()

    first, last = trimmed.find("{"), trimmed.rfind("}")
    if first >= 0 and last > first:
        return trimmed[first:last + 1]
    return trimmed


def parse_enhancement_response(content: str) -> GroqEnhancementResponse:
    try:
        payload = json.loads(extract_json(content))
        return GroqEnhancementResponse.model_validate(payload)
    except json.JSONDecodeError as exc:
        raise EnhancementError(
            EnhancementErrorCode.RESPONSE_PARSE_ERROR,
            f"Failed to parse LLM response as JSON: {exc.msg}",
        ) from exc
    except ValidationError as exc:
        raise EnhancementError(
            EnhancementErrorCode.RESPONSE_PARSE_ERROR,
            f"LLM response failed validation ({exc.error_count()} errors)",
        ) from exc


def _retry_after(exc: groq.APIStatusError) -> int:
    header = exc.response.headers.get("retry-after") if exc.response is not None else None
    try:
        return max(int(float(header)), 1)
    except (TypeError, ValueError):
        return DEFAULT_RETRY_AFTER_S


class GroqService:
    """Async Groq chat-completions wrapper with local rate limiting."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        client: Any = None,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        settings = get_settings()
        self.api_key = settings.groq_api_key if api_key is None else api_key
        self.model = model or settings.llm_model
        self.temperature = settings.llm_temperature
        self.max_tokens = settings.llm_max_tokens
        self.request_timeout_s = settings.groq_request_timeout_s
        self.total_timeout_s = settings.groq_total_timeout_s
        self.max_retries = settings.groq_max_retries
        self._client = client
        self.rate_limiter = rate_limiter or RateLimiter(
            settings.groq_rate_limit_rpm,
            settings.groq_tokens_per_minute,
            settings.llm_max_tokens,
        )
        self.total_requests = 0
        self.total_errors = 0
        self.total_tokens = 0

    @property
    def client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise EnhancementError(
                    EnhancementErrorCode.INVALID_API_KEY,
                    "GROQ_API_KEY is not set in environment / .env file",
                )
            self._client = AsyncGroq(
                api_key=self.api_key,
                timeout=self.request_timeout_s,
                max_retries=self.max_retries,
            )
            logger.info(f"[LLM] Initialized Groq client: {self.model}")
        return self._client

    # ── Calls ────────────────────────────────────────────

    async def _complete(self, system_prompt: str, user_prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
            top_p=1,
            stream=False,
            response_format={"type": "json_object"},
        )
        usage = getattr(response, "usage", None)
        tokens = getattr(usage, "total_tokens", 0) or 0
        self.rate_limiter.record_tokens(tokens)
        self.total_tokens += tokens

        choice = response.choices[0] if response.choices else None
        content = choice.message.content if choice is not None else None
        logger.info(
            f"[LLM] Response length: {len(content or '')} chars | "
            f"finish_reason={getattr(choice, 'finish_reason', 'unknown')} | tokens={tokens}"
        )
        if not content:
            raise EnhancementError(EnhancementErrorCode.GROQ_ERROR, "No content received from Groq")
        return content

    async def enhance(self, system_prompt: str, user_prompt: str) -> GroqEnhancementResponse:
        """Run one gap-analysis completion and parse it."""
        logger.debug(f"[LLM] Prompt length: {len(user_prompt)} chars")
        self.total_requests += 1
        t0 = time.perf_counter()
        try:
            await self.rate_limiter.acquire()
            content = await asyncio.wait_for(
                self._complete(system_prompt, user_prompt), timeout=self.total_timeout_s,
            )
            result = parse_enhancement_response(content)
        except Exception as exc:
            self.total_errors += 1
            raise self._handle_error(exc) from exc

        elapsed = time.perf_counter() - t0
        logger.info(f"[LLM] Enhancement received in {elapsed:.2f}s")
        return result

    def _handle_error(self, exc: Exception) -> EnhancementError:
        if isinstance(exc, EnhancementError):
            error = exc
        elif isinstance(exc, groq.RateLimitError):
            error = EnhancementError(
                EnhancementErrorCode.RATE_LIMIT_EXCEEDED,
                "Groq rate limit exceeded",
                retry_after=_retry_after(exc),
            )
        elif isinstance(exc, groq.AuthenticationError):
            error = EnhancementError(EnhancementErrorCode.INVALID_API_KEY, "Invalid Groq API key")
        elif isinstance(exc, (groq.APITimeoutError, asyncio.TimeoutError)):
            error = EnhancementError(
                EnhancementErrorCode.REQUEST_TIMEOUT,
                f"LLM request timed out after {self.total_timeout_s:.0f}s",
            )
        elif isinstance(exc, groq.APIStatusError):
            error = EnhancementError(
                EnhancementErrorCode.GROQ_ERROR, f"Groq API error ({exc.status_code}): {exc.message}",
            )
        else:
            error = EnhancementError(EnhancementErrorCode.GROQ_ERROR, f"Groq request failed: {exc}")

        logger.error(f"[LLM] {error.code.value}: {error.message}")
        return error

    # ── Admin ────────────────────────────────────────────

    async def health_check(self) -> bool:
        try:
            response = await asyncio.wait_for(
                self.client.chat.completions.create(
                    model=self.model,
                    messages=[{"role": "user", "content": "ping"}],
                    max_tokens=5,
                    temperature=0,
                ),
                timeout=self.request_timeout_s,
            )
        except (EnhancementError, groq.APIError, asyncio.TimeoutError) as exc:
            logger.warning(f"[LLM] Health check failed: {exc}")
            return False
        return bool(response.choices)

    def get_stats(self) -> dict[str, Any]:
        limiter = self.rate_limiter
        return {
            "model": self.model,
            "api_key_configured": bool(self.api_key),
            "total_requests": self.total_requests,
            "total_errors": self.total_errors,
            "total_tokens": self.total_tokens,
            "rate_limit": {
                "requests_in_window": limiter.request_count,
                "requests_per_minute": limiter.requests_per_minute,
                "tokens_in_window": limiter.token_count,
                "tokens_per_minute": limiter.tokens_per_minute,
            },
        }


_llm_service: Optional[GroqService] = None


def get_llm_service() -> GroqService:
    """Return the process-wide GroqService (singleton)."""
    global _llm_service
    if _llm_service is None:
        _llm_service = GroqService()
    return _llm_service
