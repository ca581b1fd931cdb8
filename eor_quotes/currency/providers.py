"""
Currency Providers — one adapter per exchange-rate source.

Every provider resolves to a ConversionResult and never raises for
upstream failures; only task cancellation propagates. Rates are cached per
currency pair, and concurrent lookups of the same pair share one request.
"""

from __future__ import annotations

import asyncio
import logging
import re
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Optional

import httpx
from pydantic import ValidationError

from eor_quotes.config import get_settings
from eor_quotes.models.currency import ConversionPayload, ConversionResult

logger = logging.getLogger(__name__)

_NUMERIC_TOKEN = re.compile(r"-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?")

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/139.0.0.0 Safari/537.36"
    ),
    "Referer": "https://www.papayaglobal.com/",
}


class CurrencyProviderError(Exception):
    """Upstream answered, but not with a usable rate."""


def pair_key(source: str, target: str) -> str:
    return f"{source.strip().upper()}_{target.strip().upper()}"


def extract_rate(raw: str) -> float:
    """Last numeric token of *raw*; the upstream sometimes prefixes prose."""
    matches = _NUMERIC_TOKEN.findall(raw.replace(",", ".", 1).strip())
    if not matches:
        raise CurrencyProviderError(f"No numeric rate found in response: {raw[:100]}")
    rate = float(matches[-1])
    if rate <= 0:
        raise CurrencyProviderError(f"Invalid rate received: {raw[:100]}")
    return rate


def json_object(response: httpx.Response, source: str) -> dict[str, Any]:
    data = response.json()
    if not isinstance(data, dict):
        raise CurrencyProviderError(f"{source} returned {type(data).__name__}, expected a JSON object")
    return data


# ── Shared plumbing ──────────────────────────────────────


@dataclass
class _Inflight:
    task: asyncio.Future
    waiters: int = 0


class InflightRequests:
    """Coalesces concurrent fetches per key; a fetch is cancelled once its last waiter is."""

    def __init__(self) -> None:
        self._entries: dict[str, _Inflight] = {}

    async def run(self, key: str, factory: Callable[[], Awaitable[float]]) -> float:
        entry = self._entries.get(key)
        if entry is None:
            entry = _Inflight(task=asyncio.ensure_future(factory()))
            self._entries[key] = entry
            entry.task.add_done_callback(lambda _t, k=key, e=entry: self._forget(k, e))

        entry.waiters += 1
        try:
            return await asyncio.shield(entry.task)
        except asyncio.CancelledError:
            if entry.waiters == 1 and not entry.task.done():
                entry.task.cancel()
            raise
        finally:
            entry.waiters -= 1

    def _forget(self, key: str, entry: _Inflight) -> None:
        if self._entries.get(key) is entry:
            del self._entries[key]

    def __len__(self) -> int:
        return len(self._entries)


class RateCache:
    def __init__(self, ttl_s: float, clock: Callable[[], float] = time.monotonic):
        self.ttl_s = ttl_s
        self._clock = clock
        self._rates: dict[str, tuple[float, float]] = {}

    def get(self, key: str) -> Optional[float]:
        hit = self._rates.get(key)
        if hit is None or hit[1] <= self._clock():
            return None
        return hit[0]

    def set(self, key: str, rate: float) -> None:
        self._rates[key] = (rate, self._clock() + self.ttl_s)

    def clear(self) -> None:
        self._rates.clear()


class CurrencyProvider:
    """Base adapter: normalization, same-currency/negative short-circuits and error capture."""

    name = "currency provider"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout_s: Optional[float] = None):
        self._client = client
        self.timeout_s = timeout_s or get_settings().currency_primary_timeout_s

    @asynccontextmanager
    async def http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
        else:
            async with httpx.AsyncClient(timeout=self.timeout_s) as client:
                yield client

    async def convert(self, amount: float, source: str, target: str) -> ConversionResult:
        source, target = source.strip().upper(), target.strip().upper()
        if source == target:
            return ConversionResult.ok(amount, source, target, "1", amount)
        if amount < 0:
            # Upstreams reject negatives; -1 marks the skipped conversion
            return ConversionResult.ok(amount, source, target, "0", -1)

        try:
            return await self._convert(amount, source, target)
        except httpx.TimeoutException:
            message = f"{self.name} request timed out after {self.timeout_s:.0f}s"
        except httpx.HTTPStatusError as exc:
            message = f"{self.name} API error: {exc.response.status_code} - {exc.response.text[:200]}"
        except httpx.HTTPError as exc:
            message = f"{self.name} request failed: {exc}"
        except (CurrencyProviderError, ValidationError, ValueError, KeyError, TypeError, AttributeError) as exc:
            message = f"{self.name}: {exc}"

        logger.warning(f"[CURRENCY] {source}->{target} via {self.name} failed: {message}")
        return ConversionResult.failed(message)

    async def _convert(self, amount: float, source: str, target: str) -> ConversionResult:
        raise NotImplementedError


class CachedRateProvider(CurrencyProvider):
    """Providers that look up a pair rate and multiply locally."""

    rate_ttl_s = 300.0

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout_s: Optional[float] = None):
        super().__init__(client, timeout_s)
        self.rates = RateCache(self.rate_ttl_s)
        self.inflight = InflightRequests()

    async def _convert(self, amount: float, source: str, target: str) -> ConversionResult:
        key = pair_key(source, target)
        rate = self.rates.get(key)
        if rate is None:
            rate = await self.inflight.run(key, lambda: self._fetch_and_cache(key, source, target))
        return ConversionResult.ok(amount, source, target, rate, round(amount * rate, 2))

    async def _fetch_and_cache(self, key: str, source: str, target: str) -> float:
        rate = await self.fetch_rate(source, target)
        self.rates.set(key, rate)
        logger.debug(f"[CURRENCY] {self.name} rate {key} = {rate}")
        return rate

    async def fetch_rate(self, source: str, target: str) -> float:
        raise NotImplementedError


# ── Primaries ────────────────────────────────────────────


class PapayaCurrencyProvider(CachedRateProvider):
    name = "Papaya Global"
    rate_ttl_s = 5 * 60.0

    async def fetch_rate(self, source: str, target: str) -> float:
        async with self.http() as client:
            response = await client.get(
                get_settings().papaya_currency_url,
                params={"query": pair_key(source, target), "from": source, "to": target},
                headers=BROWSER_HEADERS,
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            return extract_rate(response.text)


class ExchangerateApiCurrencyProvider(CachedRateProvider):
    name = "Exchangerate-API"
    rate_ttl_s = 10 * 60.0

    async def fetch_rate(self, source: str, target: str) -> float:
        settings = get_settings()
        rate: Any = None
        async with self.http() as client:
            api_key = settings.exchangerate_api_key.strip()
            if api_key:
                response = await client.get(
                    f"{settings.exchangerate_api_base}/v6/{api_key}/pair/{source}/{target}",
                    headers={"accept": "application/json"},
                    timeout=self.timeout_s,
                )
                response.raise_for_status()
                rate = json_object(response, self.name).get("conversion_rate")

            if not isinstance(rate, (int, float)) or rate <= 0:
                response = await client.get(
                    f"{settings.exchangerate_api_free_base}/v4/latest/{source}",
                    headers={"accept": "application/json"},
                    timeout=self.timeout_s,
                )
                response.raise_for_status()
                rates = json_object(response, self.name).get("rates")
                rate = rates.get(target) if isinstance(rates, dict) else None

        if not isinstance(rate, (int, float)) or rate <= 0:
            raise CurrencyProviderError(f"Failed to resolve exchange rate for {source} -> {target}")
        return float(rate)


# ── Fallbacks ────────────────────────────────────────────


class RemoteCurrencyProvider(CurrencyProvider):
    name = "Remote.com"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout_s: Optional[float] = None):
        super().__init__(client, timeout_s or get_settings().currency_fallback_timeout_s)

    async def _convert(self, amount: float, source: str, target: str) -> ConversionResult:
        settings = get_settings()
        if not settings.remote_api_token:
            raise CurrencyProviderError("REMOTE_API_TOKEN is not configured")

        async with self.http() as client:
            response = await client.post(
                f"{settings.remote_api_base}/v1/currency-converter",
                json={"amount": round(amount), "source_currency": source, "target_currency": target},
                headers={
                    "accept": "application/json",
                    "authorization": f"Bearer {settings.remote_api_token}",
                },
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            payload = ConversionPayload.model_validate(json_object(response, self.name)["data"])
        return ConversionResult(success=True, data=payload)


class ExchangerateHostCurrencyProvider(CurrencyProvider):
    name = "Exchangerate.host"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout_s: Optional[float] = None):
        super().__init__(client, timeout_s or get_settings().currency_fallback_timeout_s)

    async def _convert(self, amount: float, source: str, target: str) -> ConversionResult:
        async with self.http() as client:
            response = await client.get(
                f"{get_settings().exchangerate_host_base}/convert",
                params={"from": source, "to": target, "amount": amount},
                headers={"accept": "application/json"},
                timeout=self.timeout_s,
            )
            response.raise_for_status()
            data = json_object(response, self.name)

        result = data.get("result")
        if not data.get("success") or not isinstance(result, (int, float)):
            raise CurrencyProviderError("Invalid response from Exchangerate.host")
        rate = (data.get("info") or {}).get("rate") or result / ((data.get("query") or {}).get("amount") or 1)
        return ConversionResult.ok(amount, source, target, rate, result)
