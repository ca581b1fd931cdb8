"""
Currency Converter — races the primary rate providers, then walks the
fallbacks in order.

  convert()           → first successful primary wins, the other is cancelled
  ConversionSlots     → at most one in-flight conversion per logical slot
  convert_currency()  → module-level shortcut over the shared converter
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

import httpx

from eor_quotes.currency.providers import (
    CurrencyProvider,
    ExchangerateApiCurrencyProvider,
    ExchangerateHostCurrencyProvider,
    PapayaCurrencyProvider,
    RemoteCurrencyProvider,
)
from eor_quotes.models.currency import ConversionResult

logger = logging.getLogger(__name__)

ALL_FAILED = "All currency conversion providers failed"


class CurrencyConverter:

    def __init__(
        self,
        primaries: Optional[Sequence[CurrencyProvider]] = None,
        fallbacks: Optional[Sequence[CurrencyProvider]] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.primaries = list(primaries) if primaries is not None else [
            PapayaCurrencyProvider(client),
            ExchangerateApiCurrencyProvider(client),
        ]
        self.fallbacks = list(fallbacks) if fallbacks is not None else [
            RemoteCurrencyProvider(client),
            ExchangerateHostCurrencyProvider(client),
        ]

    async def convert(self, amount: float, source: str, target: str) -> ConversionResult:
        source, target = source.strip().upper(), target.strip().upper()
        if source == target:
            return ConversionResult.ok(amount, source, target, "1", amount)
        if amount == 0:
            return ConversionResult.ok(0, source, target, "1", 0)

        errors: list[str] = []
        result = await self._race_primaries(amount, source, target, errors)
        if result is not None:
            return result

        for provider in self.fallbacks:
            result = await provider.convert(amount, source, target)
            if result.success and result.data:
                logger.info(f"[CURRENCY] {source}->{target} resolved by fallback {provider.name}")
                return result
            errors.append(result.error or f"{provider.name} failed")

        logger.error(f"[CURRENCY] {source}->{target} failed on every provider")
        return ConversionResult.failed(" | ".join(errors) or ALL_FAILED)

    async def _race_primaries(
        self, amount: float, source: str, target: str, errors: list[str],
    ) -> Optional[ConversionResult]:
        if not self.primaries:
            return None

        tasks = [asyncio.ensure_future(p.convert(amount, source, target)) for p in self.primaries]
        try:
            for next_done in asyncio.as_completed(tasks):
                result = await next_done
                if result.success and result.data:
                    return result
                errors.append(result.error or "Primary currency provider failed")
        finally:
            pending = [t for t in tasks if not t.done()]
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
        return None


class ConversionSlots:
    """
    One in-flight conversion per slot name. Starting a conversion cancels
    the previous one for the same slot, so a superseded caller receives
    CancelledError instead of a stale result.
    """

    def __init__(self, converter: Optional[CurrencyConverter] = None):
        self.converter = converter or get_currency_converter()
        self._tasks: dict[str, asyncio.Task] = {}

    async def convert(self, slot: str, amount: float, source: str, target: str) -> ConversionResult:
        self.cancel(slot)
        task = asyncio.ensure_future(self.converter.convert(amount, source, target))
        self._tasks[slot] = task
        try:
            return await task
        finally:
            if self._tasks.get(slot) is task:
                del self._tasks[slot]

    def cancel(self, slot: str) -> bool:
        task = self._tasks.pop(slot, None)
        if task is None or task.done():
            return False
        task.cancel()
        logger.debug(f"[CURRENCY] Cancelled stale conversion for slot '{slot}'")
        return True

    def cancel_all(self) -> None:
        for slot in list(self._tasks):
            self.cancel(slot)

    def in_flight(self) -> list[str]:
        return [slot for slot, task in self._tasks.items() if not task.done()]


_converter: Optional[CurrencyConverter] = None


def get_currency_converter() -> CurrencyConverter:
    global _converter
    if _converter is None:
        _converter = CurrencyConverter()
    return _converter


async def convert_currency(amount: float, source: str, target: str) -> ConversionResult:
    return await get_currency_converter().convert(amount, source, target)
