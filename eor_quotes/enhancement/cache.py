"""
Enhancement Cache — in-memory, TTL-bounded store for EnhancedQuotes and
benefit extractions, plus the performance monitor the engine reports to.

Best effort only: nothing survives a restart and a miss simply means the
LLM is called again. Concurrent writes to one key are last-write-wins.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Callable, Generic, Optional, TypeVar

from eor_quotes.config import get_settings
from eor_quotes.models.enhancement import EnhancedQuote
from eor_quotes.models.enums import ProviderType, QuoteType
from eor_quotes.models.schemas import EORFormData, NormalizedQuote, StandardizedBenefitData
from eor_quotes.utils.hashing import stable_json_hash

logger = logging.getLogger(__name__)

T = TypeVar("T")

ESTIMATED_ENTRY_BYTES = 2048


@dataclass
class CacheEntry(Generic[T]):
    data: T
    timestamp: float
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


def quote_content_hash(quote: NormalizedQuote) -> str:
    """Fingerprint of the numeric content of a normalized quote."""
    return stable_json_hash({
        "monthlyTotal": quote.monthly_total,
        "baseCost": quote.base_cost,
        "currency": quote.currency,
        "breakdown": quote.breakdown,
    })


class EnhancementCache:
    """
    Two keyed stores: enhanced quotes (default TTL 30 min) and benefit
    extractions (default TTL 1 h). Oldest entries are evicted once
    max_size is reached.
    """

    def __init__(
        self,
        ttl_s: Optional[float] = None,
        extraction_ttl_s: Optional[float] = None,
        max_size: Optional[int] = None,
        clock: Callable[[], float] = time.time,
    ):
        settings = get_settings()
        self.ttl_s = settings.enhancement_cache_ttl_s if ttl_s is None else ttl_s
        self.extraction_ttl_s = settings.extraction_cache_ttl_s if extraction_ttl_s is None else extraction_ttl_s
        self.max_size = settings.enhancement_cache_max_size if max_size is None else max_size
        self._clock = clock
        self._entries: dict[str, CacheEntry[EnhancedQuote]] = {}
        self._extractions: dict[str, CacheEntry[StandardizedBenefitData]] = {}
        self._hits = 0
        self._misses = 0

    # ── Keys ─────────────────────────────────────────────

    @staticmethod
    def generate_key(
        provider: ProviderType,
        quote: NormalizedQuote,
        form_data: EORFormData,
        quote_type: QuoteType,
        country_code: str = "",
    ) -> str:
        parts = [
            provider.value,
            (country_code or form_data.country).upper(),
            quote_type.value,
            form_data.base_salary,
            form_data.contract_duration,
            form_data.employment_type,
            quote_content_hash(quote),
        ]
        return "|".join(str(p) for p in parts)

    @staticmethod
    def extraction_key(provider: ProviderType, quote: NormalizedQuote) -> str:
        return f"extraction|{provider.value}|{quote_content_hash(quote)}"

    # ── Enhanced quotes ──────────────────────────────────

    def get(self, key: str) -> Optional[EnhancedQuote]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            self._misses += 1
            logger.debug(f"[CACHE] Expired entry dropped: {key}")
            return None
        self._hits += 1
        return entry.data

    def set(self, key: str, value: EnhancedQuote, ttl_s: Optional[float] = None) -> None:
        now = self._clock()
        self._entries.pop(key, None)
        self._entries[key] = CacheEntry(data=value, timestamp=now, expires_at=now + (ttl_s or self.ttl_s))
        self._enforce_size(self._entries)
        logger.debug(f"[CACHE] Stored {key} ({len(self._entries)} entries)")

    def has(self, key: str) -> bool:
        entry = self._entries.get(key)
        return entry is not None and not entry.is_expired(self._clock())

    # ── Extractions ──────────────────────────────────────

    def get_extraction(self, key: str) -> Optional[StandardizedBenefitData]:
        entry = self._extractions.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._extractions[key]
            return None
        return entry.data

    def set_extraction(self, key: str, value: StandardizedBenefitData) -> None:
        now = self._clock()
        self._extractions.pop(key, None)
        self._extractions[key] = CacheEntry(data=value, timestamp=now, expires_at=now + self.extraction_ttl_s)
        self._enforce_size(self._extractions)

    # ── Maintenance ──────────────────────────────────────

    def clear(self) -> None:
        count = len(self._entries) + len(self._extractions)
        self._entries.clear()
        self._extractions.clear()
        self._hits = 0
        self._misses = 0
        logger.info(f"[CACHE] Cleared {count} entries")

    def clean_expired(self) -> int:
        now = self._clock()
        removed = 0
        for store in (self._entries, self._extractions):
            expired = [k for k, e in store.items() if e.is_expired(now)]
            for key in expired:
                del store[key]
            removed += len(expired)
        if removed:
            logger.info(f"[CACHE] Removed {removed} expired entries")
        return removed

    def cleanup(self) -> int:
        """Drop expired entries, then trim to max_size. Returns entries removed."""
        removed = self.clean_expired()
        removed += self._enforce_size(self._entries)
        removed += self._enforce_size(self._extractions)
        return removed

    def _enforce_size(self, store: dict[str, CacheEntry[Any]]) -> int:
        overflow = len(store) - self.max_size
        if overflow <= 0:
            return 0
        oldest = sorted(store, key=lambda k: store[k].timestamp)[:overflow]
        for key in oldest:
            del store[key]
        logger.debug(f"[CACHE] Evicted {len(oldest)} oldest entries")
        return len(oldest)

    # ── Stats ────────────────────────────────────────────

    def __len__(self) -> int:
        return len(self._entries)

    def get_stats(self) -> dict[str, Any]:
        now = self._clock()
        timestamps = [e.timestamp for e in self._entries.values()]
        valid = sum(1 for e in self._entries.values() if not e.is_expired(now))
        lookups = self._hits + self._misses
        return {
            "total_entries": len(self._entries),
            "valid_entries": valid,
            "expired_entries": len(self._entries) - valid,
            "extraction_entries": len(self._extractions),
            "oldest_entry": min(timestamps) if timestamps else None,
            "newest_entry": max(timestamps) if timestamps else None,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            "memory_usage_bytes": (len(self._entries) + len(self._extractions)) * ESTIMATED_ENTRY_BYTES,
            "ttl_s": self.ttl_s,
            "max_size": self.max_size,
        }


class EnhancementPerformanceMonitor:
    """Request counters, response times, slow queries and recent errors."""

    def __init__(self, slow_threshold_s: Optional[float] = None, max_slow: int = 10, max_errors: int = 20):
        self.slow_threshold_s = (
            get_settings().slow_query_threshold_s if slow_threshold_s is None else slow_threshold_s
        )
        self._max_slow = max_slow
        self._max_errors = max_errors
        self.reset()

    def reset(self) -> None:
        self.total_requests = 0
        self.cache_hits = 0
        self.cache_misses = 0
        self.total_response_time_s = 0.0
        self.slow_queries: deque[dict[str, Any]] = deque(maxlen=self._max_slow)
        self.errors: deque[dict[str, Any]] = deque(maxlen=self._max_errors)

    def record_hit(self) -> None:
        self.cache_hits += 1

    def record_miss(self) -> None:
        self.cache_misses += 1

    def record_request(self, provider: str, elapsed_s: float) -> None:
        self.total_requests += 1
        self.total_response_time_s += elapsed_s
        if elapsed_s > self.slow_threshold_s:
            self.slow_queries.append({"provider": provider, "duration_s": round(elapsed_s, 3), "at": time.time()})
            logger.warning(f"[PERF] Slow enhancement for {provider}: {elapsed_s:.2f}s")

    def record_error(self, provider: str, error: str) -> None:
        self.errors.append({"provider": provider, "error": error, "at": time.time()})

    def get_metrics(self) -> dict[str, Any]:
        lookups = self.cache_hits + self.cache_misses
        return {
            "total_requests": self.total_requests,
            "cache_hits": self.cache_hits,
            "cache_misses": self.cache_misses,
            "cache_hit_rate": round(100 * self.cache_hits / lookups, 2) if lookups else 0.0,
            "average_response_time_s": (
                round(self.total_response_time_s / self.total_requests, 3) if self.total_requests else 0.0
            ),
            "total_response_time_s": round(self.total_response_time_s, 3),
            "slow_queries": list(self.slow_queries),
            "recent_errors": list(self.errors),
        }
