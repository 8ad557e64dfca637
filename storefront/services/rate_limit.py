# storefront/services/rate_limit.py
"""
Fixed-window rate limiting keyed by client IP.

The counter store is injected: `MemoryRateLimitStore` for a single process
(bounded, expired buckets swept), `PostgresRateLimitStore` when several
instances must share counts.
"""
from __future__ import annotations

import math
import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, Protocol, Tuple

import asyncpg
import structlog
from fastapi import Request, Response

from ..db import rate_limits
from ..errors import ApiError
from ..settings import settings

logger = structlog.get_logger().bind(component="rate_limit")


class RateLimitStore(Protocol):
    async def hit(self, bucket: str, window_seconds: int) -> Tuple[int, float]:
        """Count a hit; return (hits in window, window start as epoch seconds)."""
        ...


class MemoryRateLimitStore:
    SWEEP_EVERY = 200

    def __init__(self, max_buckets: int = 10_000):
        self.max_buckets = max_buckets
        self._buckets: Dict[str, Tuple[int, float]] = {}
        self._calls = 0

    async def hit(self, bucket: str, window_seconds: int) -> Tuple[int, float]:
        now = time.time()
        hits, start = self._buckets.get(bucket, (0, now))
        if now - start >= window_seconds:
            hits, start = 0, now
        hits += 1
        self._buckets[bucket] = (hits, start)

        self._calls += 1
        if self._calls % self.SWEEP_EVERY == 0 or len(self._buckets) > self.max_buckets:
            self._sweep(now, window_seconds)
        return hits, start

    def _sweep(self, now: float, window_seconds: int) -> None:
        cutoff = now - window_seconds
        for key in [k for k, (_, start) in self._buckets.items() if start < cutoff]:
            del self._buckets[key]
        # still too many live buckets: drop the oldest windows
        overflow = len(self._buckets) - self.max_buckets
        if overflow > 0:
            oldest = sorted(self._buckets.items(), key=lambda kv: kv[1][1])[:overflow]
            for key, _ in oldest:
                del self._buckets[key]


class PostgresRateLimitStore:
    async def hit(self, bucket: str, window_seconds: int) -> Tuple[int, float]:
        hits, start = await rate_limits.hit(bucket, window_seconds)
        return hits, start.timestamp()


@dataclass
class RateLimitResult:
    ok: bool
    limit: int
    remaining: int
    reset_at: int
    retry_after: int

    def headers(self) -> Dict[str, str]:
        h = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_at),
        }
        if not self.ok:
            h["Retry-After"] = str(self.retry_after)
        return h


def client_ip(request: Request) -> str:
    h = request.headers
    forwarded = (h.get("x-forwarded-for") or "").split(",")[0].strip()
    if forwarded:
        return forwarded
    real = (h.get("x-real-ip") or "").strip()
    if real:
        return real
    if request.client and request.client.host:
        return request.client.host
    return "local"


class RateLimiter:
    def __init__(self, store: RateLimitStore, *, key: str, limit: int, window_seconds: int):
        self.store = store
        self.key = key
        self.limit = limit
        self.window_seconds = window_seconds

    async def check(self, ip: str) -> RateLimitResult:
        try:
            hits, start = await self.store.hit(f"{self.key}:{ip}", self.window_seconds)
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError) as e:
            # shared store down: fail open
            logger.warning("rate_limit_store_unavailable", key=self.key, error=str(e))
            return RateLimitResult(True, self.limit, self.limit, 0, 0)

        now = time.time()
        reset_at = start + self.window_seconds
        ok = hits <= self.limit
        return RateLimitResult(
            ok=ok,
            limit=self.limit,
            remaining=max(0, self.limit - hits),
            reset_at=math.ceil(reset_at),
            retry_after=0 if ok else max(1, math.ceil(reset_at - now)),
        )

    async def enforce(self, request: Request, response: Response) -> RateLimitResult:
        ip = client_ip(request)
        result = await self.check(ip)
        if not result.ok:
            logger.info("rate_limited", key=self.key, ip=ip)
            raise ApiError("rate_limited", status_code=429, headers=result.headers())
        response.headers.update(result.headers())
        return result


def build_store(backend: str) -> RateLimitStore:
    if backend.strip().lower() == "postgres":
        return PostgresRateLimitStore()
    return MemoryRateLimitStore()


@lru_cache
def get_checkout_limiter() -> RateLimiter:
    """FastAPI dependency; override in tests via app.dependency_overrides."""
    return RateLimiter(
        build_store(settings.rate_limit_backend),
        key="checkout",
        limit=settings.checkout_rate_limit,
        window_seconds=settings.checkout_rate_window_seconds,
    )
