"""Shared fixed-window counters for rate limiting across instances."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Tuple

from . import get_pool


async def hit(bucket: str, window_seconds: int) -> Tuple[int, datetime]:
    """
    Count one hit for `bucket`, restarting the window once it has expired.
    Returns (hits in current window, window start).
    """
    now = datetime.now(timezone.utc)
    expired_before = now - timedelta(seconds=window_seconds)
    pool = await get_pool()
    async with pool.acquire() as conn:
        row = await conn.fetchrow(
            """
            INSERT INTO rate_limit_hits AS r (bucket, hits, window_start)
            VALUES ($1, 1, $2)
            ON CONFLICT (bucket) DO UPDATE SET
                hits = CASE WHEN r.window_start < $3 THEN 1 ELSE r.hits + 1 END,
                window_start = CASE WHEN r.window_start < $3 THEN $2 ELSE r.window_start END
            RETURNING hits, window_start
            """,
            bucket,
            now,
            expired_before,
        )
    return row["hits"], row["window_start"]


async def purge_expired(window_seconds: int) -> int:
    """Drop buckets idle for more than two windows. Returns rows deleted."""
    cutoff = datetime.now(timezone.utc) - timedelta(seconds=2 * window_seconds)
    pool = await get_pool()
    async with pool.acquire() as conn:
        result = await conn.execute(
            "DELETE FROM rate_limit_hits WHERE window_start < $1", cutoff
        )
    # result looks like "DELETE 3"
    return int(result.split()[-1])
