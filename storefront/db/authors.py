"""Author (artist owner) access lookups."""
from __future__ import annotations

from typing import List, Optional

from . import get_pool


async def get_artist_ids_for_token(token: str) -> Optional[List[str]]:
    """
    Artist ids owned by the author behind a session token.
    None when the token is unknown or expired; [] when the author owns no artist.
    """
    if not token:
        return None
    pool = await get_pool()
    async with pool.acquire() as conn:
        user_id = await conn.fetchval(
            """
            SELECT user_id FROM author_tokens
            WHERE token = $1 AND (expires_at IS NULL OR expires_at > NOW())
            """,
            token,
        )
        if user_id is None:
            return None
        rows = await conn.fetch(
            "SELECT artist_id FROM author_artists WHERE user_id = $1 ORDER BY artist_id",
            user_id,
        )
    return [r["artist_id"] for r in rows]
