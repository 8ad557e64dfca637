"""Read-only lookups into the catalog tables (artists, works, variants)."""
from __future__ import annotations

from typing import Any, Dict, Iterable, List, Set

import asyncpg

from . import get_pool


async def load_variants(
    conn: asyncpg.Connection,
    variant_ids: Iterable[str],
) -> Dict[str, Dict[str, Any]]:
    """Variants by id, with the work they belong to."""
    ids = sorted({v for v in variant_ids if v})
    if not ids:
        return {}
    rows = await conn.fetch(
        "SELECT id, work_id, label, price FROM variants WHERE id = ANY($1::text[])",
        ids,
    )
    return {r["id"]: dict(r) for r in rows}


async def existing_work_ids(conn: asyncpg.Connection, work_ids: Iterable[str]) -> Set[str]:
    ids = sorted({w for w in work_ids if w})
    if not ids:
        return set()
    rows = await conn.fetch("SELECT id FROM works WHERE id = ANY($1::text[])", ids)
    return {r["id"] for r in rows}


async def find_unavailable_works(work_ids: Iterable[str]) -> Set[str]:
    """Work ids whose artist is currently on vacation."""
    ids = sorted({w for w in work_ids if w})
    if not ids:
        return set()
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT w.id FROM works w
            JOIN artists a ON a.id = w.artist_id
            WHERE w.id = ANY($1::text[]) AND a.is_on_vacation
            """,
            ids,
        )
    return {r["id"] for r in rows}


async def list_artists_without_email() -> List[Dict[str, Any]]:
    pool = await get_pool()
    async with pool.acquire() as conn:
        rows = await conn.fetch(
            """
            SELECT id, name, slug FROM artists
            WHERE contact_email IS NULL OR btrim(contact_email) = ''
            ORDER BY name
            """
        )
    return [dict(r) for r in rows]
