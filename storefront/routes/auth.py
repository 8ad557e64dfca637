from __future__ import annotations

import secrets
from typing import List, Optional

from fastapi import APIRouter, Header
from pydantic import BaseModel

from ..db import authors
from ..errors import ApiError
from ..settings import settings

router = APIRouter(prefix="/auth", tags=["auth"])


class LoginBody(BaseModel):
    username: str
    password: str


def _same(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a) and bool(b) and secrets.compare_digest(a.encode(), b.encode())


def require_admin(x_admin_key: Optional[str] = Header(None)) -> None:
    """Dependency: the request must carry the server-side admin key."""
    if not _same(x_admin_key, settings.admin_key):
        raise ApiError("unauthorized", status_code=401)


async def require_author(authorization: Optional[str] = Header(None)) -> List[str]:
    """Dependency: resolve the bearer token to the artist ids the author owns."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise ApiError("unauthorized", status_code=401)
    artist_ids = await authors.get_artist_ids_for_token(token.strip())
    if artist_ids is None:
        raise ApiError("unauthorized", status_code=401)
    return artist_ids


@router.post("/login")
def login(body: LoginBody):
    # the dashboard stores the admin key and sends it back as x-admin-key
    if (
        settings.admin_key
        and _same(body.username, settings.admin_username)
        and _same(body.password, settings.admin_password)
    ):
        return {"token": settings.admin_key}
    raise ApiError("unauthorized", status_code=401)


@router.get("/me")
def me(x_admin_key: Optional[str] = Header(None)):
    require_admin(x_admin_key)
    return {"ok": True}
