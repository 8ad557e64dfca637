# storefront/errors.py
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class ApiError(Exception):
    """An error with a stable machine code, rendered as {"ok": false, "error": code}."""

    def __init__(
        self,
        code: str,
        status_code: int = 400,
        headers: Optional[Dict[str, str]] = None,
        **extra: Any,
    ):
        super().__init__(code)
        self.code = code
        self.status_code = status_code
        self.headers = headers
        self.extra = extra

    def payload(self) -> Dict[str, Any]:
        return {"ok": False, "error": self.code, **self.extra}


async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return JSONResponse(exc.payload(), status_code=exc.status_code, headers=exc.headers)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", "")}
        for e in exc.errors()
    ]
    return JSONResponse(
        {"ok": False, "error": "invalid_payload", "details": details},
        status_code=400,
    )
