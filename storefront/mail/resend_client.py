from __future__ import annotations

from typing import Any, Dict, List

import httpx

from ..settings import settings

RESEND_URL = "https://api.resend.com/emails"


class EmailSendError(RuntimeError):
    """A single email could not be handed to the provider."""


def email_configured() -> bool:
    return bool(settings.resend_api_key)


async def send_email(
    to: str | List[str],
    subject: str,
    html: str,
    reply_to: str | None = None,
) -> Dict[str, Any]:
    """Send one email through Resend and return the provider's message id."""
    api_key = settings.resend_api_key
    if not api_key:
        raise EmailSendError("RESEND_API_KEY is not configured")

    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }

    payload: Dict[str, Any] = {
        "from": settings.email_from,
        "to": [to] if isinstance(to, str) else list(to),
        "subject": subject,
        "html": html,
    }
    if reply_to:
        payload["reply_to"] = reply_to

    try:
        async with httpx.AsyncClient(timeout=15) as client:
            resp = await client.post(RESEND_URL, json=payload, headers=headers)
            resp.raise_for_status()
            data = resp.json()
    except httpx.HTTPStatusError as exc:
        raise EmailSendError(
            f"Resend API error {exc.response.status_code}: {exc.response.text[:200]}"
        ) from exc
    except httpx.RequestError as exc:
        raise EmailSendError(f"Resend request failed: {exc}") from exc

    return {"id": data.get("id"), "to": payload["to"]}
