"""
Operational commands for the storefront backend.

    python -m scripts.manage init-db
    python -m scripts.manage flush-notifications --limit 100
    python -m scripts.manage send-test-email --to someone@example.com
    python -m scripts.manage check-artist-emails
"""
import argparse
import asyncio
import sys

from storefront.db import apply_schema, catalog, close_pool, rate_limits
from storefront.logs import configure_logging
from storefront.mail.resend_client import EmailSendError, email_configured, send_email
from storefront.services.notifications import flush_pending
from storefront.settings import settings


async def init_db() -> int:
    await apply_schema()
    print("Schema applied.")
    return 0


async def flush_notifications(limit: int) -> int:
    reports = await flush_pending(limit)
    for r in reports:
        status = "skipped" if r.get("skipped") else f"{len(r['sent'])} sent, {len(r['failures'])} failed"
        print(f"{r['orderId']}: {status}")
        if r["missingContact"]:
            print(f"  missing contact: {', '.join(r['missingContact'])}")
    purged = await rate_limits.purge_expired(settings.checkout_rate_window_seconds)
    print(f"Dispatched {len(reports)} notification(s); purged {purged} rate-limit bucket(s).")
    return 0


async def send_test_email(to: str) -> int:
    if not email_configured():
        print("RESEND_API_KEY is not set.", file=sys.stderr)
        return 1
    try:
        res = await send_email(
            to,
            "Test Vague",
            "<p>Si tu lis ce message, l'envoi d'emails fonctionne.</p>",
        )
    except EmailSendError as e:
        print(f"Send failed: {e}", file=sys.stderr)
        return 1
    print(f"Sent (id={res['id']}).")
    return 0


async def check_artist_emails() -> int:
    artists = await catalog.list_artists_without_email()
    if not artists:
        print("Every artist has a contact email.")
        return 0
    print(f"{len(artists)} artist(s) without contact email:")
    for a in artists:
        print(f"  - {a['name']} ({a['slug'] or a['id']})")
    return 1


async def _run(args) -> int:
    try:
        if args.command == "init-db":
            return await init_db()
        if args.command == "flush-notifications":
            return await flush_notifications(args.limit)
        if args.command == "send-test-email":
            return await send_test_email(args.to)
        return await check_artist_emails()
    finally:
        await close_pool()


if __name__ == "__main__":
    ap = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    sub = ap.add_subparsers(dest="command", required=True)
    sub.add_parser("init-db", help="Create tables and indexes")
    flush = sub.add_parser("flush-notifications", help="Send order notifications still in the outbox")
    flush.add_argument("--limit", type=int, default=50)
    test = sub.add_parser("send-test-email", help="Check the email provider configuration")
    test.add_argument("--to", default=settings.admin_notify_email, required=not settings.admin_notify_email)
    sub.add_parser("check-artist-emails", help="List artists that cannot receive order emails")
    args = ap.parse_args()

    configure_logging()
    sys.exit(asyncio.run(_run(args)))
