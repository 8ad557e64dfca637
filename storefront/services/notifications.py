# storefront/services/notifications.py
from __future__ import annotations

from html import escape
from typing import Any, Dict, List, Optional

import asyncpg
import structlog

from ..db import orders as orders_db
from ..mail.resend_client import email_configured, send_email
from ..schemas.orders import ShippingStatus, shipping_label
from ..settings import settings

logger = structlog.get_logger().bind(component="notifications")

_DB_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, RuntimeError)


def _money(cents: int, currency: str = "eur") -> str:
    return f"{(cents or 0) / 100:.2f} {currency.upper()}"


def _item_text(item: Dict[str, Any], currency: str) -> str:
    title = item.get("work_title") or "Œuvre"
    if item.get("variant_label"):
        title = f"{title} ({item['variant_label']})"
    total = item["unit_price"] * item["qty"]
    return f"{escape(title)} × {item['qty']} — {_money(total, currency)}"


def group_items_by_artist(items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """[{artist_id, artist_name, email, items}] in first-seen order."""
    groups: Dict[Optional[str], Dict[str, Any]] = {}
    for it in items:
        key = it.get("artist_id")
        g = groups.get(key)
        if g is None:
            g = groups[key] = {
                "artist_id": key,
                "artist_name": it.get("artist_name") or "Artiste",
                "email": (it.get("artist_email") or "").strip(),
                "items": [],
            }
        g["items"].append(it)
    return list(groups.values())


async def _safe_send(to: str, subject: str, html: str) -> Optional[str]:
    """Send one email; return an error string instead of raising."""
    try:
        await send_email(to, subject, html)
    except Exception as e:  # one recipient must never block the others
        logger.error("notification_send_failed", to=to, subject=subject, error=str(e))
        return str(e)
    return None


def _artist_html(order: Dict[str, Any], group: Dict[str, Any]) -> str:
    currency = order.get("currency") or settings.currency
    lines = "".join(f"<li>{_item_text(it, currency)}</li>" for it in group["items"])
    subtotal = sum(it["unit_price"] * it["qty"] for it in group["items"])
    return (
        f"<h2>Nouvelle commande confirmée</h2>"
        f"<p>Bonjour {escape(group['artist_name'])},</p>"
        f"<p>Une commande contenant tes œuvres vient d'être payée.</p>"
        f"<p><strong>Référence :</strong> {escape(order['id'])}</p>"
        f"<ul>{lines}</ul>"
        f"<p><strong>Sous-total :</strong> {_money(subtotal, currency)}</p>"
        f"<p>Les informations d'expédition sont disponibles dans ton tableau de bord.</p>"
    )


def _admin_html(
    order: Dict[str, Any],
    missing: List[Dict[str, Any]],
    missing_contact: List[str],
    failures: List[Dict[str, str]],
) -> str:
    currency = order.get("currency") or settings.currency
    lines = "".join(
        f"<li>{_item_text(it, currency)} — {escape(it.get('artist_name') or 'Artiste')}</li>"
        for it in order["items"]
    )
    parts = [
        "<h2>Nouvelle commande</h2>",
        f"<p><strong>Référence :</strong> {escape(order['id'])}<br>",
        f"<strong>Client :</strong> {escape(order.get('email') or '(non renseigné)')}<br>",
        f"<strong>Total :</strong> {_money(order.get('total') or 0, currency)}</p>",
        f"<h3>Articles</h3><ul>{lines}</ul>",
    ]
    if missing:
        rows = "".join(
            f"<li>{escape(str(m.get('name') or m.get('workId') or '?'))}"
            f" (work={escape(str(m.get('workId')))}, variant={escape(str(m.get('variantId')))})"
            f" — {escape(str(m.get('reason')))}</li>"
            for m in missing
        )
        parts.append(f"<h3>Articles non rattachés</h3><ul>{rows}</ul>")
    if missing_contact:
        rows = "".join(f"<li>{escape(name)}</li>" for name in missing_contact)
        parts.append(f"<h3>Artistes sans email de contact</h3><ul>{rows}</ul>")
    if failures:
        rows = "".join(
            f"<li>{escape(f['artist'])} &lt;{escape(f['email'])}&gt; : {escape(f['error'])}</li>"
            for f in failures
        )
        parts.append(f"<h3>Échecs d'envoi</h3><ul>{rows}</ul>")
    return "".join(parts)


async def fan_out(order: Dict[str, Any], missing: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
    """
    Email every artist in the order (one summary each) and then the admin.

    Artists without a contact email are listed to the admin instead. Send
    failures are collected in the report; nothing here raises.
    """
    missing = missing or []
    report: Dict[str, Any] = {
        "orderId": order["id"],
        "sent": [],
        "failures": [],
        "missingContact": [],
        "adminNotified": False,
    }
    if not email_configured():
        logger.info("notifications_skipped", order_id=order["id"], reason="RESEND_API_KEY missing")
        report["skipped"] = True
        return report

    subject = f"Nouvelle commande {order['id']}"
    for group in group_items_by_artist(order["items"]):
        to = settings.sales_notif_override or group["email"]
        if not to:
            report["missingContact"].append(group["artist_name"])
            continue
        err = await _safe_send(to, subject, _artist_html(order, group))
        if err:
            report["failures"].append({"artist": group["artist_name"], "email": to, "error": err})
        else:
            report["sent"].append(to)

    if settings.admin_notify_email:
        err = await _safe_send(
            settings.admin_notify_email,
            f"[Admin] {subject}",
            _admin_html(order, missing, report["missingContact"], report["failures"]),
        )
        report["adminNotified"] = err is None
        if err:
            report["failures"].append(
                {"artist": "admin", "email": settings.admin_notify_email, "error": err}
            )

    logger.info(
        "notifications_sent",
        order_id=order["id"],
        sent=len(report["sent"]),
        failures=len(report["failures"]),
        missing_contact=report["missingContact"],
        admin_notified=report["adminNotified"],
    )
    return report


async def dispatch_order_notification(order_id: str) -> Optional[Dict[str, Any]]:
    """
    Claim the outbox row for an order and run the fan-out once.
    Runs after the webhook response; never raises.
    """
    if not email_configured():
        logger.info("notifications_skipped", order_id=order_id, reason="RESEND_API_KEY missing")
        return None
    try:
        claim = await orders_db.claim_notification(order_id)
        if claim is None:
            logger.info("notification_already_dispatched", order_id=order_id)
            return None
        order = await orders_db.load_order(order_id)
    except _DB_ERRORS as e:
        logger.error("notification_dispatch_failed", order_id=order_id, error=str(e))
        return None
    if order is None:
        logger.warning("notification_order_missing", order_id=order_id)
        return None
    return await fan_out(order, claim["missing"])


async def flush_pending(limit: int = 50) -> List[Dict[str, Any]]:
    """Dispatch outbox rows left behind (crash, email provider not configured at the time)."""
    reports = []
    for order_id in await orders_db.pending_notifications(limit):
        report = await dispatch_order_notification(order_id)
        if report is not None:
            reports.append(report)
    return reports


_SHIPPING_INTROS = {
    ShippingStatus.PACKING: "Ta commande est en préparation dans notre atelier.",
    ShippingStatus.SHIPPED: (
        "Bonne nouvelle ! Ton colis a été remis aux services postaux et est désormais en route. "
        "Compte généralement 2 à 4 jours ouvrés pour la livraison."
    ),
    ShippingStatus.DELIVERED: (
        "Merci pour ta patience : la livraison est indiquée comme effectuée. "
        "Si tu n'as rien reçu, réponds simplement à cet email."
    ),
}


async def send_shipping_update(order: Dict[str, Any], status: str) -> bool:
    """Tell the buyer their order moved to `status`. Returns True when an email went out."""
    email = (order.get("email") or "").strip()
    if not email:
        return False
    if not email_configured():
        logger.info("shipping_email_skipped", order_id=order["id"], reason="RESEND_API_KEY missing")
        return False

    label = shipping_label(status)
    try:
        intro = _SHIPPING_INTROS[ShippingStatus(status)]
    except (KeyError, ValueError):
        intro = f"Le statut de ta commande a été mis à jour : {label}."

    tracking = order.get("tracking_url")
    if tracking:
        tracking_html = f'<p>Suivre le colis : <a href="{escape(tracking)}">{escape(tracking)}</a></p>'
    else:
        tracking_html = "<p>Nous t'écrirons dès qu'un numéro de suivi sera disponible.</p>"

    html = (
        f"<h2>Commande — {escape(label)}</h2>"
        f"<p>Bonjour,</p><p>{escape(intro)}</p>"
        f"<p>Référence commande : <strong>{escape(order['id'])}</strong><br>"
        f"Statut actuel : <strong>{escape(label)}</strong></p>"
        f"{tracking_html}"
        f"<p>Besoin d'aide ? Écris-nous sur "
        f'<a href="mailto:{escape(settings.contact_email)}">{escape(settings.contact_email)}</a>.</p>'
    )
    err = await _safe_send(email, f"Commande {order['id']} — {label}", html)
    if err is None:
        logger.info("shipping_email_sent", order_id=order["id"], status=status)
    return err is None
