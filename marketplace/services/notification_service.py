"""
Best-effort notifications.

notify() schedules a task on the running event loop and returns at once; the task
writes an in-app notification row and, when EMAIL_WEBHOOK_URL is configured, relays
the message by e-mail. Failures are logged inside the task and never reach the caller.
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Optional

import httpx

from marketplace.database import get_db
from marketplace.services.catalog_service import get_products_by_seller

logger = logging.getLogger(__name__)

SELLER_PAYOUT_SETUP_REQUIRED = "SELLER_PAYOUT_SETUP_REQUIRED"
PURCHASE_BLOCKED = "PURCHASE_BLOCKED"
ITEM_AVAILABLE = "ITEM_AVAILABLE"

_TEMPLATES = {
    SELLER_PAYOUT_SETUP_REQUIRED: (
        "Finish your payout setup",
        'A buyer tried to purchase "{product_name}", but your payout account is not '
        "connected yet. Complete your payment setup to start receiving orders.",
    ),
    PURCHASE_BLOCKED: (
        "Item temporarily unavailable",
        '"{product_name}" is paused while the seller finishes their payment setup. '
        "We will let you know when it is available.",
    ),
    ITEM_AVAILABLE: (
        "Item Now Available!",
        '"{product_name}" is now available for purchase! The seller has completed '
        "their payment setup.",
    ),
}

# strong references so pending tasks are not garbage collected
_pending_tasks: set[asyncio.Task] = set()


def render(kind: str, payload: dict) -> tuple[str, str]:
    title, template = _TEMPLATES.get(kind, (kind.replace("_", " ").title(), "{message}"))
    try:
        return title, template.format(**payload)
    except KeyError:
        return title, payload.get("message", title)


def create_notification(
    user_email: str,
    kind: str,
    title: str,
    message: str,
    related_product_id: Optional[int] = None,
) -> int:
    """Insert an in-app notification row and return its id."""
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    db = get_db()
    try:
        cursor = db.execute(
            """INSERT INTO notifications
               (user_email, type, title, message, related_product_id, created_at)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (user_email, kind, title, message, related_product_id, now),
        )
        db.commit()
        return cursor.lastrowid
    finally:
        db.close()


async def _send_email(recipient_email: str, title: str, message: str) -> None:
    url = os.getenv("EMAIL_WEBHOOK_URL")
    if not url:
        return
    async with httpx.AsyncClient(timeout=10.0) as client:
        resp = await client.post(
            url, json={"to": recipient_email, "subject": title, "text": message}
        )
        resp.raise_for_status()


async def deliver(recipient_email: str, kind: str, payload: dict) -> None:
    """Write and relay one notification; errors are logged, never raised."""
    title, message = render(kind, payload)
    try:
        create_notification(
            recipient_email, kind, title, message, payload.get("product_id")
        )
        await _send_email(recipient_email, title, message)
        logger.info("Notification %s sent to %s", kind, recipient_email)
    except Exception as e:
        logger.error("Notification %s to %s failed: %s", kind, recipient_email, e)


def notify(recipient_email: Optional[str], kind: str, payload: dict) -> None:
    """Fire-and-forget: schedule delivery without awaiting it."""
    if not recipient_email:
        return
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No event loop, notification %s to %s dropped", kind, recipient_email)
        return

    task = loop.create_task(deliver(recipient_email, kind, payload))
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)


def get_interested_users_for_product(product_id: int) -> list[str]:
    """Buyers blocked on this product who have not been told it is available again."""
    db = get_db()
    try:
        rows = db.execute(
            """SELECT DISTINCT b.user_email
               FROM notifications b
               WHERE b.type = ? AND b.related_product_id = ?
                 AND NOT EXISTS (
                     SELECT 1 FROM notifications a
                     WHERE a.type = ? AND a.related_product_id = b.related_product_id
                       AND a.user_email = b.user_email AND a.id > b.id
                 )
               ORDER BY b.user_email""",
            (PURCHASE_BLOCKED, product_id, ITEM_AVAILABLE),
        ).fetchall()
        return [row["user_email"] for row in rows]
    finally:
        db.close()


async def notify_interested_users_for_seller(seller_id: int) -> int:
    """Tell every blocked buyer that the seller's products can be bought again."""
    sent = 0
    try:
        for product in get_products_by_seller(seller_id):
            for email in get_interested_users_for_product(product.id):
                await deliver(
                    email,
                    ITEM_AVAILABLE,
                    {"product_id": product.id, "product_name": product.name},
                )
                sent += 1
    except Exception as e:
        logger.error("Notifying interested users for seller %d failed: %s", seller_id, e)
    return sent


def notify_seller_back_online(seller_id: int) -> None:
    """Fire-and-forget wrapper around notify_interested_users_for_seller."""
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No event loop, availability fan-out for seller %d dropped", seller_id)
        return

    task = loop.create_task(notify_interested_users_for_seller(seller_id))
    _pending_tasks.add(task)
    task.add_done_callback(_pending_tasks.discard)
