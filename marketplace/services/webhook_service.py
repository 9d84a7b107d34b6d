"""
Settlement webhook processing.

Handlers are replay-safe: every status change is a conditional UPDATE guarded by
status = 'PENDING', so duplicate or out-of-order deliveries are no-ops and a PAID
row never regresses.

Events:
- checkout.session.completed: order PENDING -> PAID; steward claim PENDING -> PAID
  (or REFUND_REQUIRED when it no longer holds the listing)
- checkout.session.expired / async_payment_failed: PENDING -> FAILED
- account.updated: non-destructive seller business-profile enrichment
"""

import logging
import sqlite3
from datetime import datetime

import stripe

from marketplace.database import get_db
from marketplace.models.schemas import (
    CLAIM_REFUND_REQUIRED,
    ORDER_FAILED,
    ORDER_PAID,
    ORDER_PENDING,
)
from marketplace.services.catalog_service import get_seller_by_stripe_account
from marketplace.services.notification_service import notify_seller_back_online
from marketplace.services.stripe_client import (
    create_chapter_donation_transfer,
    get_account_business_profile,
)

logger = logging.getLogger(__name__)

STEWARD_CLAIM = "steward_claim"

# seller column -> business profile attribute / address key
_PROFILE_FIELDS = {
    "business_name": "business_name",
    "business_email": "business_email",
    "website": "website",
    "tax_id": "tax_id",
    "business_phone": "business_phone",
    "stripe_account_type": "account_type",
}
_ADDRESS_FIELDS = {
    "business_address_line1": "line1",
    "business_address_line2": "line2",
    "business_city": "city",
    "business_state": "state",
    "business_postal_code": "postal_code",
    "business_country": "country",
}


def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ""


class WebhookService:
    """Applies verified payment-processor events to local state."""

    def handle_event(self, event) -> None:
        """Dispatch one verified event. Unknown event types are ignored."""
        event_type = event["type"]
        obj = event["data"]["object"]

        if event_type == "checkout.session.completed":
            self.handle_session_completed(obj)
        elif event_type in ("checkout.session.expired", "checkout.session.async_payment_failed"):
            self.handle_session_failed(obj)
        elif event_type == "account.updated":
            self.handle_account_updated(obj)
        else:
            logger.debug("Ignoring webhook event %s", event_type)

    # ── Payment completion ────────────────────────────────

    @staticmethod
    def _metadata(session) -> dict:
        return dict(session.get("metadata") or {})

    def handle_session_completed(self, session) -> bool:
        """Returns True when this delivery performed the PENDING -> PAID transition."""
        if self._metadata(session).get("type") == STEWARD_CLAIM:
            return self._complete_steward_claim(session)
        return self._complete_order(session)

    def _complete_order(self, session) -> bool:
        session_id = session["id"]
        customer_email = (session.get("customer_details") or {}).get("email")
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            cursor = db.execute(
                """UPDATE orders
                   SET status = ?, paid_at = ?,
                       buyer_email = COALESCE(buyer_email, ?)
                   WHERE stripe_session_id = ? AND status = ?""",
                (ORDER_PAID, now, customer_email, session_id, ORDER_PENDING),
            )
            db.commit()
            transitioned = cursor.rowcount == 1
        finally:
            db.close()

        if transitioned:
            logger.info("Order for session %s marked as PAID", session_id)
        else:
            logger.info("No PENDING order for session %s, nothing to do", session_id)
        return transitioned

    def _complete_steward_claim(self, session) -> bool:
        """
        PENDING -> PAID only for the listing's current claimant and only while no
        other claim on the listing is PAID. A paid session that fails either check is
        marked REFUND_REQUIRED and moves no money.
        """
        session_id = session["id"]
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")

        db = get_db()
        try:
            db.execute("BEGIN IMMEDIATE")
            cursor = db.execute(
                """UPDATE steward_claims SET status = ?, paid_at = ?
                   WHERE stripe_session_id = ? AND status = ?
                     AND claimant_fraternity_member_id = (
                         SELECT l.claimed_by_fraternity_member_id
                         FROM steward_listings l
                         WHERE l.id = steward_claims.listing_id
                     )
                     AND NOT EXISTS (
                         SELECT 1 FROM steward_claims p
                         WHERE p.listing_id = steward_claims.listing_id AND p.status = ?
                     )""",
                (ORDER_PAID, now, session_id, ORDER_PENDING, ORDER_PAID),
            )
            transitioned = cursor.rowcount == 1
            rejected = False
            if not transitioned:
                cursor = db.execute(
                    """UPDATE steward_claims SET status = ?, paid_at = ?
                       WHERE stripe_session_id = ? AND status = ?""",
                    (CLAIM_REFUND_REQUIRED, now, session_id, ORDER_PENDING),
                )
                rejected = cursor.rowcount == 1
            db.commit()
        except sqlite3.Error:
            db.rollback()
            raise
        finally:
            db.close()

        if rejected:
            logger.error(
                "Steward claim for session %s paid but does not hold the listing, "
                "marked %s", session_id, CLAIM_REFUND_REQUIRED,
            )
            return False
        if not transitioned:
            logger.info("No PENDING steward claim for session %s, nothing to do", session_id)
            return False

        logger.info("Steward claim for session %s marked as PAID", session_id)
        self._transfer_chapter_donation(session)
        return True

    def _transfer_chapter_donation(self, session) -> None:
        """Forward the earmarked donation to the chapter. Failures are logged only."""
        metadata = self._metadata(session)
        session_id = session["id"]
        chapter_account_id = metadata.get("chapter_account_id")
        try:
            donation_cents = int(metadata.get("chapter_donation_cents") or 0)
        except ValueError:
            donation_cents = 0

        if donation_cents <= 0 or not chapter_account_id:
            return

        try:
            transfer = create_chapter_donation_transfer(
                donation_cents, chapter_account_id, session_id, metadata.get("listing_id")
            )
        except stripe.StripeError as e:
            logger.error(
                "Chapter donation transfer failed for session %s (%d cents to %s): %s",
                session_id, donation_cents, chapter_account_id, e,
            )
            return

        db = get_db()
        try:
            db.execute(
                "UPDATE steward_claims SET chapter_transfer_id = ? WHERE stripe_session_id = ?",
                (transfer.id, session_id),
            )
            db.commit()
        finally:
            db.close()
        logger.info(
            "Chapter donation %d cents transferred to %s (transfer %s)",
            donation_cents, chapter_account_id, transfer.id,
        )

    # ── Payment failure ───────────────────────────────────

    def handle_session_failed(self, session) -> bool:
        session_id = session["id"]
        table = (
            "steward_claims"
            if self._metadata(session).get("type") == STEWARD_CLAIM
            else "orders"
        )
        db = get_db()
        try:
            cursor = db.execute(
                f"UPDATE {table} SET status = ? WHERE stripe_session_id = ? AND status = ?",
                (ORDER_FAILED, session_id, ORDER_PENDING),
            )
            db.commit()
            failed = cursor.rowcount == 1
        finally:
            db.close()

        if failed:
            logger.info("%s row for session %s marked as FAILED", table, session_id)
        return failed

    # ── Merchant account updates ──────────────────────────

    def handle_account_updated(self, account) -> list[str]:
        """
        Fill empty seller business fields from the processor's profile.

        Never overwrites populated fields. Errors are logged and swallowed.

        Returns:
            Names of the columns that were filled.
        """
        account_id = account["id"]
        try:
            seller = get_seller_by_stripe_account(account_id)
            if not seller:
                return []

            if account.get("charges_enabled"):
                notify_seller_back_online(seller.id)

            profile = get_account_business_profile(account_id)
            updates = {}
            for column, attr in _PROFILE_FIELDS.items():
                value = getattr(profile, attr)
                if value and _is_blank(getattr(seller, column)):
                    updates[column] = value
            for column, key in _ADDRESS_FIELDS.items():
                value = profile.address.get(key)
                if value and _is_blank(getattr(seller, column)):
                    updates[column] = value

            if not updates:
                return []

            now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
            # re-checked in SQL so a concurrent operator edit is never overwritten
            assignments = ", ".join(
                f"{column} = CASE WHEN {column} IS NULL OR trim({column}) = '' "
                f"THEN ? ELSE {column} END"
                for column in updates
            )
            db = get_db()
            try:
                db.execute(
                    f"UPDATE sellers SET {assignments}, updated_at = ? WHERE id = ?",
                    (*updates.values(), now, seller.id),
                )
                db.commit()
            finally:
                db.close()

            logger.info(
                "Synced business details for seller %d from account %s: %s",
                seller.id, account_id, ", ".join(updates),
            )
            return list(updates)
        except Exception as e:
            logger.error("Error processing account.updated for %s: %s", account_id, e)
            return []
