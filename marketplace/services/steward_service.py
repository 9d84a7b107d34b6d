"""
Steward listings: the atomic claim primitive, withdrawal, and the claim checkout.

The claim is a single conditional UPDATE guarded by status = 'ACTIVE'; it is the
only point that decides the winner among concurrent claimants. No read-then-write.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Optional

import stripe

from marketplace.database import get_db
from marketplace.models.schemas import (
    LISTING_ACTIVE,
    LISTING_CLAIMED,
    LISTING_REMOVED,
    ORDER_PAID,
    ORDER_PENDING,
    StewardListing,
    User,
    from_row,
)
from marketplace.services.catalog_service import get_chapter, get_listing, get_steward
from marketplace.services.errors import (
    ClaimConflictError,
    NotFoundError,
    PayoutNotReadyError,
    PermissionDeniedError,
    StateConflictError,
    UpstreamError,
)
from marketplace.services.fee_policy import calculate_steward_platform_fee
from marketplace.services.stripe_client import create_steward_checkout_session

logger = logging.getLogger(__name__)


def claim_listing(listing_id: int, member_id: int) -> Optional[StewardListing]:
    """
    Compare-and-swap ACTIVE -> CLAIMED for one member.

    Returns:
        The claimed listing, or None when the listing was not ACTIVE at write time.
    """
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    db = get_db()
    try:
        db.execute("BEGIN IMMEDIATE")
        cursor = db.execute(
            """UPDATE steward_listings
               SET status = ?, claimed_by_fraternity_member_id = ?,
                   claimed_at = ?, updated_at = ?
               WHERE id = ? AND status = ?""",
            (LISTING_CLAIMED, member_id, now, now, listing_id, LISTING_ACTIVE),
        )
        if cursor.rowcount != 1:
            db.rollback()
            return None
        row = db.execute(
            "SELECT * FROM steward_listings WHERE id = ?", (listing_id,)
        ).fetchone()
        db.commit()
    except sqlite3.Error:
        db.rollback()
        raise
    finally:
        db.close()

    logger.info("Listing %d claimed by member %d", listing_id, member_id)
    return from_row(StewardListing, row)


def withdraw_listing(listing_id: int, steward_id: int) -> Optional[StewardListing]:
    """
    Owning steward takes an ACTIVE listing off the market (ACTIVE -> REMOVED).

    Returns:
        The removed listing, or None when it is not ACTIVE or not owned by steward_id.
    """
    now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
    db = get_db()
    try:
        cursor = db.execute(
            """UPDATE steward_listings SET status = ?, updated_at = ?
               WHERE id = ? AND steward_id = ? AND status = ?""",
            (LISTING_REMOVED, now, listing_id, steward_id, LISTING_ACTIVE),
        )
        db.commit()
        if cursor.rowcount != 1:
            return None
        row = db.execute(
            "SELECT * FROM steward_listings WHERE id = ?", (listing_id,)
        ).fetchone()
    finally:
        db.close()

    logger.info("Listing %d withdrawn by steward %d", listing_id, steward_id)
    return from_row(StewardListing, row)


def listing_to_dict(listing: StewardListing) -> dict:
    return {
        "id": listing.id,
        "steward_id": listing.steward_id,
        "name": listing.name,
        "description": listing.description,
        "shipping_cost_cents": listing.shipping_cost_cents,
        "chapter_donation_cents": listing.chapter_donation_cents,
        "sponsoring_chapter_id": listing.sponsoring_chapter_id,
        "status": listing.status,
        "claimed_by_fraternity_member_id": listing.claimed_by_fraternity_member_id,
        "claimed_at": listing.claimed_at,
    }


class ClaimService:
    """Claim a listing and open its multi-party payment session."""

    def claim(self, listing_id: int, user: User) -> StewardListing:
        """
        Raises:
            NotFoundError: listing does not exist.
            ClaimConflictError: someone else (or this member) already holds it.
        """
        listing = get_listing(listing_id)
        if not listing:
            raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")

        claimed = claim_listing(listing_id, user.fraternity_member_id)
        if claimed is None:
            raise ClaimConflictError(
                "This listing has already been claimed or is no longer available"
            )
        return claimed

    def withdraw(self, listing_id: int, user: User) -> StewardListing:
        listing = get_listing(listing_id)
        if not listing:
            raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")
        if not user.steward_id or user.steward_id != listing.steward_id:
            raise PermissionDeniedError(
                "Only the steward who listed this item can withdraw it",
                code="NOT_STEWARD_OWNER",
            )

        removed = withdraw_listing(listing_id, user.steward_id)
        if removed is None:
            raise ClaimConflictError(
                "Only active listings can be withdrawn",
                error="Listing not withdrawable",
            )
        return removed

    @staticmethod
    def _has_paid_claim(listing_id: int) -> bool:
        db = get_db()
        try:
            row = db.execute(
                "SELECT 1 FROM steward_claims WHERE listing_id = ? AND status = ?",
                (listing_id, ORDER_PAID),
            ).fetchone()
            return row is not None
        finally:
            db.close()

    def create_claim_checkout(self, listing_id: int, user: User) -> dict:
        """
        Open the payment session for a claim: shipping to the steward, fee and
        donation retained by the platform, donation earmarked for the chapter.

        An ACTIVE listing is claimed for the caller first; a CLAIMED listing only
        re-issues a session to its claimant.

        Returns:
            {"sessionId": ..., "url": ...}
        """
        listing = get_listing(listing_id)
        if not listing:
            raise NotFoundError("Listing not found", code="LISTING_NOT_FOUND")

        if listing.status not in (LISTING_ACTIVE, LISTING_CLAIMED):
            raise StateConflictError(
                "Listing is not available for claiming", code="LISTING_NOT_AVAILABLE"
            )
        if (
            listing.status == LISTING_CLAIMED
            and listing.claimed_by_fraternity_member_id != user.fraternity_member_id
        ):
            raise ClaimConflictError("This listing has already been claimed by another member")
        if self._has_paid_claim(listing.id):
            raise ClaimConflictError(
                "This listing has already been paid for", code="LISTING_ALREADY_PAID"
            )

        chapter = get_chapter(listing.sponsoring_chapter_id)
        if not chapter:
            raise NotFoundError("Chapter not found", code="CHAPTER_NOT_FOUND")
        if not chapter.stripe_account_id:
            raise PayoutNotReadyError(
                "Chapter Stripe account not set up. Please contact admin.",
                code="CHAPTER_STRIPE_NOT_CONNECTED",
            )

        steward = get_steward(listing.steward_id)
        if not steward:
            raise NotFoundError("Steward not found", code="STEWARD_NOT_FOUND")
        if not steward.stripe_account_id:
            raise PayoutNotReadyError(
                "Steward Stripe account not set up. Please contact admin.",
                code="STEWARD_STRIPE_NOT_CONNECTED",
            )

        # an ACTIVE listing is paid for only by the member who wins the atomic claim
        if listing.status == LISTING_ACTIVE:
            if claim_listing(listing.id, user.fraternity_member_id) is None:
                raise ClaimConflictError(
                    "This listing has already been claimed or is no longer available"
                )

        shipping = listing.shipping_cost_cents
        donation = listing.chapter_donation_cents
        platform_fee = calculate_steward_platform_fee(shipping, donation)
        total = shipping + platform_fee + donation

        try:
            session = create_steward_checkout_session(
                listing_id=listing.id,
                listing_name=listing.name,
                shipping_cents=shipping,
                platform_fee_cents=platform_fee,
                chapter_donation_cents=donation,
                steward_account_id=steward.stripe_account_id,
                chapter_account_id=chapter.stripe_account_id,
                buyer_email=user.email,
            )
        except stripe.StripeError as e:
            logger.error("Steward payment session failed for listing %d: %s", listing.id, e)
            raise UpstreamError(
                "The payment processor could not start checkout. Please try again.",
                detail=str(e),
            )

        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            db.execute(
                """INSERT INTO steward_claims
                   (listing_id, claimant_fraternity_member_id, stripe_session_id,
                    total_amount_cents, shipping_cents, platform_fee_cents,
                    chapter_donation_cents, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    listing.id, user.fraternity_member_id, session.id,
                    total, shipping, platform_fee, donation, ORDER_PENDING, now,
                ),
            )
            db.commit()
        except sqlite3.Error:
            db.rollback()
            raise
        finally:
            db.close()

        logger.info(
            "Steward checkout %s for listing %d: shipping=%d fee=%d donation=%d total=%d",
            session.id, listing.id, shipping, platform_fee, donation, total,
        )
        return {"sessionId": session.id, "url": session.url}
