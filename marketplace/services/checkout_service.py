"""
Checkout session builder for direct product purchases.

Flow: resolve buyer -> eligibility gate -> seller / payout checks -> amount ->
hosted payment session -> persist PENDING order -> return session reference.
"""

import logging
import re
import sqlite3
from datetime import datetime
from typing import Optional

import stripe

from marketplace.database import get_db
from marketplace.models.schemas import (
    ORDER_PENDING,
    SELLER_APPROVED,
    Order,
    Product,
    ShippingAddress,
    User,
    from_row,
)
from marketplace.services.auth import is_verified_member
from marketplace.services.catalog_service import get_product, get_seller
from marketplace.services.errors import (
    AuthenticationRequiredError,
    InvalidRequestError,
    NotFoundError,
    PayoutNotReadyError,
    PermissionDeniedError,
    StateConflictError,
    UpstreamError,
)
from marketplace.services.guest_identity import GuestIdentityProvisioner
from marketplace.services.notification_service import (
    PURCHASE_BLOCKED,
    SELLER_PAYOUT_SETUP_REQUIRED,
    notify,
)
from marketplace.services.stripe_client import create_product_checkout_session

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


class CheckoutService:
    """Builds hosted payment sessions and their PENDING order rows."""

    def __init__(self, provisioner: Optional[GuestIdentityProvisioner] = None):
        self.provisioner = provisioner or GuestIdentityProvisioner()

    @staticmethod
    def _validate_guest_credentials(
        email: Optional[str], password: Optional[str]
    ) -> bool:
        """True when a complete guest credential pair was supplied."""
        email = (email or "").strip()
        password = password or ""
        if not email and not password:
            return False
        if not email or not password:
            raise InvalidRequestError(
                "Email and password must be provided together for guest checkout"
            )
        if not _EMAIL_RE.match(email):
            raise InvalidRequestError("Invalid email address")
        return True

    def _resolve_buyer(
        self,
        product: Product,
        user: Optional[User],
        email: Optional[str],
        password: Optional[str],
    ) -> Optional[User]:
        if user is not None:
            if product.is_kappa_branded and not is_verified_member(user):
                raise PermissionDeniedError(
                    "Kappa branded merchandise is available to verified members only",
                    code="MEMBER_NOT_VERIFIED",
                )
            return user

        has_guest_credentials = self._validate_guest_credentials(email, password)

        # branded merchandise never goes through guest provisioning
        if product.is_kappa_branded:
            raise AuthenticationRequiredError(
                "Please sign in as a verified member to purchase Kappa branded merchandise",
                code="AUTH_REQUIRED_FOR_KAPPA_BRANDED",
            )

        if has_guest_credentials:
            return self.provisioner.resolve(email, password)

        return None

    def create_checkout(
        self,
        product_id: int,
        user: Optional[User] = None,
        email: Optional[str] = None,
        password: Optional[str] = None,
        shipping_cents: Optional[int] = None,
        shipping_address: Optional[ShippingAddress] = None,
    ) -> dict:
        """
        Create a hosted payment session for one product.

        Returns:
            {"sessionId": ..., "url": ...}

        Raises:
            MarketplaceError subclasses for every rejected request.
        """
        product = get_product(product_id)
        if not product:
            raise NotFoundError("Product not found", code="PRODUCT_NOT_FOUND")

        shipping_cents = shipping_cents or 0
        if shipping_cents < 0:
            raise InvalidRequestError("Shipping cannot be negative")

        buyer = self._resolve_buyer(product, user, email, password)

        if not product.price_cents or product.price_cents <= 0:
            raise StateConflictError(
                "This product does not have a valid price", code="INVALID_PRICE"
            )

        seller = get_seller(product.seller_id)
        if not seller or seller.status != SELLER_APPROVED:
            raise StateConflictError(
                "This seller is not currently approved to sell",
                code="SELLER_NOT_APPROVED",
            )

        if not seller.stripe_account_id:
            logger.warning(
                "Checkout blocked, seller %d has no payout account (product %d)",
                seller.id, product.id,
            )
            payload = {"product_id": product.id, "product_name": product.name}
            notify(seller.email, SELLER_PAYOUT_SETUP_REQUIRED, payload)
            notify(buyer.email if buyer else None, PURCHASE_BLOCKED, payload)
            raise PayoutNotReadyError(
                "This item is temporarily unavailable while the seller finishes "
                "setting up payments. We have notified the seller."
            )

        amount_cents = product.price_cents + shipping_cents
        chapter_id = seller.sponsoring_chapter_id
        buyer_email = buyer.email if buyer else None

        try:
            session = create_product_checkout_session(
                product_id=product.id,
                product_name=product.name,
                price_cents=product.price_cents,
                shipping_cents=shipping_cents,
                connected_account_id=seller.stripe_account_id,
                buyer_email=buyer_email,
                chapter_id=chapter_id,
            )
        except stripe.StripeError as e:
            logger.error("Payment session creation failed for product %d: %s", product.id, e)
            raise UpstreamError(
                "The payment processor could not start checkout. Please try again.",
                detail=str(e),
            )

        address = shipping_address or ShippingAddress()
        self._create_order(
            product_id=product.id,
            buyer=buyer,
            amount_cents=amount_cents,
            shipping_cents=shipping_cents,
            session_id=session.id,
            chapter_id=chapter_id,
            address=address,
        )
        logger.info(
            "Checkout session %s created: product=%d amount=%d buyer=%s",
            session.id, product.id, amount_cents, buyer.id if buyer else None,
        )

        return {"sessionId": session.id, "url": session.url}

    def _create_order(
        self,
        product_id: int,
        buyer: Optional[User],
        amount_cents: int,
        shipping_cents: int,
        session_id: str,
        chapter_id: Optional[int],
        address: ShippingAddress,
    ) -> int:
        now = datetime.now().strftime("%Y-%m-%d %H:%M:%S")
        db = get_db()
        try:
            cursor = db.execute(
                """INSERT INTO orders
                   (product_id, buyer_user_id, buyer_email, amount_cents, shipping_cents,
                    stripe_session_id, chapter_id, shipping_street, shipping_city,
                    shipping_state, shipping_zip, shipping_country, status, created_at)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (
                    product_id,
                    buyer.id if buyer else None,
                    buyer.email if buyer else None,
                    amount_cents, shipping_cents, session_id, chapter_id,
                    address.street, address.city, address.state,
                    address.zip, address.country,
                    ORDER_PENDING, now,
                ),
            )
            db.commit()
            return cursor.lastrowid
        except sqlite3.Error:
            db.rollback()
            raise
        finally:
            db.close()

    def get_checkout_session(self, session_id: str) -> dict:
        """
        Order and product snapshot for the post-payment landing page.

        Raises:
            NotFoundError: no order for this session.
        """
        db = get_db()
        try:
            order_row = db.execute(
                "SELECT * FROM orders WHERE stripe_session_id = ?", (session_id,)
            ).fetchone()
        finally:
            db.close()

        if not order_row:
            raise NotFoundError("Order not found", code="ORDER_NOT_FOUND")

        order = from_row(Order, order_row)
        product = get_product(order.product_id)
        return {
            "order": {
                "id": order.id,
                "status": order.status,
                "amount_cents": order.amount_cents,
                "shipping_cents": order.shipping_cents,
                "buyer_email": order.buyer_email,
                "created_at": order.created_at,
                "paid_at": order.paid_at,
            },
            "product": {
                "id": product.id,
                "name": product.name,
                "price_cents": product.price_cents,
                "image_url": product.image_url,
                "is_kappa_branded": bool(product.is_kappa_branded),
            } if product else None,
        }
