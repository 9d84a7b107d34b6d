"""
Payment-processor (Stripe Connect) calls used by checkout and settlement.

Charges are created on the platform account and transferred to the connected
account of the seller or steward; the platform share is an application fee.
"""

import logging
import os
from typing import Optional

import stripe
from dotenv import load_dotenv

from marketplace.models.schemas import BusinessProfile
from marketplace.services.fee_policy import product_application_fee

load_dotenv()

logger = logging.getLogger(__name__)

CURRENCY = "usd"

stripe.api_key = os.getenv("STRIPE_SECRET_KEY")
if stripe.api_key and not stripe.api_key.startswith(("sk_", "rk_")):
    logger.error("STRIPE_SECRET_KEY does not look like a secret key (expected sk_...)")


def _frontend_url() -> str:
    return os.getenv("FRONTEND_URL", "http://localhost:3000").rstrip("/")


def _line_item(name: str, amount_cents: int) -> dict:
    return {
        "price_data": {
            "currency": CURRENCY,
            "product_data": {"name": name},
            "unit_amount": amount_cents,
        },
        "quantity": 1,
    }


def create_product_checkout_session(
    product_id: int,
    product_name: str,
    price_cents: int,
    shipping_cents: int,
    connected_account_id: str,
    buyer_email: Optional[str] = None,
    chapter_id: Optional[int] = None,
):
    """
    Hosted checkout for a direct product purchase.

    The seller's account receives the total minus an application fee of 8% of the
    item price (shipping carries no fee).
    """
    line_items = [_line_item(product_name, price_cents)]
    if shipping_cents > 0:
        line_items.append(_line_item("Shipping", shipping_cents))

    params = {
        "payment_method_types": ["card"],
        "line_items": line_items,
        "mode": "payment",
        "payment_intent_data": {
            "application_fee_amount": product_application_fee(price_cents),
            "on_behalf_of": connected_account_id,
            "transfer_data": {"destination": connected_account_id},
        },
        "success_url": f"{_frontend_url()}/success?session_id={{CHECKOUT_SESSION_ID}}",
        "cancel_url": f"{_frontend_url()}/cancel",
        "metadata": {
            "type": "product_order",
            "product_id": str(product_id),
            "chapter_id": str(chapter_id) if chapter_id else "",
        },
    }
    if buyer_email:
        params["customer_email"] = buyer_email

    return stripe.checkout.Session.create(**params)


def create_steward_checkout_session(
    listing_id: int,
    listing_name: str,
    shipping_cents: int,
    platform_fee_cents: int,
    chapter_donation_cents: int,
    steward_account_id: str,
    chapter_account_id: str,
    buyer_email: Optional[str] = None,
):
    """
    Hosted checkout for a steward claim.

    Only the shipping amount is transferred to the steward. Fee and donation stay
    with the platform; the donation is earmarked in metadata and transferred to the
    chapter once the payment settles.
    """
    line_items = []
    if shipping_cents > 0:
        line_items.append(_line_item("Shipping", shipping_cents))
    if platform_fee_cents > 0:
        line_items.append(_line_item("Platform Fee", platform_fee_cents))
    if chapter_donation_cents > 0:
        line_items.append(_line_item("Chapter Donation", chapter_donation_cents))

    params = {
        "payment_method_types": ["card"],
        "line_items": line_items,
        "mode": "payment",
        "payment_intent_data": {
            "on_behalf_of": steward_account_id,
            "application_fee_amount": platform_fee_cents + chapter_donation_cents,
            "transfer_data": {
                "destination": steward_account_id,
                "amount": shipping_cents,
            },
        },
        "success_url": (
            f"{_frontend_url()}/steward-checkout/{listing_id}/success"
            "?session_id={CHECKOUT_SESSION_ID}"
        ),
        "cancel_url": f"{_frontend_url()}/steward-listing/{listing_id}",
        "metadata": {
            "type": "steward_claim",
            "listing_id": str(listing_id),
            "steward_account_id": steward_account_id,
            "chapter_account_id": chapter_account_id,
            "chapter_donation_cents": str(chapter_donation_cents),
            "shipping_cents": str(shipping_cents),
        },
    }
    if buyer_email:
        params["customer_email"] = buyer_email

    return stripe.checkout.Session.create(**params)


def verify_webhook_signature(payload: bytes, signature: str, secret: str):
    """
    Verify and parse a webhook payload.

    Raises:
        ValueError: payload is not valid JSON.
        stripe.SignatureVerificationError: signature does not match.
    """
    return stripe.Webhook.construct_event(payload, signature, secret)


def create_chapter_donation_transfer(
    amount_cents: int,
    chapter_account_id: str,
    session_id: str,
    listing_id: Optional[str] = None,
):
    """Move an earmarked chapter donation from the platform balance to the chapter."""
    return stripe.Transfer.create(
        amount=amount_cents,
        currency=CURRENCY,
        destination=chapter_account_id,
        transfer_group=f"steward_claim_{session_id}",
        metadata={
            "type": "chapter_donation",
            "checkout_session_id": session_id,
            "listing_id": listing_id or "",
        },
        idempotency_key=f"chapter-donation-{session_id}",
    )


def business_profile_from_account(account) -> BusinessProfile:
    """
    Extract business details from a connected-account object.

    Name preference: business_profile.name, company.name, individual full name.
    Only the last four SSN digits are kept for individuals.
    """
    profile = account.get("business_profile") or {}
    company = account.get("company") or {}
    individual = account.get("individual") or {}

    account_type = None
    if company.get("name") or company.get("tax_id"):
        account_type = "company"
    elif individual.get("first_name") or individual.get("last_name"):
        account_type = "individual"

    business_name = profile.get("name") or company.get("name")
    if not business_name:
        full_name = " ".join(
            part for part in (individual.get("first_name"), individual.get("last_name")) if part
        )
        business_name = full_name or None

    tax_id = company.get("tax_id")
    if not tax_id and individual.get("ssn_last_4"):
        tax_id = f"***-**-{individual.get('ssn_last_4')}"

    address = company.get("address") or individual.get("address") or {}

    return BusinessProfile(
        business_name=business_name,
        business_email=profile.get("support_email") or account.get("email"),
        website=profile.get("url"),
        tax_id=tax_id,
        business_phone=profile.get("support_phone"),
        account_type=account_type,
        address={
            key: address.get(key)
            for key in ("line1", "line2", "city", "state", "postal_code", "country")
        },
    )


def get_account_business_profile(account_id: str) -> BusinessProfile:
    """Fetch the processor's current view of a merchant's business profile."""
    account = stripe.Account.retrieve(account_id)
    return business_profile_from_account(account)
