"""
Data models / type definitions shared across modules.
Plain dataclasses, no ORM.
"""

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Optional


ORDER_PENDING = "PENDING"
ORDER_PAID = "PAID"
ORDER_FAILED = "FAILED"
# paid, but the listing went to another claim; funds must be returned
CLAIM_REFUND_REQUIRED = "REFUND_REQUIRED"

LISTING_ACTIVE = "ACTIVE"
LISTING_CLAIMED = "CLAIMED"
LISTING_REMOVED = "REMOVED"

SELLER_APPROVED = "APPROVED"
MEMBER_VERIFIED = "VERIFIED"

ROLE_GUEST = "GUEST"
ROLE_ADMIN = "ADMIN"


def from_row(cls, row):
    """Build a dataclass from a sqlite3.Row, ignoring columns the model does not declare."""
    if row is None:
        return None
    names = {f.name for f in fields(cls)}
    return cls(**{k: row[k] for k in row.keys() if k in names})


@dataclass
class User:
    id: int
    email: str
    role: str = ROLE_GUEST
    idp_subject: Optional[str] = None
    fraternity_member_id: Optional[int] = None
    seller_id: Optional[int] = None
    steward_id: Optional[int] = None
    created_at: Optional[datetime] = None


@dataclass
class FraternityMember:
    id: int
    email: str
    name: Optional[str] = None
    chapter_id: Optional[int] = None
    verification_status: str = "PENDING"


@dataclass
class Chapter:
    id: int
    name: str
    type: str = "COLLEGIATE"
    status: str = "ACTIVE"
    stripe_account_id: Optional[str] = None


@dataclass
class Seller:
    id: int
    email: str
    name: str
    status: str = "PENDING"
    stripe_account_id: Optional[str] = None
    sponsoring_chapter_id: Optional[int] = None
    business_name: Optional[str] = None
    business_email: Optional[str] = None
    business_phone: Optional[str] = None
    website: Optional[str] = None
    tax_id: Optional[str] = None
    stripe_account_type: Optional[str] = None
    business_address_line1: Optional[str] = None
    business_address_line2: Optional[str] = None
    business_city: Optional[str] = None
    business_state: Optional[str] = None
    business_postal_code: Optional[str] = None
    business_country: Optional[str] = None


@dataclass
class Product:
    id: int
    seller_id: int
    name: str
    price_cents: int
    description: Optional[str] = None
    is_kappa_branded: int = 0
    image_url: Optional[str] = None


@dataclass
class Steward:
    id: int
    fraternity_member_id: int
    sponsoring_chapter_id: Optional[int] = None
    status: str = "PENDING"
    stripe_account_id: Optional[str] = None


@dataclass
class StewardListing:
    id: int
    steward_id: int
    name: str
    sponsoring_chapter_id: int
    shipping_cost_cents: int = 0
    chapter_donation_cents: int = 0
    description: Optional[str] = None
    status: str = LISTING_ACTIVE
    claimed_by_fraternity_member_id: Optional[int] = None
    claimed_at: Optional[datetime] = None


@dataclass
class Order:
    id: int
    product_id: int
    amount_cents: int
    stripe_session_id: str
    buyer_user_id: Optional[int] = None
    buyer_email: Optional[str] = None
    shipping_cents: int = 0
    chapter_id: Optional[int] = None
    shipping_street: Optional[str] = None
    shipping_city: Optional[str] = None
    shipping_state: Optional[str] = None
    shipping_zip: Optional[str] = None
    shipping_country: Optional[str] = None
    status: str = ORDER_PENDING
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


@dataclass
class StewardClaim:
    id: int
    listing_id: int
    claimant_fraternity_member_id: int
    stripe_session_id: str
    total_amount_cents: int
    shipping_cents: int
    platform_fee_cents: int
    chapter_donation_cents: int
    status: str = ORDER_PENDING
    chapter_transfer_id: Optional[str] = None
    created_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None


@dataclass
class ShippingAddress:
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


@dataclass
class BusinessProfile:
    """Merchant business details as reported by the payment processor."""
    business_name: Optional[str] = None
    business_email: Optional[str] = None
    website: Optional[str] = None
    tax_id: Optional[str] = None
    business_phone: Optional[str] = None
    account_type: Optional[str] = None
    address: dict = field(default_factory=dict)
