"""
Checkout routes:
- POST /checkout/{product_id}: create a hosted payment session (member, guest or anonymous)
- GET  /checkout/session/{session_id}: order + product snapshot after redirect
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from marketplace.models.schemas import ShippingAddress, User
from marketplace.services.auth import get_optional_user
from marketplace.services.checkout_service import CheckoutService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/checkout")


class ShippingAddressBody(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip: Optional[str] = None
    country: Optional[str] = None


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    email: Optional[str] = None
    password: Optional[str] = None
    # client-supplied, not re-priced server side
    shipping_cents: Optional[int] = Field(default=None, ge=0, alias="shippingCents")
    shipping_address: Optional[ShippingAddressBody] = Field(
        default=None, alias="shippingAddress"
    )


@router.post("/{product_id}")
async def create_checkout(
    product_id: int,
    body: Optional[CheckoutRequest] = None,
    user: Optional[User] = Depends(get_optional_user),
):
    body = body or CheckoutRequest()
    address = (
        ShippingAddress(**body.shipping_address.model_dump())
        if body.shipping_address
        else None
    )
    return CheckoutService().create_checkout(
        product_id,
        user=user,
        email=body.email,
        password=body.password,
        shipping_cents=body.shipping_cents,
        shipping_address=address,
    )


@router.get("/session/{session_id}")
async def get_checkout_session(session_id: str):
    return CheckoutService().get_checkout_session(session_id)
