"""
Admin routes: steward platform-fee settings.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from marketplace.models.schemas import User
from marketplace.services.auth import require_admin
from marketplace.services.errors import InvalidRequestError
from marketplace.services.platform_config import (
    PlatformConfigError,
    STEWARD_FEE_FLAT_CENTS_KEY,
    STEWARD_FEE_PERCENTAGE_KEY,
    get_steward_fee_settings,
    update_steward_fee_settings,
)

router = APIRouter(prefix="/admin")


class PlatformSettingsRequest(BaseModel):
    steward_platform_fee_percentage: Optional[str] = None
    steward_platform_fee_flat_cents: Optional[str] = None


@router.get("/platform-settings")
async def get_platform_settings(admin: User = Depends(require_admin)):
    return {"settings": get_steward_fee_settings()}


@router.put("/platform-settings")
async def put_platform_settings(
    body: PlatformSettingsRequest, admin: User = Depends(require_admin)
):
    """Only fields present in the request body are written; "" clears a setting."""
    sent = body.model_dump(exclude_unset=True)
    values = {
        key: sent[key]
        for key in (STEWARD_FEE_PERCENTAGE_KEY, STEWARD_FEE_FLAT_CENTS_KEY)
        if key in sent
    }
    try:
        settings = update_steward_fee_settings(values)
    except PlatformConfigError as e:
        raise InvalidRequestError(str(e))
    return {"settings": settings}
