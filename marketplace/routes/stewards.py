"""
Steward listing routes:
- POST /claims/{listing_id}: atomic claim by a verified member
- POST /steward-checkout/{listing_id}: payment session for a claim
- POST /steward-listings/{listing_id}/withdraw: owning steward removes an ACTIVE listing
"""

from fastapi import APIRouter, Depends

from marketplace.models.schemas import User
from marketplace.services.auth import get_current_user, require_verified_member
from marketplace.services.steward_service import ClaimService, listing_to_dict

router = APIRouter()


@router.post("/claims/{listing_id}")
async def claim_listing(listing_id: int, user: User = Depends(require_verified_member)):
    claimed = ClaimService().claim(listing_id, user)
    return {"success": True, "claim": listing_to_dict(claimed)}


@router.post("/steward-checkout/{listing_id}")
async def steward_checkout(listing_id: int, user: User = Depends(require_verified_member)):
    return ClaimService().create_claim_checkout(listing_id, user)


@router.post("/steward-listings/{listing_id}/withdraw")
async def withdraw_listing(listing_id: int, user: User = Depends(get_current_user)):
    removed = ClaimService().withdraw(listing_id, user)
    return {"success": True, "listing": listing_to_dict(removed)}
