"""
EV Dealer Hub - Routes Payouts
Dealer commission payouts: ledger, creation (admin), status (admin).
"""

from fastapi import APIRouter, Depends
from typing import Optional

from models import PayoutCreate, PayoutStatusUpdate
from routes.auth import require_admin, require_dealer_or_admin
from routes.deps import get_db, get_payout_service
from services.commission import unpaid_commission
from services.errors import InvalidInput

router = APIRouter(tags=["Payouts"])


def _scope_dealer(user: dict, dealer_id: Optional[str], required: bool = False) -> Optional[str]:
    """Dealers are pinned to their own id; admins pick one (or all)."""
    if user.get("role") == "dealer":
        return user["dealer_id"]
    if required and not dealer_id:
        raise InvalidInput("dealer_id is required", code="missing_fields")
    return dealer_id


@router.get("/payouts")
async def list_payouts(
    dealer_id: Optional[str] = None,
    status: Optional[str] = None,
    from_date: Optional[str] = None,
    to_date: Optional[str] = None,
    user: dict = Depends(require_dealer_or_admin),
    service=Depends(get_payout_service),
):
    """Payouts, newest first. Dealers only see their own."""
    payouts = await service.list_payouts(
        dealer_id=_scope_dealer(user, dealer_id),
        status=status,
        from_date=from_date,
        to_date=to_date,
    )
    return {"payouts": payouts, "count": len(payouts)}


@router.get("/payouts/summary")
async def payout_summary(
    dealer_id: Optional[str] = None,
    user: dict = Depends(require_dealer_or_admin),
    service=Depends(get_payout_service),
):
    """Totals paid / pending / failed plus commission still owed."""
    return await service.summary(_scope_dealer(user, dealer_id, required=True))


@router.get("/payouts/unpaid")
async def unpaid(
    from_date: str,
    to_date: str,
    dealer_id: Optional[str] = None,
    user: dict = Depends(require_dealer_or_admin),
    db=Depends(get_db),
):
    """What a payout over [from_date, to_date] would contain right now."""
    return await unpaid_commission(db, _scope_dealer(user, dealer_id, required=True), from_date, to_date)


@router.post("/payouts", status_code=201)
async def create_payout(
    data: PayoutCreate,
    user: dict = Depends(require_admin),
    service=Depends(get_payout_service),
):
    """
    Claims every unpaid commission of the dealer in the range and creates
    one payout over them.

    404 no unpaid commissions / 400 zero amount
    """
    payout = await service.create_payout(
        dealer_id=data.dealer_id,
        from_date=data.from_date,
        to_date=data.to_date,
        notes=data.notes,
        created_by=user.get("email", user["id"]),
    )
    return {"message": "Payout created successfully", "payout": payout}


@router.put("/payouts")
async def update_payout_status(
    data: PayoutStatusUpdate,
    user: dict = Depends(require_admin),
    service=Depends(get_payout_service),
):
    payout = await service.update_status(
        payout_id=data.payout_id,
        status=data.status,
        razorpay_payout_id=data.razorpay_payout_id,
        bank_reference=data.bank_reference,
        notes=data.notes,
        force=data.force,
        updated_by=user.get("email", user["id"]),
    )
    return {"message": "Payout updated successfully", "payout": payout}
