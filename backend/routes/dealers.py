"""
EV Dealer Hub - Routes Dealers (admin)
"""

from fastapi import APIRouter, Depends

from models import CommissionRateUpdate, DealerDocument
from routes.auth import require_admin
from routes.deps import get_db
from services.dealers import set_commission_rate

router = APIRouter(prefix="/admin/dealers", tags=["Dealers"])


@router.put("/{dealer_id}/commission-rate")
async def update_commission_rate(
    dealer_id: str,
    data: CommissionRateUpdate,
    user: dict = Depends(require_admin),
    db=Depends(get_db),
):
    """Applies to orders paid from now on; existing orders keep their snapshot."""
    dealer = await set_commission_rate(db, dealer_id, data.commission_rate, updated_by=user.get("email", user["id"]))
    return {"message": "Commission rate updated", "dealer": DealerDocument(**dealer).model_dump(mode="json")}
