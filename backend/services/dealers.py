"""
EV Dealer Hub - Dealer lookups

Small helpers shared by payouts, leads, orders and availability.
"""

import logging
from typing import Optional, Dict

from config import DEFAULT_COMMISSION_RATE, now_iso
from services.errors import NotFound, InvalidInput, ConflictState
from services.event_logger import log_event

logger = logging.getLogger("dealers")

DEALER_PUBLIC_FIELDS = {
    "_id": 0, "id": 1, "user_id": 1, "business_name": 1, "business_email": 1,
    "business_phone": 1, "commission_rate": 1, "status": 1, "is_active": 1,
}


def effective_commission_rate(dealer: Dict) -> float:
    """dealer.commission_rate, or the platform default when unset/zero"""
    rate = dealer.get("commission_rate")
    return float(rate) if rate else DEFAULT_COMMISSION_RATE


def is_dealer_routable(dealer: Dict) -> bool:
    """Approved and active dealers may receive leads and test rides"""
    return dealer.get("status", "approved") == "approved" and dealer.get("is_active", True)


async def get_dealer(db, dealer_id: str) -> Optional[Dict]:
    return await db.dealers.find_one({"id": dealer_id}, DEALER_PUBLIC_FIELDS)


async def get_dealer_or_raise(db, dealer_id: str) -> Dict:
    dealer = await get_dealer(db, dealer_id)
    if not dealer:
        raise NotFound("Dealer not found", code="dealer_not_found")
    return dealer


async def get_routable_dealer_or_raise(db, dealer_id: str) -> Dict:
    dealer = await get_dealer_or_raise(db, dealer_id)
    if not is_dealer_routable(dealer):
        raise ConflictState("Invalid or inactive dealer", code="dealer_inactive", status_code=400)
    return dealer


async def get_dealer_for_user(db, user_id: str) -> Optional[Dict]:
    return await db.dealers.find_one({"user_id": user_id}, DEALER_PUBLIC_FIELDS)


async def set_commission_rate(db, dealer_id: str, rate: float, updated_by: str = "system") -> Dict:
    """
    Changes the rate applied to orders paid from now on. Existing orders and
    payouts keep the rate they snapshotted.
    """
    if rate < 0 or rate > 100:
        raise InvalidInput("commission_rate must be between 0 and 100", code="invalid_commission_rate")

    dealer = await get_dealer_or_raise(db, dealer_id)
    await db.dealers.update_one(
        {"id": dealer_id},
        {"$set": {"commission_rate": rate, "updated_at": now_iso()}}
    )
    await log_event(db, "commission_rate_update", "dealer", dealer_id, user=updated_by,
                    details={"old_value": dealer.get("commission_rate"), "new_value": rate})
    logger.info(f"[DEALER] {dealer_id} commission_rate {dealer.get('commission_rate')} -> {rate}")

    dealer["commission_rate"] = rate
    return dealer
