"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Dealer payout model                                         ║
║                                                                              ║
║  A payout = batched settlement of commission over a fixed set of orders.     ║
║                                                                              ║
║  LIFECYCLE:                                                                  ║
║  pending → processing → completed                                            ║
║  pending|processing → failed, failed → processing (retry)                    ║
║  completed is TERMINAL                                                       ║
║                                                                              ║
║  RULES: amount > 0, orders_included never mutated, one payout per order      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional, List
from pydantic import BaseModel


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


VALID_PAYOUT_STATUSES = [s.value for s in PayoutStatus]


class PayoutCreate(BaseModel):
    """
    Example:
    {
        "dealer_id": "xxx",
        "from_date": "2024-01-01",
        "to_date": "2024-01-31",
        "notes": "January settlement"
    }
    """
    dealer_id: str
    from_date: str
    to_date: str
    notes: Optional[str] = None


class PayoutStatusUpdate(BaseModel):
    payout_id: str
    status: str  # checked by the service, unknown values are a 400
    razorpay_payout_id: Optional[str] = None
    bank_reference: Optional[str] = None
    notes: Optional[str] = None
    force: bool = False  # admin override between non-terminal states


class OrdersIncluded(BaseModel):
    """Stored as-is on the payout document"""
    order_ids: List[str]
    count: int
    from_date: str
    to_date: str
