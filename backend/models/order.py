"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Order model                                                 ║
║                                                                              ║
║  One order = N units of one vehicle for one customer, optionally through a   ║
║  dealer.                                                                     ║
║                                                                              ║
║  LIFECYCLE:                                                                  ║
║  pending → confirmed → processing → shipped → delivered                      ║
║  cancelled reachable from every non-terminal state                           ║
║                                                                              ║
║  RULE: final_amount = total_amount + tax_amount - discount_amount            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


VALID_ORDER_STATUSES = [s.value for s in OrderStatus]
VALID_PAYMENT_STATUSES = [s.value for s in PaymentStatus]


class CheckoutRequest(BaseModel):
    """
    Checkout of one vehicle

    Example:
    {
        "vehicle_id": "xxx",
        "quantity": 1,
        "dealer_id": "yyy",
        "promo_code": "LAUNCH10"
    }
    """
    vehicle_id: str
    quantity: int = Field(default=1, ge=1, le=50)
    dealer_id: Optional[str] = None
    promo_code: Optional[str] = None
    shipping_address: Optional[dict] = None


class PaymentConfirmation(BaseModel):
    """Payment settled by the gateway (verified upstream)"""
    payment_id: str
    razorpay_order_id: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str
    cancellation_reason: Optional[str] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class OrderAmounts(BaseModel):
    """Computed at checkout, frozen on the order document"""
    unit_price: float
    quantity: int
    total_amount: float
    discount_amount: float = 0.0
    tax_amount: float = 0.0
    final_amount: float
