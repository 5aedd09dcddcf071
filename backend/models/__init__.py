"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Models Package                                              ║
║                                                                              ║
║  Exports every request/document model for easy import                        ║
║  from models import PayoutCreate, LeadAssign, OrderStatus, etc.              ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

# Orders
from .order import (
    OrderStatus,
    PaymentStatus,
    VALID_ORDER_STATUSES,
    VALID_PAYMENT_STATUSES,
    CheckoutRequest,
    PaymentConfirmation,
    OrderStatusUpdate,
    OrderAmounts,
)

# Payouts
from .payout import (
    PayoutStatus,
    VALID_PAYOUT_STATUSES,
    PayoutCreate,
    PayoutStatusUpdate,
    OrdersIncluded,
)

# Leads
from .lead import (
    LeadStatus,
    LeadPriority,
    LeadSource,
    VALID_LEAD_STATUSES,
    LeadCreate,
    LeadAssign,
    LeadStatusUpdate,
    LeadNote,
)

# Dealers
from .dealer import (
    DealerStatus,
    DealerDocument,
    CommissionRateUpdate,
)

# Availability / test rides
from .availability import (
    WEEKDAYS,
    DayHours,
    AvailabilitySettings,
    HolidayChange,
    AvailabilityCheck,
)
from .test_ride import (
    BookingStatus,
    VALID_BOOKING_STATUSES,
    BookingRequest,
    BookingStatusUpdate,
)

__all__ = [
    # Orders
    "OrderStatus",
    "PaymentStatus",
    "VALID_ORDER_STATUSES",
    "VALID_PAYMENT_STATUSES",
    "CheckoutRequest",
    "PaymentConfirmation",
    "OrderStatusUpdate",
    "OrderAmounts",
    # Payouts
    "PayoutStatus",
    "VALID_PAYOUT_STATUSES",
    "PayoutCreate",
    "PayoutStatusUpdate",
    "OrdersIncluded",
    # Leads
    "LeadStatus",
    "LeadPriority",
    "LeadSource",
    "VALID_LEAD_STATUSES",
    "LeadCreate",
    "LeadAssign",
    "LeadStatusUpdate",
    "LeadNote",
    # Dealers
    "DealerStatus",
    "DealerDocument",
    "CommissionRateUpdate",
    # Availability / test rides
    "WEEKDAYS",
    "DayHours",
    "AvailabilitySettings",
    "HolidayChange",
    "AvailabilityCheck",
    "BookingStatus",
    "VALID_BOOKING_STATUSES",
    "BookingRequest",
    "BookingStatusUpdate",
]
