"""
EV Dealer Hub - Dealer model

Only the fields the payout and lead workflows read. Dealer onboarding
screens and documents live in the admin app.
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class DealerStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SUSPENDED = "suspended"


class DealerDocument(BaseModel):
    id: str
    user_id: Optional[str] = None
    business_name: str = ""
    business_email: str = ""
    business_phone: str = ""
    commission_rate: Optional[float] = None  # percentage, None -> default
    status: DealerStatus = DealerStatus.PENDING
    is_active: bool = True


class CommissionRateUpdate(BaseModel):
    commission_rate: float = Field(ge=0, le=100)
