"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Lead model                                                  ║
║                                                                              ║
║  RULES:                                                                      ║
║  1. A "new" lead is never assigned (assigned_to = None)                      ║
║  2. Assignment sets assigned_to AND status="assigned" in one write           ║
║  3. Notes are append-only, each entry prefixed with [timestamp]              ║
║  4. new → assigned → contacted → qualified → converted, closed from any      ║
║     non-terminal state                                                       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class LeadStatus(str, Enum):
    NEW = "new"
    ASSIGNED = "assigned"
    CONTACTED = "contacted"
    QUALIFIED = "qualified"
    CONVERTED = "converted"
    CLOSED = "closed"


class LeadPriority(str, Enum):
    NORMAL = "normal"
    URGENT = "urgent"


class LeadSource(str, Enum):
    CONTACT = "contact"
    INQUIRY = "inquiry"
    WARRANTY = "warranty"
    TEST_RIDE = "test_ride"


VALID_LEAD_STATUSES = [s.value for s in LeadStatus]


class LeadCreate(BaseModel):
    """Inbound form submission (contact page, inquiry, warranty, test ride)"""
    name: str = Field(min_length=1, max_length=120)
    email: str
    phone: str = ""
    subject: str = ""
    message: str = ""
    priority: LeadPriority = LeadPriority.NORMAL
    source: LeadSource = LeadSource.CONTACT
    vehicle_id: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = v.strip().lower()
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email")
        return v

    @field_validator("phone")
    @classmethod
    def normalize_phone(cls, v):
        digits = ''.join(filter(str.isdigit, v or ""))
        # +91 / 0091 prefixes
        if len(digits) == 12 and digits.startswith("91"):
            digits = digits[2:]
        if digits and len(digits) != 10:
            raise ValueError(f"Invalid phone: {len(digits)} digits (10 required)")
        return digits


class LeadAssign(BaseModel):
    leadId: str
    dealerId: str
    notes: Optional[str] = None


class LeadStatusUpdate(BaseModel):
    status: str  # checked by the service, unknown values are a 400
    lost_reason: Optional[str] = None
    force: bool = False  # admin override of the forward-only rule


class LeadNote(BaseModel):
    note: str = Field(min_length=1, max_length=5000)
