"""
EV Dealer Hub - Test-ride availability settings

JSON shape is shared with the dealer dashboard, hence the camelCase keys:
{
    "workingHours": {"monday": {"isOpen": true, "openTime": "09:00",
                                "closeTime": "18:00", "slots": 2}, ...},
    "holidays": ["2024-01-26"],
    "slotDuration": 30
}
"""

import re
from typing import Dict, List, Optional
from pydantic import BaseModel, Field, field_validator, model_validator

from config import parse_date

WEEKDAYS = ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"]

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def validate_date_str(v: str) -> str:
    try:
        parse_date(v)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid date {v!r}, expected YYYY-MM-DD")
    return v


class DayHours(BaseModel):
    isOpen: bool = True
    openTime: str = "09:00"
    closeTime: str = "18:00"
    slots: int = Field(default=2, ge=0, le=100)  # test rides per time slot

    @field_validator("openTime", "closeTime")
    @classmethod
    def validate_time(cls, v):
        if not _TIME_RE.match(v):
            raise ValueError(f"Invalid time {v!r}, expected HH:MM")
        return v

    @model_validator(mode="after")
    def check_hours(self):
        if self.isOpen and self.openTime >= self.closeTime:
            raise ValueError("openTime must be before closeTime")
        return self


class AvailabilitySettings(BaseModel):
    workingHours: Dict[str, DayHours]
    holidays: List[str] = []
    slotDuration: int = Field(default=30, ge=15, le=120)

    @field_validator("workingHours")
    @classmethod
    def validate_days(cls, v):
        unknown = [d for d in v if d not in WEEKDAYS]
        if unknown:
            raise ValueError(f"Unknown weekday(s): {unknown}")
        # Days left out are closed
        return {
            day: v.get(day, DayHours(isOpen=False, slots=0))
            for day in WEEKDAYS
        }

    @field_validator("holidays")
    @classmethod
    def validate_holidays(cls, v):
        return sorted({validate_date_str(d) for d in v})


class HolidayChange(BaseModel):
    date: str

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_date_str(v)


class AvailabilityCheck(BaseModel):
    dealerId: str
    date: str
    time: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_date_str(v)

    @field_validator("time")
    @classmethod
    def validate_time(cls, v):
        if v is not None and not _TIME_RE.match(v):
            raise ValueError(f"Invalid time {v!r}, expected HH:MM")
        return v
