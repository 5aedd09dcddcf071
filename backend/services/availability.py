"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Test-ride availability                                      ║
║                                                                              ║
║  Per dealer weekly working hours + holiday exceptions + slot capacity.       ║
║  Stored in settings under key "dealer_availability:<dealer_id>".             ║
║                                                                              ║
║  RULES:                                                                      ║
║  1. A holiday is unavailable whatever the working hours say                  ║
║  2. isOpen=false means zero slots                                            ║
║  3. Slots run from openTime to closeTime in slotDuration steps               ║
║  4. Booked counts come from the test_ride_slots counters                     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import copy
import logging
from datetime import datetime, timedelta
from typing import Optional, Dict, List

from config import parse_date
from models.availability import AvailabilitySettings, WEEKDAYS
from services.dealers import get_dealer_or_raise
from services.errors import InvalidInput
from services.event_logger import log_event
from services.settings import get_setting, upsert_setting

logger = logging.getLogger("availability")

DEFAULT_AVAILABILITY = {
    "workingHours": {
        "monday": {"isOpen": True, "openTime": "09:00", "closeTime": "18:00", "slots": 2},
        "tuesday": {"isOpen": True, "openTime": "09:00", "closeTime": "18:00", "slots": 2},
        "wednesday": {"isOpen": True, "openTime": "09:00", "closeTime": "18:00", "slots": 2},
        "thursday": {"isOpen": True, "openTime": "09:00", "closeTime": "18:00", "slots": 2},
        "friday": {"isOpen": True, "openTime": "09:00", "closeTime": "18:00", "slots": 2},
        "saturday": {"isOpen": True, "openTime": "09:00", "closeTime": "13:00", "slots": 2},
        "sunday": {"isOpen": False, "openTime": "09:00", "closeTime": "18:00", "slots": 0},
    },
    "holidays": [],
    "slotDuration": 30,
}


def availability_key(dealer_id: str) -> str:
    return f"dealer_availability:{dealer_id}"


def weekday_name(date_str: str) -> str:
    return WEEKDAYS[parse_date(date_str).weekday()]


def generate_slot_times(open_time: str, close_time: str, duration: int) -> List[str]:
    """HH:MM starts from open_time; every slot ends by close_time"""
    start = datetime.strptime(open_time, "%H:%M")
    end = datetime.strptime(close_time, "%H:%M")
    times = []
    t = start
    step = timedelta(minutes=duration)
    while t + step <= end:
        times.append(t.strftime("%H:%M"))
        t += step
    return times


def _parse_date_or_raise(date_str: str) -> None:
    try:
        parse_date(date_str)
    except (TypeError, ValueError):
        raise InvalidInput("Dates must use the YYYY-MM-DD format", code="invalid_date")


class AvailabilityService:

    def __init__(self, db):
        self.db = db

    # ════════════════════════════════════════════════════════════════════════
    # SETTINGS
    # ════════════════════════════════════════════════════════════════════════

    async def get_settings(self, dealer_id: str) -> Dict:
        """Stored settings, or the defaults when the dealer never saved any"""
        doc = await get_setting(self.db, availability_key(dealer_id))
        if not doc:
            return copy.deepcopy(DEFAULT_AVAILABILITY)
        return {
            "workingHours": doc["workingHours"],
            "holidays": doc.get("holidays", []),
            "slotDuration": doc.get("slotDuration", 30),
        }

    async def update_settings(self, dealer_id: str, settings: AvailabilitySettings,
                              updated_by: str = "system") -> Dict:
        await get_dealer_or_raise(self.db, dealer_id)
        data = settings.model_dump()
        await upsert_setting(self.db, availability_key(dealer_id), data, updated_by=updated_by)
        await log_event(self.db, "availability_update", "dealer", dealer_id, user=updated_by,
                        details={"holidays": len(data["holidays"]), "slotDuration": data["slotDuration"]})
        return data

    async def add_holiday(self, dealer_id: str, date_str: str, updated_by: str = "system") -> Dict:
        """Idempotent, keeps the list sorted ascending"""
        _parse_date_or_raise(date_str)
        await get_dealer_or_raise(self.db, dealer_id)
        settings = await self.get_settings(dealer_id)
        if date_str not in settings["holidays"]:
            settings["holidays"] = sorted(settings["holidays"] + [date_str])
            await upsert_setting(self.db, availability_key(dealer_id), settings, updated_by=updated_by)
            await log_event(self.db, "holiday_added", "dealer", dealer_id, user=updated_by,
                            details={"date": date_str})
        return settings

    async def remove_holiday(self, dealer_id: str, date_str: str, updated_by: str = "system") -> Dict:
        await get_dealer_or_raise(self.db, dealer_id)
        settings = await self.get_settings(dealer_id)
        if date_str in settings["holidays"]:
            settings["holidays"] = [d for d in settings["holidays"] if d != date_str]
            await upsert_setting(self.db, availability_key(dealer_id), settings, updated_by=updated_by)
            await log_event(self.db, "holiday_removed", "dealer", dealer_id, user=updated_by,
                            details={"date": date_str})
        return settings

    # ════════════════════════════════════════════════════════════════════════
    # QUERIES
    # ════════════════════════════════════════════════════════════════════════

    async def booked_counts(self, dealer_id: str, date_str: str) -> Dict[str, int]:
        counters = await self.db.test_ride_slots.find(
            {"dealer_id": dealer_id, "date": date_str}, {"_id": 0, "time": 1, "booked": 1}
        ).to_list(None)
        return {c["time"]: c.get("booked", 0) for c in counters}

    async def day_schedule(self, dealer_id: str, date_str: str) -> Dict:
        """
        Settings resolved for one date:
        {open: bool, reason, day, capacity, slot_times}
        """
        _parse_date_or_raise(date_str)
        settings = await self.get_settings(dealer_id)
        day = weekday_name(date_str)
        hours = settings["workingHours"].get(day) or {"isOpen": False}

        if date_str in settings.get("holidays", []):
            return {"open": False, "reason": "holiday", "day": day, "capacity": 0, "slot_times": []}
        if not hours.get("isOpen") or not hours.get("slots"):
            return {"open": False, "reason": "closed", "day": day, "capacity": 0, "slot_times": []}

        return {
            "open": True,
            "reason": None,
            "day": day,
            "capacity": hours["slots"],
            "slot_times": generate_slot_times(hours["openTime"], hours["closeTime"],
                                              settings.get("slotDuration", 30)),
        }

    async def available_slots(self, dealer_id: str, date_str: str) -> List[Dict]:
        """[{time, available, total}] for slots that still have room"""
        await get_dealer_or_raise(self.db, dealer_id)
        schedule = await self.day_schedule(dealer_id, date_str)
        if not schedule["open"]:
            return []
        booked = await self.booked_counts(dealer_id, date_str)
        slots = []
        for t in schedule["slot_times"]:
            remaining = schedule["capacity"] - booked.get(t, 0)
            if remaining > 0:
                slots.append({"time": t, "available": remaining, "total": schedule["capacity"]})
        return slots

    async def is_available(self, dealer_id: str, date_str: str, time: Optional[str] = None) -> Dict:
        """
        {available, reason, date, dayOfWeek, slots}
        reason: holiday | closed | outside_hours | fully_booked | None
        """
        await get_dealer_or_raise(self.db, dealer_id)
        schedule = await self.day_schedule(dealer_id, date_str)
        result = {"date": date_str, "dayOfWeek": schedule["day"]}
        if not schedule["open"]:
            return {**result, "available": False, "reason": schedule["reason"], "slots": []}

        slots = await self.available_slots(dealer_id, date_str)
        if time is None:
            return {**result, "available": bool(slots),
                    "reason": None if slots else "fully_booked", "slots": slots}

        if time not in schedule["slot_times"]:
            return {**result, "available": False, "reason": "outside_hours", "slots": slots}
        slot = next((s for s in slots if s["time"] == time), None)
        if not slot:
            return {**result, "available": False, "reason": "fully_booked", "slots": slots}
        return {**result, "available": True, "reason": None, "slots": [slot]}
