"""
Test-ride availability and booking tests

- Default working hours, closed days, holidays override working hours
- Slot generation and capacity
- Booking claims one slot unit, cancelling releases it
"""

from datetime import date, timedelta

import pytest

from models import AvailabilitySettings
from services.availability import DEFAULT_AVAILABILITY, generate_slot_times
from services.errors import ConflictState, InvalidInput, Forbidden, NotFound
from tests.conftest import date_days_ago


def next_weekday(weekday: int) -> str:
    """Next date (from tomorrow on) falling on weekday, 0 = monday"""
    d = date.today() + timedelta(days=1)
    while d.weekday() != weekday:
        d += timedelta(days=1)
    return d.isoformat()


MONDAY, SATURDAY, SUNDAY = 0, 5, 6


def booking(dealer_id, day, time="10:00", **extra):
    return {
        "dealer_id": dealer_id,
        "name": "Kiran",
        "email": "kiran@example.in",
        "phone": "9800000000",
        "preferred_date": day,
        "preferred_time": time,
        **extra,
    }


class TestAvailabilitySettings:

    async def test_defaults(self, availability_service, dealer):
        settings = await availability_service.get_settings(dealer["id"])
        assert settings == DEFAULT_AVAILABILITY
        assert settings["workingHours"]["sunday"]["isOpen"] is False
        assert settings["workingHours"]["saturday"]["closeTime"] == "13:00"

    async def test_update_and_read_back(self, availability_service, dealer):
        data = AvailabilitySettings(
            workingHours={"monday": {"isOpen": True, "openTime": "10:00", "closeTime": "12:00", "slots": 1}},
            holidays=["2030-01-26", "2030-01-01", "2030-01-26"],
            slotDuration=60,
        )
        await availability_service.update_settings(dealer["id"], data)
        stored = await availability_service.get_settings(dealer["id"])

        assert stored["slotDuration"] == 60
        assert stored["holidays"] == ["2030-01-01", "2030-01-26"]
        assert stored["workingHours"]["tuesday"]["isOpen"] is False

    def test_invalid_settings_rejected(self):
        with pytest.raises(ValueError):
            AvailabilitySettings(workingHours={"monday": {"openTime": "18:00", "closeTime": "09:00"}})
        with pytest.raises(ValueError):
            AvailabilitySettings(workingHours={"funday": {}})
        with pytest.raises(ValueError):
            AvailabilitySettings(workingHours={}, slotDuration=5)

    async def test_holidays_idempotent_and_sorted(self, availability_service, dealer):
        await availability_service.add_holiday(dealer["id"], "2030-03-01")
        await availability_service.add_holiday(dealer["id"], "2030-01-01")
        settings = await availability_service.add_holiday(dealer["id"], "2030-03-01")
        assert settings["holidays"] == ["2030-01-01", "2030-03-01"]

        settings = await availability_service.remove_holiday(dealer["id"], "2030-01-01")
        assert settings["holidays"] == ["2030-03-01"]

    async def test_bad_holiday_date(self, availability_service, dealer):
        with pytest.raises(InvalidInput):
            await availability_service.add_holiday(dealer["id"], "01/01/2030")


class TestAvailabilityCheck:

    def test_slot_generation(self):
        assert generate_slot_times("09:00", "10:30", 30) == ["09:00", "09:30", "10:00"]
        assert generate_slot_times("09:00", "13:00", 120) == ["09:00", "11:00"]
        assert generate_slot_times("09:00", "09:50", 30) == ["09:00"]
        assert generate_slot_times("09:00", "09:20", 30) == []

    async def test_open_weekday(self, availability_service, dealer):
        result = await availability_service.is_available(dealer["id"], next_weekday(MONDAY))
        assert result["available"] is True
        assert result["dayOfWeek"] == "monday"
        assert len(result["slots"]) == 18
        assert result["slots"][0] == {"time": "09:00", "available": 2, "total": 2}

    async def test_closed_day(self, availability_service, dealer):
        result = await availability_service.is_available(dealer["id"], next_weekday(SUNDAY))
        assert result["available"] is False
        assert result["reason"] == "closed"
        assert result["slots"] == []

    async def test_holiday_overrides_working_hours(self, availability_service, dealer):
        monday = next_weekday(MONDAY)
        await availability_service.add_holiday(dealer["id"], monday)
        result = await availability_service.is_available(dealer["id"], monday, "10:00")
        assert result["available"] is False
        assert result["reason"] == "holiday"
        assert await availability_service.available_slots(dealer["id"], monday) == []

        week_after = (date.fromisoformat(monday) + timedelta(days=7)).isoformat()
        result = await availability_service.is_available(dealer["id"], week_after, "10:00")
        assert result["available"] is True
        assert result["dayOfWeek"] == "monday"
        assert len(await availability_service.available_slots(dealer["id"], week_after)) == 18

    async def test_unknown_dealer(self, availability_service):
        with pytest.raises(NotFound):
            await availability_service.available_slots("nope", next_weekday(MONDAY))
        with pytest.raises(NotFound):
            await availability_service.is_available("nope", next_weekday(MONDAY))

    async def test_outside_hours(self, availability_service, dealer):
        saturday = next_weekday(SATURDAY)
        assert (await availability_service.is_available(dealer["id"], saturday, "15:00"))["reason"] == "outside_hours"
        assert (await availability_service.is_available(dealer["id"], saturday, "10:15"))["reason"] == "outside_hours"
        assert (await availability_service.is_available(dealer["id"], saturday, "12:30"))["available"] is True


class TestBooking:

    async def test_booking_takes_capacity(self, db, booking_service, availability_service, dealer):
        monday = next_weekday(MONDAY)
        first = await booking_service.book(booking(dealer["id"], monday))
        assert first["status"] == "pending"
        await booking_service.book(booking(dealer["id"], monday))

        with pytest.raises(ConflictState) as exc:
            await booking_service.book(booking(dealer["id"], monday))
        assert exc.value.code == "slot_full"

        slots = await availability_service.available_slots(dealer["id"], monday)
        assert "10:00" not in [s["time"] for s in slots]
        check = await availability_service.is_available(dealer["id"], monday, "10:00")
        assert check["reason"] == "fully_booked"

    async def test_cancel_releases_slot(self, booking_service, availability_service, dealer):
        monday = next_weekday(MONDAY)
        first = await booking_service.book(booking(dealer["id"], monday))
        await booking_service.book(booking(dealer["id"], monday))

        actor = {"role": "dealer", "dealer_id": dealer["id"]}
        await booking_service.update_status(first["id"], "cancelled", actor)

        slots = await availability_service.available_slots(dealer["id"], monday)
        assert {"time": "10:00", "available": 1, "total": 2} in slots

    async def test_holiday_and_past_dates_rejected(self, booking_service, availability_service, dealer):
        monday = next_weekday(MONDAY)
        await availability_service.add_holiday(dealer["id"], monday)
        with pytest.raises(ConflictState) as exc:
            await booking_service.book(booking(dealer["id"], monday))
        assert exc.value.code == "slot_unavailable"

        with pytest.raises(InvalidInput) as exc:
            await booking_service.book(booking(dealer["id"], date_days_ago(2)))
        assert exc.value.code == "date_in_past"

    async def test_status_flow(self, booking_service, dealer, db):
        ride = await booking_service.book(booking(dealer["id"], next_weekday(MONDAY)), customer_id="customer-1")
        actor = {"role": "dealer", "dealer_id": dealer["id"]}

        confirmed = await booking_service.update_status(ride["id"], "confirmed", actor)
        assert confirmed["confirmed_at"] is not None
        await booking_service.update_status(ride["id"], "completed", actor)

        with pytest.raises(ConflictState):
            await booking_service.update_status(ride["id"], "cancelled", actor)
        assert await db.notifications.count_documents({"user_id": "customer-1", "type": "test_ride"}) == 3

    async def test_other_dealer_forbidden(self, db, booking_service, dealer):
        from tests.conftest import seed_dealer
        ride = await booking_service.book(booking(dealer["id"], next_weekday(MONDAY)))
        other = await seed_dealer(db)
        with pytest.raises(Forbidden):
            await booking_service.update_status(ride["id"], "confirmed", {"role": "dealer", "dealer_id": other["id"]})
