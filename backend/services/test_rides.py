"""
EV Dealer Hub - Test ride booking

Booking takes one unit of a slot counter (test_ride_slots) with a guarded
$inc, so a slot never holds more bookings than the dealer's capacity.

pending → confirmed → completed, cancelled from pending or confirmed.
Cancelling gives the unit back.
"""

import logging
import uuid
from typing import Optional, Dict, List

from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from config import now_iso, today_iso
from services.availability import AvailabilityService
from services.dealers import get_routable_dealer_or_raise
from services.errors import NotFound, InvalidInput, Forbidden, ConflictState, UpstreamFailure
from services.event_logger import log_event

logger = logging.getLogger("test_rides")

VALID_BOOKING_STATUSES = ["pending", "confirmed", "completed", "cancelled"]

VALID_BOOKING_TRANSITIONS = {
    "pending": ["confirmed", "cancelled"],
    "confirmed": ["completed", "cancelled"],
    "completed": [],
    "cancelled": [],
}

# Bookings in these states hold a slot unit
ACTIVE_BOOKING_STATUSES = ["pending", "confirmed"]


class TestRideService:
    __test__ = False  # not a pytest class

    def __init__(self, db, notifier=None, events=None, availability: Optional[AvailabilityService] = None):
        self.db = db
        self.notifier = notifier
        self.events = events
        self.availability = availability or AvailabilityService(db)

    async def get_booking(self, booking_id: str) -> Dict:
        booking = await self.db.test_rides.find_one({"id": booking_id}, {"_id": 0})
        if not booking:
            raise NotFound("Test ride not found", code="test_ride_not_found")
        return booking

    # ════════════════════════════════════════════════════════════════════════
    # SLOT COUNTERS
    # ════════════════════════════════════════════════════════════════════════

    async def _claim_slot(self, dealer_id: str, date_str: str, time: str, capacity: int) -> bool:
        key = {"dealer_id": dealer_id, "date": date_str, "time": time}
        await self.db.test_ride_slots.update_one(
            key, {"$setOnInsert": {"booked": 0}}, upsert=True
        )
        counter = await self.db.test_ride_slots.find_one_and_update(
            {**key, "booked": {"$lt": capacity}},
            {"$inc": {"booked": 1}},
            return_document=ReturnDocument.AFTER
        )
        return counter is not None

    async def _release_slot(self, dealer_id: str, date_str: str, time: str) -> None:
        await self.db.test_ride_slots.update_one(
            {"dealer_id": dealer_id, "date": date_str, "time": time, "booked": {"$gt": 0}},
            {"$inc": {"booked": -1}}
        )

    # ════════════════════════════════════════════════════════════════════════
    # BOOKING
    # ════════════════════════════════════════════════════════════════════════

    async def book(self, data: Dict, customer_id: Optional[str] = None) -> Dict:
        """
        Raises:
            InvalidInput(date_in_past)
            NotFound / ConflictState(dealer_inactive): dealer
            ConflictState(slot_unavailable, 400): holiday, closed or off-slot time
            ConflictState(slot_full): capacity reached
        """
        dealer_id = data["dealer_id"]
        date_str = data["preferred_date"]
        time = data["preferred_time"]

        if date_str < today_iso():
            raise InvalidInput("Test rides cannot be booked in the past", code="date_in_past")

        dealer = await get_routable_dealer_or_raise(self.db, dealer_id)
        schedule = await self.availability.day_schedule(dealer_id, date_str)
        if not schedule["open"]:
            raise ConflictState(f"Dealer is unavailable on {date_str} ({schedule['reason']})",
                                code="slot_unavailable", status_code=400)
        if time not in schedule["slot_times"]:
            raise ConflictState(f"{time} is not a bookable slot on {date_str}",
                                code="slot_unavailable", status_code=400)

        if not await self._claim_slot(dealer_id, date_str, time, schedule["capacity"]):
            raise ConflictState("This time slot is fully booked", code="slot_full")

        now = now_iso()
        booking = {
            "id": str(uuid.uuid4()),
            "dealer_id": dealer_id,
            "customer_id": customer_id,
            "vehicle_id": data.get("vehicle_id"),
            "name": data["name"],
            "email": data["email"],
            "phone": data.get("phone", ""),
            "preferred_date": date_str,
            "preferred_time": time,
            "notes": data.get("notes"),
            "status": "pending",
            "created_at": now,
            "updated_at": now,
        }
        try:
            await self.db.test_rides.insert_one(booking)
        except PyMongoError as e:
            logger.error(f"[TEST_RIDE] insert failed dealer={dealer_id} {date_str} {time}: {e}")
            await self._release_slot(dealer_id, date_str, time)
            raise UpstreamFailure("Failed to book test ride", code="test_ride_insert_failed")
        booking.pop("_id", None)

        logger.info(f"[TEST_RIDE] booked {booking['id']} dealer={dealer_id} {date_str} {time}")
        await log_event(self.db, "test_ride_booked", "test_ride", booking["id"],
                        user=booking["email"], related={"dealer_id": dealer_id})
        if self.events is not None:
            self.events.publish("test_rides", "test_ride_booked", booking["id"],
                                {"dealer_id": dealer_id, "date": date_str, "time": time})

        if self.notifier is not None:
            await self.notifier.notify(
                user_id=dealer.get("user_id"),
                title="New Test Ride Request",
                message=f"{booking['name']} requested a test ride on {date_str} at {time}.",
                type="test_ride",
                data={"test_ride_id": booking["id"]},
            )
            if customer_id:
                await self.notifier.notify(
                    user_id=customer_id,
                    title="Test Ride Requested",
                    message=f"Your test ride request for {date_str} at {time} has been received.",
                    type="test_ride",
                    data={"test_ride_id": booking["id"]},
                    email_to=booking["email"],
                    template_id="test_ride_booked",
                    template_props={"name": booking["name"], "date": date_str, "time": time},
                )
        return booking

    async def update_status(self, booking_id: str, status: str, actor: Dict,
                            notes: Optional[str] = None) -> Dict:
        if status not in VALID_BOOKING_STATUSES:
            raise InvalidInput("Invalid status", code="invalid_status")

        booking = await self.get_booking(booking_id)
        if actor.get("role") != "admin" and booking["dealer_id"] != actor.get("dealer_id"):
            raise Forbidden("You can only manage your own test rides", code="not_test_ride_owner")

        from_status = booking.get("status", "pending")
        if status not in VALID_BOOKING_TRANSITIONS.get(from_status, []):
            raise ConflictState(f"Invalid test ride transition from '{from_status}' to '{status}'",
                                code="invalid_transition", status_code=400)

        now = now_iso()
        update = {"status": status, "updated_at": now, f"{status}_at": now}
        if notes:
            update["dealer_notes"] = notes

        result = await self.db.test_rides.update_one(
            {"id": booking_id, "status": from_status},
            {"$set": update}
        )
        if result.matched_count == 0:
            raise ConflictState(f"Test ride {booking_id} was modified concurrently, reload and retry",
                                code="concurrent_update")

        if status == "cancelled" and from_status in ACTIVE_BOOKING_STATUSES:
            await self._release_slot(booking["dealer_id"], booking["preferred_date"], booking["preferred_time"])

        updated = {**booking, **update}
        logger.info(f"[TEST_RIDE] {booking_id} {from_status} -> {status}")
        await log_event(self.db, "test_ride_status", "test_ride", booking_id,
                        user=actor.get("email", actor.get("role", "system")),
                        details={"old_value": from_status, "new_value": status},
                        related={"dealer_id": booking["dealer_id"]})
        if self.events is not None:
            self.events.publish("test_rides", "test_ride_status", booking_id,
                                {"dealer_id": booking["dealer_id"], "status": status})
        if self.notifier is not None and booking.get("customer_id"):
            await self.notifier.notify(
                user_id=booking["customer_id"],
                title="Test Ride Update",
                message=f"Your test ride on {booking['preferred_date']} at {booking['preferred_time']} is now {status}.",
                type="test_ride",
                data={"test_ride_id": booking_id, "status": status},
            )
        return updated

    async def list_for_dealer(self, dealer_id: str, status: Optional[str] = None, limit: int = 500) -> List[Dict]:
        query = {"dealer_id": dealer_id}
        if status:
            query["status"] = status
        return await self.db.test_rides.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)
