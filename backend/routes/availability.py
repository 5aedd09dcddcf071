"""
EV Dealer Hub - Routes Availability & Test rides
Dealer working hours / holidays, public slot lookup and booking.
"""

from fastapi import APIRouter, Depends
from typing import Optional

from models import (
    AvailabilitySettings,
    HolidayChange,
    AvailabilityCheck,
    BookingRequest,
    BookingStatusUpdate,
)
from routes.auth import get_optional_user, require_dealer, require_dealer_or_admin
from routes.deps import get_availability_service, get_test_ride_service

router = APIRouter(tags=["Availability"])


# ==================== DEALER SETTINGS ====================

@router.get("/dealer/availability")
async def get_availability(
    user: dict = Depends(require_dealer),
    service=Depends(get_availability_service),
):
    return await service.get_settings(user["dealer_id"])


@router.put("/dealer/availability")
async def update_availability(
    data: AvailabilitySettings,
    user: dict = Depends(require_dealer),
    service=Depends(get_availability_service),
):
    availability = await service.update_settings(user["dealer_id"], data, updated_by=user.get("email", user["id"]))
    return {"message": "Availability updated successfully", "availability": availability}


@router.post("/dealer/availability/holidays")
async def add_holiday(
    data: HolidayChange,
    user: dict = Depends(require_dealer),
    service=Depends(get_availability_service),
):
    availability = await service.add_holiday(user["dealer_id"], data.date, updated_by=user.get("email", user["id"]))
    return {"message": "Holiday added", "availability": availability}


@router.delete("/dealer/availability/holidays/{date}")
async def remove_holiday(
    date: str,
    user: dict = Depends(require_dealer),
    service=Depends(get_availability_service),
):
    availability = await service.remove_holiday(user["dealer_id"], date, updated_by=user.get("email", user["id"]))
    return {"message": "Holiday removed", "availability": availability}


# ==================== PUBLIC ====================

@router.post("/dealer/availability/check")
async def check_availability(data: AvailabilityCheck, service=Depends(get_availability_service)):
    """{available, reason, date, dayOfWeek, slots}"""
    return await service.is_available(data.dealerId, data.date, data.time)


@router.get("/test-rides/slots")
async def test_ride_slots(dealer_id: str, date: str, service=Depends(get_availability_service)):
    slots = await service.available_slots(dealer_id, date)
    return {"dealer_id": dealer_id, "date": date, "slots": slots}


@router.post("/test-rides/book", status_code=201)
async def book_test_ride(
    data: BookingRequest,
    user: Optional[dict] = Depends(get_optional_user),
    service=Depends(get_test_ride_service),
):
    booking = await service.book(data.model_dump(), customer_id=user["id"] if user else None)
    return {"message": "Test ride requested", "test_ride": booking}


# ==================== DEALER BOOKINGS ====================

@router.get("/dealer/test-rides")
async def dealer_test_rides(
    status: Optional[str] = None,
    user: dict = Depends(require_dealer),
    service=Depends(get_test_ride_service),
):
    test_rides = await service.list_for_dealer(user["dealer_id"], status=status)
    return {"testRides": test_rides, "dealerId": user["dealer_id"]}


@router.put("/test-rides/{test_ride_id}/status")
async def update_test_ride_status(
    test_ride_id: str,
    data: BookingStatusUpdate,
    user: dict = Depends(require_dealer_or_admin),
    service=Depends(get_test_ride_service),
):
    booking = await service.update_status(test_ride_id, data.status, actor=user, notes=data.notes)
    return {"message": "Test ride updated", "test_ride": booking}
