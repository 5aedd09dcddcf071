"""
EV Dealer Hub - Routes Orders
Checkout, payment callbacks, fulfilment status, refunds, tracking.
"""

from fastapi import APIRouter, Depends
from typing import Optional

from models import CheckoutRequest, PaymentConfirmation, OrderStatusUpdate
from routes.auth import get_current_user, require_admin, require_dealer_or_admin
from routes.deps import get_order_service
from services.errors import NotFound

router = APIRouter(tags=["Orders"])


@router.post("/orders/checkout", status_code=201)
async def checkout(
    data: CheckoutRequest,
    user: dict = Depends(get_current_user),
    service=Depends(get_order_service),
):
    order = await service.checkout(
        customer_id=user["id"],
        vehicle_id=data.vehicle_id,
        quantity=data.quantity,
        dealer_id=data.dealer_id,
        promo_code=data.promo_code,
        shipping_address=data.shipping_address,
    )
    return {"message": "Order created", "order": order}


@router.post("/orders/{order_id}/payment")
async def confirm_payment(
    order_id: str,
    data: PaymentConfirmation,
    user: dict = Depends(require_admin),
    service=Depends(get_order_service),
):
    """Gateway callback (signature verified upstream)."""
    order = await service.confirm_payment(order_id, data.payment_id, confirmed_by=user.get("email", user["id"]))
    return {"message": "Payment confirmed", "order": order}


@router.post("/orders/{order_id}/payment-failed")
async def payment_failed(
    order_id: str,
    reason: Optional[str] = "",
    user: dict = Depends(require_admin),
    service=Depends(get_order_service),
):
    order = await service.record_payment_failure(order_id, reason or "", recorded_by=user.get("email", user["id"]))
    return {"message": "Payment failure recorded", "order": order}


@router.put("/orders/{order_id}/status")
async def update_order_status(
    order_id: str,
    data: OrderStatusUpdate,
    user: dict = Depends(require_dealer_or_admin),
    service=Depends(get_order_service),
):
    order = await service.update_status(
        order_id,
        data.status,
        actor=user,
        cancellation_reason=data.cancellation_reason,
        tracking_number=data.tracking_number,
        notes=data.notes,
    )
    return {"message": "Order status updated successfully", "order": order}


@router.post("/orders/{order_id}/refund")
async def refund_order(
    order_id: str,
    user: dict = Depends(require_admin),
    service=Depends(get_order_service),
):
    order = await service.refund(order_id, refunded_by=user.get("email", user["id"]))
    return {"message": "Order refunded", "order": order}


@router.get("/orders/track/{order_id}")
async def track_order(
    order_id: str,
    user: dict = Depends(get_current_user),
    service=Depends(get_order_service),
):
    order = await service.get_order(order_id)
    role = user.get("role")
    if role == "customer" and order.get("customer_id") != user["id"]:
        raise NotFound("Order not found", code="order_not_found")
    if role == "dealer" and order.get("dealer_id") != user.get("dealer_id"):
        raise NotFound("Order not found", code="order_not_found")
    return await service.track(order_id)
