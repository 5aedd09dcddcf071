"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Order Fulfilment State Machine                              ║
║                                                                              ║
║  pending → confirmed → processing → shipped → delivered                      ║
║  cancelled from any non-terminal state (or by a failed payment)              ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - delivered / cancelled are TERMINAL                                        ║
║  - every transition is a compare-and-set on the observed status              ║
║  - status=cancelled IMPLIES cancellation_reason non empty                    ║
║  - stock moves only through atomic $inc on vehicles.stock_quantity           ║
║  - payment_status=paid IMPLIES dealer_commission_amount computed             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Optional, Dict, Any

from config import GST_RATE, now_iso
from models.order import OrderAmounts
from services.commission import compute_dealer_commission
from services.dealers import get_dealer, effective_commission_rate
from services.errors import NotFound, InvalidInput, Forbidden, ConflictState
from services.event_logger import log_event

logger = logging.getLogger("order_state_machine")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_ORDER_STATUSES = ["pending", "confirmed", "processing", "shipped", "delivered", "cancelled"]

VALID_ORDER_TRANSITIONS = {
    "pending": ["confirmed", "cancelled"],
    "confirmed": ["processing", "cancelled"],
    "processing": ["shipped", "cancelled"],
    "shipped": ["delivered", "cancelled"],
    "delivered": [],  # TERMINAL
    "cancelled": [],  # TERMINAL
}

TERMINAL_ORDER_STATUSES = [s for s, nxt in VALID_ORDER_TRANSITIONS.items() if not nxt]

DEALER_ALLOWED_STATUSES = ["processing", "shipped", "delivered"]

STATUS_TIMESTAMPS = {
    "confirmed": "confirmed_at",
    "shipped": "shipped_at",
    "delivered": "delivered_at",
    "cancelled": "cancelled_at",
}


def validate_order_transition(order_id: str, from_status: str, to_status: str) -> None:
    if from_status in TERMINAL_ORDER_STATUSES:
        raise ConflictState(
            f"Order {order_id} is {from_status} and can no longer change",
            code="order_terminal"
        )
    valid_next = VALID_ORDER_TRANSITIONS.get(from_status, [])
    if to_status not in valid_next:
        raise ConflictState(
            f"Invalid status transition from {from_status} to {to_status}",
            code="invalid_transition",
            status_code=400
        )


def compute_amounts(unit_price: float, quantity: int, promo: Optional[Dict] = None, tax_rate: float = GST_RATE) -> Dict:
    """
    total = unit_price * quantity
    discount from promo (percentage capped by max_discount, or flat)
    tax = (total - discount) * tax_rate
    final = total + tax - discount
    """
    total = round(unit_price * quantity, 2)
    discount = 0.0
    if promo:
        if promo.get("discount_type") == "percentage":
            discount = total * (promo.get("discount_value") or 0) / 100
            if promo.get("max_discount") and discount > promo["max_discount"]:
                discount = promo["max_discount"]
        else:
            discount = promo.get("discount_value") or 0
        discount = round(min(discount, total), 2)
    tax = round((total - discount) * tax_rate, 2)
    return OrderAmounts(
        unit_price=unit_price,
        quantity=quantity,
        total_amount=total,
        discount_amount=discount,
        tax_amount=tax,
        final_amount=round(total + tax - discount, 2),
    ).model_dump()


def append_timestamped(existing: Optional[str], text: str, stamp: str, separator: str = "\n") -> str:
    entry = f"[{stamp}] {text}"
    return f"{existing}{separator}{entry}" if existing else entry


class OrderService:

    def __init__(self, db, notifier=None, events=None):
        self.db = db
        self.notifier = notifier
        self.events = events

    async def get_order(self, order_id: str) -> Dict:
        order = await self.db.orders.find_one({"id": order_id}, {"_id": 0})
        if not order:
            raise NotFound("Order not found", code="order_not_found")
        return order

    # ════════════════════════════════════════════════════════════════════════
    # CHECKOUT
    # ════════════════════════════════════════════════════════════════════════

    async def checkout(
        self,
        customer_id: str,
        vehicle_id: str,
        quantity: int = 1,
        dealer_id: Optional[str] = None,
        promo_code: Optional[str] = None,
        shipping_address: Optional[Dict] = None,
    ) -> Dict:
        """Creates the order in pending/pending. Stock is taken at payment."""
        if quantity < 1:
            raise InvalidInput("quantity must be at least 1", code="invalid_quantity")

        vehicle = await self.db.vehicles.find_one({"id": vehicle_id}, {"_id": 0})
        if not vehicle or not vehicle.get("is_active", True):
            raise NotFound("Vehicle not found", code="vehicle_not_found")
        if vehicle.get("stock_quantity", 0) < quantity:
            raise ConflictState(
                f"Only {vehicle.get('stock_quantity', 0)} units available in stock",
                code="out_of_stock",
                status_code=400
            )

        if dealer_id:
            dealer = await get_dealer(self.db, dealer_id)
            if not dealer:
                raise NotFound("Dealer not found", code="dealer_not_found")

        promo = None
        if promo_code:
            promo = await self.db.promo_codes.find_one(
                {"code": promo_code.upper(), "is_active": True}, {"_id": 0}
            )
            if not promo:
                raise InvalidInput("Invalid or expired promo code", code="invalid_promo_code")

        amounts = compute_amounts(float(vehicle.get("price", 0)), quantity, promo)
        now = now_iso()
        order = {
            "id": str(uuid.uuid4()),
            "customer_id": customer_id,
            "dealer_id": dealer_id,
            "vehicle_id": vehicle_id,
            **amounts,
            "promo_code": promo_code.upper() if promo else None,
            "shipping_address": shipping_address,
            "status": "pending",
            "payment_status": "pending",
            "payment_id": None,
            "paid_at": None,
            "commission_rate": None,
            "dealer_commission_amount": 0.0,
            "commission_paid": False,
            "commission_paid_at": None,
            "payout_id": None,
            "confirmed_at": None,
            "shipped_at": None,
            "delivered_at": None,
            "cancelled_at": None,
            "cancellation_reason": None,
            "tracking_number": None,
            "notes": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.db.orders.insert_one(order)
        order.pop("_id", None)

        logger.info(f"[ORDER_STATE] created {order['id']} vehicle={vehicle_id} qty={quantity} "
                    f"final={order['final_amount']}")
        return order

    # ════════════════════════════════════════════════════════════════════════
    # PAYMENT
    # ════════════════════════════════════════════════════════════════════════

    async def confirm_payment(self, order_id: str, payment_id: str, confirmed_by: str = "system") -> Dict:
        """
        🔒 Payment settled: take stock, flag paid, confirm, freeze commission.

        1. Atomic stock decrement guarded by stock_quantity >= quantity
        2. Compare-and-set payment_status pending -> paid (status pending ->
           confirmed); if another call won, the stock taken in 1 is returned
        """
        order = await self.get_order(order_id)
        if order.get("payment_status") != "pending":
            raise ConflictState(
                f"Payment for order {order_id} is already {order.get('payment_status')}",
                code="payment_already_settled"
            )
        if order.get("status") in TERMINAL_ORDER_STATUSES:
            raise ConflictState(f"Order {order_id} is {order.get('status')}", code="order_terminal")

        qty = order.get("quantity", 1)
        taken = await self.db.vehicles.update_one(
            {"id": order["vehicle_id"], "stock_quantity": {"$gte": qty}},
            {"$inc": {"stock_quantity": -qty}}
        )
        if taken.modified_count == 0:
            raise ConflictState("Vehicle is out of stock", code="out_of_stock")

        rate = 0.0
        if order.get("dealer_id"):
            dealer = await get_dealer(self.db, order["dealer_id"])
            rate = effective_commission_rate(dealer) if dealer else 0.0

        now = now_iso()
        update: Dict[str, Any] = {
            "payment_status": "paid",
            "payment_id": payment_id,
            "paid_at": now,
            "commission_rate": rate,
            "dealer_commission_amount": compute_dealer_commission(order.get("final_amount", 0), rate),
            "updated_at": now,
        }
        if order.get("status") == "pending":
            update["status"] = "confirmed"
            update["confirmed_at"] = now

        result = await self.db.orders.update_one(
            {"id": order_id, "payment_status": "pending", "status": order.get("status")},
            {"$set": update}
        )
        if result.matched_count == 0:
            await self.db.vehicles.update_one(
                {"id": order["vehicle_id"]}, {"$inc": {"stock_quantity": qty}}
            )
            raise ConflictState(
                f"Order {order_id} changed while confirming payment",
                code="concurrent_update"
            )

        updated = {**order, **update}
        logger.info(f"[ORDER_STATE] {order_id} paid payment={payment_id} "
                    f"commission={update['dealer_commission_amount']} rate={rate}")
        await log_event(self.db, "order_paid", "order", order_id, user=confirmed_by,
                        details={"payment_id": payment_id, "final_amount": order.get("final_amount"),
                                 "dealer_commission_amount": update["dealer_commission_amount"]},
                        related={"dealer_id": order.get("dealer_id"), "vehicle_id": order["vehicle_id"]})
        self._publish(updated, "order_paid")
        if update.get("status") == "confirmed":
            await self._notify_customer(updated, "confirmed")
        return updated

    async def record_payment_failure(self, order_id: str, reason: str = "", recorded_by: str = "system") -> Dict:
        """
        Payment gateway reported a failure: payment_status pending -> failed
        and the order is cancelled (no stock was taken, nothing to restore).
        Compare-and-set on both observed statuses.
        """
        order = await self.get_order(order_id)
        if order.get("payment_status") != "pending":
            raise ConflictState(
                f"Payment for order {order_id} is already {order.get('payment_status')}",
                code="payment_already_settled"
            )

        now = now_iso()
        from_status = order.get("status", "pending")
        update: Dict[str, Any] = {
            "payment_status": "failed",
            "payment_failure_reason": reason,
            "updated_at": now,
        }
        if from_status not in TERMINAL_ORDER_STATUSES:
            update["status"] = "cancelled"
            update["cancelled_at"] = now
            update["cancellation_reason"] = f"Payment failed: {reason}" if reason else "Payment failed"

        result = await self.db.orders.update_one(
            {"id": order_id, "payment_status": "pending", "status": from_status},
            {"$set": update}
        )
        if result.matched_count == 0:
            raise ConflictState(
                f"Order {order_id} changed while recording the payment failure",
                code="concurrent_update"
            )

        updated = {**order, **update}
        logger.warning(f"[ORDER_STATE] {order_id} payment failed: {reason}")
        await log_event(self.db, "order_payment_failed", "order", order_id, user=recorded_by,
                        details={"reason": reason, "old_value": from_status, "new_value": updated["status"]},
                        related={"dealer_id": order.get("dealer_id")})
        self._publish(updated, "order_payment_failed")
        if updated["status"] != from_status:
            await self._notify_customer(updated, "cancelled")
        return updated

    async def refund(self, order_id: str, refunded_by: str = "system") -> Dict:
        """Cancelled + paid -> refunded. Commission already paid out is not clawed back."""
        order = await self.get_order(order_id)
        if order.get("status") != "cancelled":
            raise ConflictState("Only cancelled orders can be refunded", code="refund_not_allowed", status_code=400)

        now = now_iso()
        result = await self.db.orders.update_one(
            {"id": order_id, "status": "cancelled", "payment_status": "paid"},
            {"$set": {"payment_status": "refunded", "refunded_at": now, "updated_at": now}}
        )
        if result.matched_count == 0:
            raise ConflictState(
                f"Order {order_id} payment is {order.get('payment_status')}, nothing to refund",
                code="refund_not_allowed",
                status_code=400
            )
        if order.get("commission_paid"):
            logger.warning(f"[ORDER_STATE] {order_id} refunded after commission payout {order.get('payout_id')}")
        await log_event(self.db, "order_refunded", "order", order_id, user=refunded_by,
                        details={"final_amount": order.get("final_amount"),
                                 "commission_paid": order.get("commission_paid", False)},
                        related={"payout_id": order.get("payout_id")})
        return {**order, "payment_status": "refunded", "refunded_at": now, "updated_at": now}

    # ════════════════════════════════════════════════════════════════════════
    # STATUS TRANSITIONS
    # ════════════════════════════════════════════════════════════════════════

    async def update_status(
        self,
        order_id: str,
        status: str,
        actor: Dict,
        cancellation_reason: Optional[str] = None,
        tracking_number: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Dict:
        """
        🔒 The only way to move an order along its lifecycle.

        actor = {"role": "admin"|"dealer", "dealer_id": ..., "email": ...}
        Dealers may only move their own orders to processing/shipped/delivered.
        """
        if not status:
            raise InvalidInput("Status is required", code="missing_fields")
        if status not in VALID_ORDER_STATUSES:
            raise InvalidInput("Invalid status", code="invalid_status")

        order = await self.get_order(order_id)

        role = actor.get("role")
        if role == "dealer":
            if not order.get("dealer_id") or order.get("dealer_id") != actor.get("dealer_id"):
                raise Forbidden("You can only update your own orders", code="not_order_owner")
            if status not in DEALER_ALLOWED_STATUSES:
                raise Forbidden(
                    "Dealers can only update order to processing, shipped, or delivered",
                    code="status_not_allowed"
                )
        elif role != "admin":
            raise Forbidden("Only dealers and admins can update order status")

        from_status = order.get("status", "pending")
        validate_order_transition(order_id, from_status, status)

        if status == "cancelled" and not (cancellation_reason or "").strip():
            raise InvalidInput("cancellation_reason is required to cancel an order", code="missing_cancellation_reason")

        now = now_iso()
        update: Dict[str, Any] = {"status": status, "updated_at": now}
        if status in STATUS_TIMESTAMPS:
            update[STATUS_TIMESTAMPS[status]] = now
        if status == "cancelled":
            update["cancellation_reason"] = cancellation_reason.strip()
        if tracking_number and status == "shipped":
            update["tracking_number"] = tracking_number
        if notes:
            update["notes"] = append_timestamped(order.get("notes"), notes, now)

        result = await self.db.orders.update_one(
            {"id": order_id, "status": from_status},
            {"$set": update}
        )
        if result.matched_count == 0:
            raise ConflictState(
                f"Order {order_id} was modified concurrently, reload and retry",
                code="concurrent_update"
            )

        # Stock taken at payment goes back to the vehicle
        if status == "cancelled" and order.get("payment_status") == "paid":
            await self.db.vehicles.update_one(
                {"id": order["vehicle_id"]},
                {"$inc": {"stock_quantity": order.get("quantity", 1)}}
            )
            logger.info(f"[ORDER_STATE] {order_id} restored {order.get('quantity', 1)} unit(s) "
                        f"to vehicle {order['vehicle_id']}")

        updated = {**order, **update}
        logger.info(f"[ORDER_STATE] {order_id} {from_status} -> {status} by {actor.get('email', role)}")
        await log_event(self.db, "order_status", "order", order_id, user=actor.get("email", role or "system"),
                        details={"old_value": from_status, "new_value": status,
                                 "cancellation_reason": update.get("cancellation_reason")},
                        related={"dealer_id": order.get("dealer_id")})
        self._publish(updated, "order_status")
        await self._notify_customer(updated, status)
        return updated

    async def track(self, order_id: str) -> Dict:
        """Status timeline for the customer tracking page"""
        order = await self.get_order(order_id)
        timeline = [{"status": "pending", "at": order.get("created_at")}]
        for status in ["confirmed", "processing", "shipped", "delivered", "cancelled"]:
            field = STATUS_TIMESTAMPS.get(status)
            if field and order.get(field):
                timeline.append({"status": status, "at": order[field]})
        if order.get("status") == "processing":
            timeline.append({"status": "processing", "at": order.get("updated_at")})
        timeline.sort(key=lambda e: e["at"] or "")
        return {
            "order_id": order_id,
            "status": order.get("status"),
            "payment_status": order.get("payment_status"),
            "tracking_number": order.get("tracking_number"),
            "cancellation_reason": order.get("cancellation_reason"),
            "timeline": timeline,
        }

    # ════════════════════════════════════════════════════════════════════════
    # SIDE EFFECTS
    # ════════════════════════════════════════════════════════════════════════

    def _publish(self, order: Dict, event_type: str) -> None:
        if self.events is not None:
            self.events.publish("orders", event_type, order["id"], {
                "status": order.get("status"),
                "payment_status": order.get("payment_status"),
                "dealer_id": order.get("dealer_id"),
            })

    async def _notify_customer(self, order: Dict, status: str) -> None:
        if self.notifier is None:
            return
        customer = await self.db.users.find_one({"id": order.get("customer_id")}, {"_id": 0, "id": 1, "email": 1})
        await self.notifier.notify(
            user_id=order.get("customer_id"),
            title="Order Status Update",
            message=f"Your order {order['id']} is now {status}.",
            type="order",
            data={"order_id": order["id"], "status": status},
            email_to=(customer or {}).get("email"),
            template_id="order_status",
            template_props={"order_id": order["id"], "status": status,
                            "tracking_number": order.get("tracking_number"),
                            "cancellation_reason": order.get("cancellation_reason")},
        )
