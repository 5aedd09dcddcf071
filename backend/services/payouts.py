"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Payout Workflow                                             ║
║                                                                              ║
║  THE ONLY MODULE that sets orders.commission_paid = true                     ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - an order is claimed by at most one payout (claim filters                  ║
║    commission_paid=false, evaluated atomically per order)                    ║
║  - payout.amount = sum(dealer_commission_amount) of its claimed orders > 0   ║
║  - orders_included never changes after creation                              ║
║  - completed is terminal, processed_at stamped on entry                      ║
║  - no payout row without claimed orders, no claimed order without payout     ║
║                                                                              ║
║  Claim + insert run in one multi-document transaction when the deployment    ║
║  supports it (replica set / mongos). On a standalone server the claim is     ║
║  released again if the insert fails.                                         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Optional, Dict, Any, List

from pymongo.errors import PyMongoError, OperationFailure, ConfigurationError

from config import now_iso, today_iso, format_inr
from services.commission import (
    validate_range,
    created_at_bounds,
    unpaid_commission_filter,
    sum_commission,
    outstanding_commission,
)
from services.dealers import get_dealer_or_raise, effective_commission_rate
from services.errors import NotFound, InvalidInput, ConflictState, UpstreamFailure
from services.event_logger import log_event

logger = logging.getLogger("payouts")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_PAYOUT_STATUSES = ["pending", "processing", "completed", "failed"]

VALID_PAYOUT_TRANSITIONS = {
    "pending": ["processing", "failed"],
    "processing": ["completed", "failed"],
    "completed": [],  # TERMINAL - money has left
    "failed": ["processing"],  # Can retry
}

STATUS_MESSAGES = {
    "completed": "has been completed and transferred to your bank account",
    "failed": "has failed. Please contact support",
}

# IllegalOperation: "Transaction numbers are only allowed on a replica set member or mongos"
TRANSACTIONS_UNSUPPORTED_CODES = {20}


def transactions_unsupported(error: PyMongoError) -> bool:
    if isinstance(error, ConfigurationError):
        return True
    return isinstance(error, OperationFailure) and error.code in TRANSACTIONS_UNSUPPORTED_CODES


def validate_payout_transition(payout_id: str, from_status: str, to_status: str, force: bool = False) -> None:
    """
    Raises ConflictState when from_status -> to_status is not allowed.
    force (admin override) opens every move between non-terminal states.
    Same-status updates are allowed on non-terminal payouts.
    """
    if not VALID_PAYOUT_TRANSITIONS.get(from_status):
        raise ConflictState(
            f"Payout {payout_id} is {from_status} and can no longer change",
            code="payout_terminal"
        )
    if from_status == to_status:
        return
    if force and to_status in VALID_PAYOUT_STATUSES:
        return
    valid_next = VALID_PAYOUT_TRANSITIONS[from_status]
    if to_status not in valid_next:
        raise ConflictState(
            f"Invalid payout transition from '{from_status}' to '{to_status}'. "
            f"Valid transitions from '{from_status}': {valid_next}",
            code="invalid_transition"
        )


class PayoutService:

    def __init__(self, db, notifier=None, events=None, client=None):
        self.db = db
        self.notifier = notifier
        self.events = events
        # Motor client for sessions; None means claim + release only
        self.client = client
        self.use_transactions = client is not None

    # ════════════════════════════════════════════════════════════════════════
    # READ
    # ════════════════════════════════════════════════════════════════════════

    async def list_payouts(
        self,
        dealer_id: Optional[str] = None,
        status: Optional[str] = None,
        from_date: Optional[str] = None,
        to_date: Optional[str] = None,
        limit: int = 500,
    ) -> List[Dict]:
        query: Dict[str, Any] = {}
        if dealer_id:
            query["dealer_id"] = dealer_id
        if status:
            query["status"] = status
        created = created_at_bounds(from_date, to_date)
        if created:
            query["created_at"] = created

        payouts = await self.db.dealer_payouts.find(query, {"_id": 0}) \
            .sort("created_at", -1) \
            .to_list(limit)

        dealer_ids = list({p["dealer_id"] for p in payouts})
        dealers = await self.db.dealers.find(
            {"id": {"$in": dealer_ids}},
            {"_id": 0, "id": 1, "business_name": 1, "business_email": 1, "business_phone": 1}
        ).to_list(len(dealer_ids) or 1)
        dmap = {d["id"]: d for d in dealers}
        for p in payouts:
            p["dealer"] = dmap.get(p["dealer_id"])
        return payouts

    async def get_payout(self, payout_id: str) -> Dict:
        payout = await self.db.dealer_payouts.find_one({"id": payout_id}, {"_id": 0})
        if not payout:
            raise NotFound("Payout not found", code="payout_not_found")
        return payout

    async def summary(self, dealer_id: str) -> Dict:
        """Dealer payment summary, computed from current state on every call"""
        payouts = await self.db.dealer_payouts.find(
            {"dealer_id": dealer_id}, {"_id": 0, "amount": 1, "status": 1}
        ).to_list(None)

        totals = {"completed": 0.0, "pending": 0.0, "processing": 0.0, "failed": 0.0}
        for p in payouts:
            totals[p.get("status", "pending")] = totals.get(p.get("status", "pending"), 0.0) + (p.get("amount") or 0)

        return {
            "dealer_id": dealer_id,
            "payout_count": len(payouts),
            "total_paid": round(totals["completed"], 2),
            "total_pending": round(totals["pending"] + totals["processing"], 2),
            "total_failed": round(totals["failed"], 2),
            "unpaid_commission": await outstanding_commission(self.db, dealer_id),
        }

    # ════════════════════════════════════════════════════════════════════════
    # CREATE (claim orders + insert payout)
    # ════════════════════════════════════════════════════════════════════════

    async def create_payout(
        self,
        dealer_id: str,
        from_date: str,
        to_date: str,
        notes: Optional[str] = None,
        created_by: str = "system",
    ) -> Dict:
        """
        🔒 Creates a payout over every unpaid, paid order of dealer_id in the
        inclusive date range.

        1. Claim: one update_many flips commission_paid false -> true and
           records the payout id on each order. Two concurrent calls can
           never both claim the same order.
        2. Sum dealer_commission_amount over what this call claimed.
        3. Insert the payout row.
        With transactions, 1-3 commit together or not at all. Without them,
        a zero total or a failed insert releases the claim before raising.

        Raises:
            InvalidInput: bad/missing dates
            NotFound: unknown dealer
            ConflictState(no_unpaid_commissions, 404): nothing to claim
            ConflictState(zero_commission_amount, 400): claimed orders sum to 0
            UpstreamFailure: datastore error (nothing left claimed)
        """
        if not dealer_id:
            raise InvalidInput("Missing required fields", code="missing_fields")
        validate_range(from_date, to_date)
        dealer = await get_dealer_or_raise(self.db, dealer_id)

        payout_id = str(uuid.uuid4())
        now = now_iso()
        args = (dealer, payout_id, from_date, to_date, now, notes, created_by)

        payout = None
        if self.use_transactions:
            payout = await self._create_in_transaction(*args)
        if payout is None:
            payout = await self._create_with_release(*args)
        payout.pop("_id", None)

        order_ids = payout["orders_included"]["order_ids"]
        total = payout["amount"]
        logger.info(
            f"[PAYOUT] created {payout_id} dealer={dealer_id} amount={total} "
            f"orders={len(order_ids)} range={from_date}..{to_date}"
        )
        await log_event(self.db, "payout_created", "payout", payout_id, user=created_by,
                        details={"amount": total, "count": len(order_ids),
                                 "from_date": from_date, "to_date": to_date},
                        related={"dealer_id": dealer_id, "order_ids": order_ids})
        if self.events is not None:
            self.events.publish("payouts", "payout_created", payout_id,
                                {"dealer_id": dealer_id, "amount": total, "status": "pending"})

        if self.notifier is not None:
            await self.notifier.notify(
                user_id=dealer.get("user_id"),
                title="New Payout Created",
                message=f"A new payout of ₹{format_inr(total)} has been created for your account.",
                type="payout",
                data={"payout_id": payout_id, "amount": total},
                email_to=dealer.get("business_email"),
                template_id="payout_created",
                template_props={"amount": total, "orders_count": len(order_ids),
                                "dealer_name": dealer.get("business_name", "")},
            )

        return payout

    async def _create_in_transaction(self, dealer, payout_id, from_date, to_date, now, notes, created_by):
        """
        Claim + insert inside one transaction. Any exception aborts it, so a
        ConflictState leaves every order untouched.
        Returns None (and stops trying) when the deployment has no transactions.
        """
        try:
            async with await self.client.start_session() as session:
                async with session.start_transaction():
                    claimed = await self._claim(dealer["id"], payout_id, from_date, to_date, now, session=session)
                    payout = self._payout_document(dealer, payout_id, claimed, from_date, to_date,
                                                   now, notes, created_by)
                    await self.db.dealer_payouts.insert_one(payout, session=session)
        except PyMongoError as e:
            if transactions_unsupported(e):
                logger.warning(f"[PAYOUT] transactions unavailable, using claim release instead: {e}")
                self.use_transactions = False
                return None
            logger.error(f"[PAYOUT] transaction aborted dealer={dealer['id']} payout={payout_id}: {e}")
            raise UpstreamFailure("Failed to create payout", code="payout_transaction_failed")
        return payout

    async def _create_with_release(self, dealer, payout_id, from_date, to_date, now, notes, created_by):
        """Claim, then insert; undoes the claim when the payout cannot be written"""
        dealer_id = dealer["id"]
        try:
            claimed = await self._claim(dealer_id, payout_id, from_date, to_date, now)
        except ConflictState as e:
            if e.code == "zero_commission_amount":
                await self._release_claim(payout_id)
            raise
        except PyMongoError as e:
            logger.error(f"[PAYOUT] claim failed dealer={dealer_id}: {e}")
            await self._release_claim(payout_id)
            raise UpstreamFailure("Failed to create payout", code="payout_claim_failed")

        payout = self._payout_document(dealer, payout_id, claimed, from_date, to_date, now, notes, created_by)
        try:
            await self.db.dealer_payouts.insert_one(payout)
        except PyMongoError as e:
            logger.error(f"[PAYOUT] insert failed dealer={dealer_id} payout={payout_id}: {e}")
            await self._release_claim(payout_id)
            raise UpstreamFailure("Failed to create payout", code="payout_insert_failed")
        return payout

    async def _claim(self, dealer_id, payout_id, from_date, to_date, now, session=None) -> List[Dict]:
        """Tags the unpaid orders with payout_id and returns them (total > 0)"""
        claim = await self.db.orders.update_many(
            unpaid_commission_filter(dealer_id, from_date, to_date),
            {"$set": {
                "commission_paid": True,
                "commission_paid_at": now,
                "payout_id": payout_id,
                "updated_at": now
            }},
            session=session
        )
        if claim.modified_count == 0:
            raise ConflictState(
                "No unpaid commissions found for the selected period",
                code="no_unpaid_commissions",
                status_code=404
            )

        # Total over exactly what this call claimed
        claimed = await self.db.orders.find(
            {"payout_id": payout_id},
            {"_id": 0, "id": 1, "dealer_commission_amount": 1, "created_at": 1},
            session=session
        ).sort("created_at", 1).to_list(None)
        if sum_commission(claimed) <= 0:
            raise ConflictState(
                "No commission amount to payout",
                code="zero_commission_amount",
                status_code=400
            )
        return claimed

    @staticmethod
    def _payout_document(dealer, payout_id, claimed, from_date, to_date, now, notes, created_by) -> Dict:
        order_ids = [o["id"] for o in claimed]
        return {
            "id": payout_id,
            "dealer_id": dealer["id"],
            "amount": sum_commission(claimed),
            "commission_rate": effective_commission_rate(dealer),
            "orders_included": {
                "order_ids": order_ids,
                "count": len(order_ids),
                "from_date": from_date,
                "to_date": to_date,
            },
            "status": "pending",
            "notes": notes,
            "payout_date": today_iso(),
            "razorpay_payout_id": None,
            "bank_reference": None,
            "processed_at": None,
            "created_by": created_by,
            "created_at": now,
            "updated_at": now,
        }

    async def _release_claim(self, payout_id: str) -> int:
        """Puts orders claimed under payout_id back into the unpaid pool."""
        try:
            result = await self.db.orders.update_many(
                {"payout_id": payout_id},
                {"$set": {
                    "commission_paid": False,
                    "commission_paid_at": None,
                    "payout_id": None,
                    "updated_at": now_iso()
                }}
            )
        except PyMongoError as e:
            # Orders stay tagged with a payout id that has no row;
            # find them with {"payout_id": payout_id}.
            logger.critical(f"[PAYOUT] release of claim {payout_id} failed: {e}")
            raise UpstreamFailure("Failed to create payout", code="payout_release_failed")
        if result.modified_count:
            logger.warning(f"[PAYOUT] released {result.modified_count} orders from claim {payout_id}")
        return result.modified_count

    # ════════════════════════════════════════════════════════════════════════
    # STATUS UPDATE
    # ════════════════════════════════════════════════════════════════════════

    async def update_status(
        self,
        payout_id: str,
        status: str,
        razorpay_payout_id: Optional[str] = None,
        bank_reference: Optional[str] = None,
        notes: Optional[str] = None,
        force: bool = False,
        updated_by: str = "system",
    ) -> Dict:
        if not payout_id or not status:
            raise InvalidInput("Missing required fields", code="missing_fields")
        if status not in VALID_PAYOUT_STATUSES:
            raise InvalidInput("Invalid status", code="invalid_status")

        current = await self.get_payout(payout_id)
        from_status = current.get("status", "pending")
        validate_payout_transition(payout_id, from_status, status, force=force)

        now = now_iso()
        update: Dict[str, Any] = {"status": status, "updated_at": now}
        if status == "completed" and from_status != "completed":
            update["processed_at"] = now
        if razorpay_payout_id:
            update["razorpay_payout_id"] = razorpay_payout_id
        if bank_reference:
            update["bank_reference"] = bank_reference
        if notes:
            update["notes"] = notes

        # Compare-and-set on the status we validated against
        result = await self.db.dealer_payouts.update_one(
            {"id": payout_id, "status": from_status},
            {"$set": update}
        )
        if result.matched_count == 0:
            raise ConflictState(
                f"Payout {payout_id} was modified concurrently, reload and retry",
                code="concurrent_update"
            )

        updated = {**current, **update}
        changed = from_status != status

        logger.info(f"[PAYOUT] {payout_id} {from_status} -> {status}" + (" (forced)" if force else ""))
        await log_event(self.db, "payout_status", "payout", payout_id, user=updated_by,
                        details={"old_value": from_status, "new_value": status, "forced": force,
                                 "bank_reference": bank_reference},
                        related={"dealer_id": current["dealer_id"]})

        if changed:
            if self.events is not None:
                self.events.publish("payouts", "payout_status", payout_id,
                                    {"dealer_id": current["dealer_id"], "status": status,
                                     "amount": current.get("amount")})
            await self._notify_status(updated, status)

        return updated

    async def _notify_status(self, payout: Dict, status: str) -> None:
        if self.notifier is None:
            return
        dealer = await self.db.dealers.find_one(
            {"id": payout["dealer_id"]}, {"_id": 0, "user_id": 1, "business_email": 1}
        )
        if not dealer:
            logger.warning(f"[PAYOUT] dealer {payout['dealer_id']} missing, no status notification")
            return

        amount = payout.get("amount") or 0
        status_message = STATUS_MESSAGES.get(status, f"is now {status}")
        await self.notifier.notify(
            user_id=dealer.get("user_id"),
            title="Payout Status Update",
            message=f"Your payout of ₹{format_inr(amount)} {status_message}.",
            type="payout",
            priority="high" if status == "failed" else "normal",
            data={"payout_id": payout["id"], "amount": amount, "status": status},
            email_to=dealer.get("business_email"),
            template_id="payout_status",
            template_props={"amount": amount, "status": status, "status_message": status_message,
                            "bank_reference": payout.get("bank_reference")},
        )
