"""
EV Dealer Hub - Commission Ledger

Rules:
  eligible = payment_status=paid AND commission_paid=false AND status!=cancelled
  commission accrues on payment (dealer_commission_amount frozen at paid time)
  totals are always recomputed from the orders collection, never cached
"""

import logging
from typing import Dict, List

from config import date_range_bounds, parse_date
from services.errors import InvalidInput

logger = logging.getLogger("commission")


def compute_dealer_commission(final_amount: float, rate: float) -> float:
    """Commission owed on one order, rounded to paise"""
    return round((final_amount or 0) * (rate or 0) / 100, 2)


def validate_range(from_date: str, to_date: str) -> None:
    """Both yyyy-MM-dd, from_date <= to_date"""
    if not from_date or not to_date:
        raise InvalidInput("from_date and to_date are required", code="missing_fields")
    try:
        start, end = parse_date(from_date), parse_date(to_date)
    except ValueError:
        raise InvalidInput("Dates must use the YYYY-MM-DD format", code="invalid_date")
    if start > end:
        raise InvalidInput("from_date must be on or before to_date", code="invalid_date_range")


def created_at_bounds(from_date: str = None, to_date: str = None) -> Dict:
    """
    created_at condition for an inclusive yyyy-MM-dd range where either end
    may be left open. {} when neither is given.
    """
    if from_date and to_date:
        validate_range(from_date, to_date)
    try:
        bounds = {}
        if from_date:
            bounds["$gte"] = date_range_bounds(from_date, from_date)[0]
        if to_date:
            bounds["$lt"] = date_range_bounds(to_date, to_date)[1]
    except ValueError:
        raise InvalidInput("Dates must use the YYYY-MM-DD format", code="invalid_date")
    return bounds


def unpaid_commission_filter(dealer_id: str, from_date: str, to_date: str) -> Dict:
    """
    Mongo filter for the orders whose commission is still owed to dealer_id
    in the inclusive [from_date, to_date] range.
    """
    start, end = date_range_bounds(from_date, to_date)
    return {
        "dealer_id": dealer_id,
        "payment_status": "paid",
        "commission_paid": False,
        "status": {"$ne": "cancelled"},
        "created_at": {"$gte": start, "$lt": end},
    }


def sum_commission(orders: List[Dict]) -> float:
    return round(sum(o.get("dealer_commission_amount") or 0 for o in orders), 2)


async def unpaid_commission(db, dealer_id: str, from_date: str, to_date: str) -> Dict:
    """
    Read-only ledger view: what a payout over this range would contain right
    now. Creating the payout re-evaluates the same predicate atomically.
    """
    validate_range(from_date, to_date)
    orders = await db.orders.find(
        unpaid_commission_filter(dealer_id, from_date, to_date),
        {"_id": 0, "id": 1, "dealer_commission_amount": 1, "final_amount": 1, "created_at": 1}
    ).sort("created_at", 1).to_list(None)

    return {
        "dealer_id": dealer_id,
        "from_date": from_date,
        "to_date": to_date,
        "order_ids": [o["id"] for o in orders],
        "count": len(orders),
        "total": sum_commission(orders),
        "orders": orders,
    }


async def outstanding_commission(db, dealer_id: str) -> float:
    """Unpaid commission across all dates"""
    orders = await db.orders.find(
        {"dealer_id": dealer_id, "payment_status": "paid",
         "commission_paid": False, "status": {"$ne": "cancelled"}},
        {"_id": 0, "dealer_commission_amount": 1}
    ).to_list(None)
    return sum_commission(orders)
