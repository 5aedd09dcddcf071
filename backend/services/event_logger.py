"""
EV Dealer Hub - Event Logger

Audit trail for financial and routing actions.
Single function to call from any service.
"""

import uuid
import logging
from pymongo.errors import PyMongoError
from config import now_iso

logger = logging.getLogger("event_logger")


async def log_event(
    db,
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. payout_created, lead_assigned, order_status
        entity_type: payout | lead | order | dealer | availability | test_ride
        entity_id: ID of the primary entity
        user: email or id of the principal performing the action
        details: free-form dict (old_value, new_value, amount, etc.)
        related: linked entity IDs (dealer_id, order_ids, etc.)

    The audit row is written after the state change it describes; a failure
    here is logged and never undoes that change.
    """
    try:
        await db.event_log.insert_one({
            "id": str(uuid.uuid4()),
            "action": action,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "user": user,
            "details": details or {},
            "related": related or {},
            "created_at": now_iso()
        })
    except PyMongoError as e:
        logger.error(f"[EVENT_LOG] failed to record {action} on {entity_type}/{entity_id}: {e}")
