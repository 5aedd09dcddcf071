"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  EV Dealer Hub - Lead Assignment                                             ║
║                                                                              ║
║  new → assigned → contacted → qualified → converted                          ║
║  closed from any non-terminal state                                          ║
║                                                                              ║
║  INVARIANTS:                                                                 ║
║  - a lead is assigned to exactly one dealer: the assignment write filters    ║
║    on assigned_to=None AND status=new                                        ║
║  - assigned_to and status change together, never one without the other      ║
║  - notes are append-only                                                     ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
import uuid
from typing import Optional, Dict, Any, List

from pymongo import ReturnDocument

from config import now_iso
from services.dealers import get_dealer_or_raise, get_routable_dealer_or_raise
from services.errors import NotFound, InvalidInput, Forbidden, ConflictState
from services.event_logger import log_event

logger = logging.getLogger("leads")


# ════════════════════════════════════════════════════════════════════════════
# VALID STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════════

VALID_LEAD_STATUSES = ["new", "assigned", "contacted", "qualified", "converted", "closed"]

# Forward order of the working pipeline. Skipping ahead is allowed,
# going back is not (admins can force it).
LEAD_PIPELINE = ["assigned", "contacted", "qualified", "converted"]

TERMINAL_LEAD_STATUSES = ["converted", "closed"]

STATUS_TIMESTAMPS = {
    "contacted": "contacted_at",
    "qualified": "qualified_at",
    "converted": "converted_at",
    "closed": "closed_at",
}


def validate_lead_transition(lead_id: str, from_status: str, to_status: str, force: bool = False) -> None:
    if from_status in TERMINAL_LEAD_STATUSES and not force:
        raise ConflictState(f"Lead {lead_id} is {from_status} and can no longer change", code="lead_terminal")
    if force:
        return
    if to_status == "closed":
        return
    if to_status == "new" or from_status == "new":
        raise ConflictState(
            "Use assignment to move a lead in or out of 'new'",
            code="invalid_transition",
            status_code=400
        )
    if LEAD_PIPELINE.index(to_status) <= LEAD_PIPELINE.index(from_status):
        raise ConflictState(
            f"Invalid lead transition from '{from_status}' to '{to_status}'",
            code="invalid_transition",
            status_code=400
        )


def append_note(existing: Optional[str], text: str, stamp: str) -> str:
    """[timestamp] text, separated from previous entries by a blank line"""
    entry = f"[{stamp}] {text.strip()}"
    return f"{existing}\n\n{entry}" if existing else entry


class LeadService:

    def __init__(self, db, notifier=None, events=None):
        self.db = db
        self.notifier = notifier
        self.events = events

    async def get_lead(self, lead_id: str) -> Dict:
        lead = await self.db.leads.find_one({"id": lead_id}, {"_id": 0})
        if not lead:
            raise NotFound("Lead not found", code="lead_not_found")
        return lead

    # ════════════════════════════════════════════════════════════════════════
    # INBOUND
    # ════════════════════════════════════════════════════════════════════════

    async def create_lead(self, data: Dict, customer_id: Optional[str] = None) -> Dict:
        now = now_iso()
        lead = {
            "id": str(uuid.uuid4()),
            "name": data["name"].strip(),
            "email": data["email"],
            "phone": data.get("phone", ""),
            "subject": data.get("subject", ""),
            "message": data.get("message", ""),
            "priority": data.get("priority", "normal"),
            "source": data.get("source", "contact"),
            "vehicle_id": data.get("vehicle_id"),
            "customer_id": customer_id,
            "status": "new",
            "assigned_to": None,
            "assigned_at": None,
            "assigned_by": None,
            "notes": None,
            "lost_reason": None,
            "created_at": now,
            "updated_at": now,
        }
        await self.db.leads.insert_one(lead)
        lead.pop("_id", None)

        logger.info(f"[LEAD] new {lead['id']} source={lead['source']} priority={lead['priority']}")
        await log_event(self.db, "lead_created", "lead", lead["id"],
                        details={"source": lead["source"], "priority": lead["priority"]})
        self._publish(lead, "lead_created")
        return lead

    # ════════════════════════════════════════════════════════════════════════
    # ASSIGNMENT
    # ════════════════════════════════════════════════════════════════════════

    async def assign_lead(self, lead_id: str, dealer_id: str, notes: Optional[str] = None,
                          assigned_by: str = "system") -> Dict:
        """
        🔒 Assigns a new lead to one dealer.

        The filter {assigned_to: None, status: new} makes the write itself the
        check: of two concurrent assignments exactly one matches.

        Raises:
            InvalidInput: missing ids
            NotFound: unknown lead or dealer
            ConflictState(dealer_inactive, 400): dealer not approved/active
            ConflictState(lead_already_assigned, 400): lost the race / not new
        """
        if not lead_id or not dealer_id:
            raise InvalidInput("Missing required fields", code="missing_fields")

        await self.get_lead(lead_id)
        dealer = await get_routable_dealer_or_raise(self.db, dealer_id)

        now = now_iso()
        update: Dict[str, Any] = {
            "assigned_to": dealer_id,
            "status": "assigned",
            "assigned_at": now,
            "assigned_by": assigned_by,
            "updated_at": now,
        }
        lead = await self.db.leads.find_one_and_update(
            {"id": lead_id, "assigned_to": None, "status": "new"},
            {"$set": update},
            return_document=ReturnDocument.AFTER
        )
        if not lead:
            raise ConflictState(
                "Lead is already assigned",
                code="lead_already_assigned",
                status_code=400
            )
        lead.pop("_id", None)

        if notes and notes.strip():
            lead["notes"] = append_note(lead.get("notes"), notes, now)
            await self.db.leads.update_one({"id": lead_id}, {"$set": {"notes": lead["notes"]}})

        logger.info(f"[LEAD] {lead_id} assigned to dealer {dealer_id} by {assigned_by}")
        await log_event(self.db, "lead_assigned", "lead", lead_id, user=assigned_by,
                        details={"dealer_id": dealer_id}, related={"dealer_id": dealer_id})
        self._publish(lead, "lead_assigned")

        if self.notifier is not None:
            await self.notifier.notify(
                user_id=dealer.get("user_id"),
                title="New Lead Assigned",
                message=f"A new lead from {lead['name']} has been assigned to you.",
                type="lead_assigned",
                priority="high" if lead.get("priority") == "urgent" else "normal",
                data={"lead_id": lead_id},
                email_to=dealer.get("business_email"),
                template_id="lead_assigned",
                template_props={
                    "lead_name": lead["name"],
                    "lead_email": lead.get("email", ""),
                    "lead_phone": lead.get("phone", ""),
                    "subject": lead.get("subject", ""),
                    "priority": lead.get("priority", "normal"),
                    "source": lead.get("source", ""),
                },
            )
        return lead

    async def unassign_lead(self, lead_id: str, unassigned_by: str = "system") -> Dict:
        """Returns an assigned lead to the pool. Leads already worked on stay put."""
        if not lead_id:
            raise InvalidInput("Missing required fields", code="missing_fields")
        current = await self.get_lead(lead_id)

        lead = await self.db.leads.find_one_and_update(
            {"id": lead_id, "status": "assigned"},
            {"$set": {
                "assigned_to": None,
                "status": "new",
                "assigned_at": None,
                "assigned_by": None,
                "updated_at": now_iso(),
            }},
            return_document=ReturnDocument.AFTER
        )
        if not lead:
            raise ConflictState(
                f"Only assigned leads can be unassigned (lead is {current.get('status')})",
                code="lead_not_assigned",
                status_code=400
            )
        lead.pop("_id", None)

        logger.info(f"[LEAD] {lead_id} unassigned from dealer {current.get('assigned_to')}")
        await log_event(self.db, "lead_unassigned", "lead", lead_id, user=unassigned_by,
                        details={"dealer_id": current.get("assigned_to")},
                        related={"dealer_id": current.get("assigned_to")})
        self._publish(lead, "lead_unassigned")
        return lead

    # ════════════════════════════════════════════════════════════════════════
    # PIPELINE
    # ════════════════════════════════════════════════════════════════════════

    def _check_access(self, lead: Dict, actor: Dict) -> None:
        role = actor.get("role")
        if role == "admin":
            return
        if role == "dealer" and lead.get("assigned_to") and lead["assigned_to"] == actor.get("dealer_id"):
            return
        raise Forbidden("You can only work on leads assigned to you", code="not_lead_owner")

    async def update_status(self, lead_id: str, status: str, actor: Dict,
                            lost_reason: Optional[str] = None, force: bool = False) -> Dict:
        if not status:
            raise InvalidInput("Status is required", code="missing_fields")
        if status not in VALID_LEAD_STATUSES:
            raise InvalidInput("Invalid status", code="invalid_status")

        lead = await self.get_lead(lead_id)
        self._check_access(lead, actor)
        if force and actor.get("role") != "admin":
            raise Forbidden("Only admins can force a lead status", code="force_not_allowed")

        from_status = lead.get("status", "new")
        validate_lead_transition(lead_id, from_status, status, force=force)
        if status in LEAD_PIPELINE and not lead.get("assigned_to"):
            raise ConflictState("Lead must be assigned to a dealer first", code="lead_not_assigned", status_code=400)

        now = now_iso()
        update: Dict[str, Any] = {"status": status, "updated_at": now}
        if status in STATUS_TIMESTAMPS:
            update[STATUS_TIMESTAMPS[status]] = now
        if status == "closed" and lost_reason:
            update["lost_reason"] = lost_reason
        if status == "new":
            update.update({"assigned_to": None, "assigned_at": None, "assigned_by": None})

        result = await self.db.leads.update_one(
            {"id": lead_id, "status": from_status},
            {"$set": update}
        )
        if result.matched_count == 0:
            raise ConflictState(
                f"Lead {lead_id} was modified concurrently, reload and retry",
                code="concurrent_update"
            )
        lead.pop("_id", None)

        updated = {**lead, **update}
        actor_name = actor.get("email", actor.get("role", "system"))
        logger.info(f"[LEAD] {lead_id} {from_status} -> {status} by {actor_name}" + (" (forced)" if force else ""))
        await log_event(self.db, "lead_status", "lead", lead_id, user=actor_name,
                        details={"old_value": from_status, "new_value": status,
                                 "forced": force, "lost_reason": lost_reason},
                        related={"dealer_id": lead.get("assigned_to")})
        self._publish(updated, "lead_status")

        if self.notifier is not None and actor.get("role") == "admin" and lead.get("assigned_to"):
            dealer = await self.db.dealers.find_one({"id": lead["assigned_to"]}, {"_id": 0, "user_id": 1})
            if dealer:
                await self.notifier.notify(
                    user_id=dealer.get("user_id"),
                    title="Lead Updated",
                    message=f"Lead {lead['name']} is now {status}.",
                    type="lead_update",
                    data={"lead_id": lead_id, "status": status},
                )
        return updated

    async def add_note(self, lead_id: str, text: str, actor: Dict) -> Dict:
        if not text or not text.strip():
            raise InvalidInput("Note cannot be empty", code="missing_fields")
        lead = await self.get_lead(lead_id)
        self._check_access(lead, actor)

        now = now_iso()
        notes = append_note(lead.get("notes"), text, now)
        # Compare on the notes we read so a concurrent append is not lost
        result = await self.db.leads.update_one(
            {"id": lead_id, "notes": lead.get("notes")},
            {"$set": {"notes": notes, "updated_at": now}}
        )
        if result.matched_count == 0:
            raise ConflictState(
                f"Lead {lead_id} was modified concurrently, reload and retry",
                code="concurrent_update"
            )
        await log_event(self.db, "lead_note", "lead", lead_id,
                        user=actor.get("email", actor.get("role", "system")),
                        related={"dealer_id": lead.get("assigned_to")})
        return {**lead, "notes": notes, "updated_at": now}

    # ════════════════════════════════════════════════════════════════════════
    # LISTS
    # ════════════════════════════════════════════════════════════════════════

    async def list_for_dealer(self, dealer_id: str, status: Optional[str] = None, limit: int = 500) -> Dict:
        await get_dealer_or_raise(self.db, dealer_id)
        query: Dict[str, Any] = {"assigned_to": dealer_id}
        if status:
            query["status"] = status
        leads = await self.db.leads.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)

        all_statuses = await self.db.leads.find(
            {"assigned_to": dealer_id}, {"_id": 0, "status": 1}
        ).to_list(None)
        stats = {s: 0 for s in LEAD_PIPELINE + ["closed"]}
        for lead in all_statuses:
            stats[lead.get("status")] = stats.get(lead.get("status"), 0) + 1
        stats["total"] = len(all_statuses)
        return {"leads": leads, "stats": stats}

    async def list_all(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        source: Optional[str] = None,
        assigned_to: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 500,
    ) -> List[Dict]:
        query: Dict[str, Any] = {}
        if status:
            query["status"] = status
        if priority:
            query["priority"] = priority
        if source:
            query["source"] = source
        if assigned_to:
            query["assigned_to"] = assigned_to
        if search:
            pattern = {"$regex": re.escape(search), "$options": "i"}
            query["$or"] = [{"name": pattern}, {"email": pattern}, {"subject": pattern}]
        return await self.db.leads.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)

    def _publish(self, lead: Dict, event_type: str) -> None:
        if self.events is not None:
            self.events.publish("leads", event_type, lead["id"], {
                "status": lead.get("status"),
                "assigned_to": lead.get("assigned_to"),
            })
