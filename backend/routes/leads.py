"""
EV Dealer Hub - Routes Leads
Inbound form, admin assignment, dealer pipeline and notes.
"""

from fastapi import APIRouter, Depends
from typing import Optional

from models import LeadCreate, LeadAssign, LeadStatusUpdate, LeadNote
from routes.auth import require_admin, require_dealer, require_dealer_or_admin
from routes.deps import get_lead_service

router = APIRouter(tags=["Leads"])


# ==================== PUBLIC ====================

@router.post("/leads", status_code=201)
async def submit_lead(data: LeadCreate, service=Depends(get_lead_service)):
    """Contact / inquiry / warranty / test-ride forms."""
    lead = await service.create_lead(data.model_dump(mode="json"))
    return {"message": "Thank you, we will get back to you shortly", "lead": {"id": lead["id"]}}


# ==================== ADMIN ====================

@router.get("/leads")
async def list_leads(
    status: Optional[str] = None,
    priority: Optional[str] = None,
    source: Optional[str] = None,
    assigned_to: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 500,
    user: dict = Depends(require_admin),
    service=Depends(get_lead_service),
):
    leads = await service.list_all(
        status=status, priority=priority, source=source,
        assigned_to=assigned_to, search=search, limit=min(limit, 1000),
    )
    return {"leads": leads, "count": len(leads)}


@router.post("/leads/assign")
async def assign_lead(
    data: LeadAssign,
    user: dict = Depends(require_admin),
    service=Depends(get_lead_service),
):
    lead = await service.assign_lead(
        data.leadId, data.dealerId, notes=data.notes,
        assigned_by=user.get("email", user["id"]),
    )
    return {"message": "Lead assigned successfully", "lead": lead}


@router.delete("/leads/assign")
async def unassign_lead(
    leadId: str,
    user: dict = Depends(require_admin),
    service=Depends(get_lead_service),
):
    lead = await service.unassign_lead(leadId, unassigned_by=user.get("email", user["id"]))
    return {"message": "Lead unassigned successfully", "lead": lead}


# ==================== DEALER ====================

@router.get("/dealer/leads")
async def dealer_leads(
    status: Optional[str] = None,
    user: dict = Depends(require_dealer),
    service=Depends(get_lead_service),
):
    """Leads assigned to the logged-in dealer with per-status counts."""
    return await service.list_for_dealer(user["dealer_id"], status=status)


@router.put("/leads/{lead_id}/status")
async def update_lead_status(
    lead_id: str,
    data: LeadStatusUpdate,
    user: dict = Depends(require_dealer_or_admin),
    service=Depends(get_lead_service),
):
    lead = await service.update_status(
        lead_id, data.status, actor=user, lost_reason=data.lost_reason, force=data.force
    )
    return {"message": "Lead updated successfully", "lead": lead}


@router.post("/leads/{lead_id}/notes")
async def add_lead_note(
    lead_id: str,
    data: LeadNote,
    user: dict = Depends(require_dealer_or_admin),
    service=Depends(get_lead_service),
):
    lead = await service.add_note(lead_id, data.note, actor=user)
    return {"message": "Note added", "lead": lead}
