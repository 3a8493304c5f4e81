"""
API Router — Lead Tracking.

Lead listing and statistics per tenant, and the status action used by
human reviewers.
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException

from intake.api.dependencies import get_lead_reconciler
from intake.logging_config import get_logger
from intake.schemas.lead import LeadStats, LeadStatus, LeadStatusUpdate
from intake.services.lead_reconciliation import LeadNotFoundError, LeadReconciler

logger = get_logger(__name__)
router = APIRouter(prefix="/leads", tags=["Leads"])


@router.get("")
async def list_leads(
    tenant_id: str,
    status: Optional[LeadStatus] = None,
    leads: LeadReconciler = Depends(get_lead_reconciler),
) -> dict[str, Any]:
    """List a tenant's leads, newest first."""
    items = await leads.list_leads(tenant_id, status=status)
    return {
        "data": [lead.model_dump(mode="json") for lead in items],
        "total": len(items),
    }


@router.get("/stats", response_model=LeadStats)
async def lead_stats(
    tenant_id: str,
    leads: LeadReconciler = Depends(get_lead_reconciler),
) -> LeadStats:
    return await leads.lead_stats(tenant_id)


@router.post("/{lead_id}/status")
async def update_lead_status(
    lead_id: str,
    body: LeadStatusUpdate,
    leads: LeadReconciler = Depends(get_lead_reconciler),
) -> dict[str, Any]:
    """Set a lead's status on behalf of a reviewer."""
    try:
        lead = await leads.update_status(lead_id, body.status, updated_by=body.updated_by, notes=body.notes)
    except LeadNotFoundError:
        raise HTTPException(status_code=404, detail="Lead not found")

    return {"status": "updated", "lead": lead.model_dump(mode="json")}
