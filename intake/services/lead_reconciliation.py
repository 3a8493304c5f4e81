"""
Lead Reconciliation State Machine.

Decides what one ended call does to the caller's Lead. Rules are evaluated
in precedence order against the caller's most recent lead:

1. no lead, category New Lead        -> create Lead (Pending)
2. no lead, any other category       -> not lead-tracked
3. New Lead lead, call Existing Client -> conversion: auto-Approved
4. same category as the last call    -> repeat contact, last_call_date only
5. any other category change         -> record it in last_category, status untouched

``category`` stays the category the lead was opened (or converted) under,
so an unrelated call in between never hides a later conversion.

Conversion is the only automatic status transition. Every other status
change comes from a human reviewer through ``update_status``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional

from intake.db import DatabaseClient
from intake.logging_config import get_logger
from intake.schemas.call import CallEvent
from intake.schemas.caller import CallerProfile
from intake.schemas.extraction import CallCategory, ExtractedRecord
from intake.schemas.lead import (
    Lead,
    LeadDecision,
    LeadStats,
    LeadStatus,
    ReconciliationResult,
)
from intake.services.audit import log_audit

logger = get_logger(__name__)

LEADS_TABLE = "leads"
AUTO_CONVERSION_ACTOR = "auto_conversion"


class LeadNotFoundError(LookupError):
    """No lead with the given id."""


class LeadReconciler:
    """Applies the lead rules for one call and serves reviewer actions."""

    def __init__(self, db: DatabaseClient) -> None:
        self.db = db

    async def reconcile(
        self,
        call: CallEvent,
        record: Optional[ExtractedRecord],
        caller: CallerProfile,
    ) -> ReconciliationResult:
        """
        Apply the lead rules for one call.

        Must run under the caller's lock: it reads the current lead and
        writes based on what it read.
        """
        called_at = call.started_at or datetime.now(timezone.utc)
        category = call.category
        lead = await self.current_lead(call.tenant_id, caller.id)

        if lead is None:
            if category != CallCategory.NEW_LEAD:
                logger.info("lead_not_tracked", caller_id=caller.id, category=category.value)
                return ReconciliationResult(decision=LeadDecision.NOT_TRACKED)
            lead = await self._create_lead(call, record, caller, called_at)
            return ReconciliationResult(decision=LeadDecision.NEW_LEAD, lead=lead)

        updates: dict[str, Any] = {}
        if lead.last_call_date is None or called_at > lead.last_call_date:
            updates["last_call_date"] = called_at.isoformat()
        if record and record.claim_number and not lead.claim_number:
            updates["claim_number"] = record.claim_number

        previous_category = lead.category
        previous_status = lead.status

        if (
            lead.category == CallCategory.NEW_LEAD
            and not lead.conversion_detected
            and category == CallCategory.EXISTING_CLIENT
        ):
            updates.update({
                "conversion_detected": True,
                "conversion_call_id": call.call_id,
                "status": LeadStatus.APPROVED.value,
                "status_updated_at": datetime.now(timezone.utc).isoformat(),
                "status_updated_by": AUTO_CONVERSION_ACTOR,
                "category": category.value,
                "last_category": category.value,
            })
            lead = await self._update_lead(lead, updates)
            await log_audit(
                self.db,
                entity_type="lead",
                entity_id=lead.id,
                action="conversion_detected",
                actor=AUTO_CONVERSION_ACTOR,
                changes={
                    "status": {"old": previous_status, "new": LeadStatus.APPROVED},
                    "category": {"old": previous_category, "new": category},
                    "conversion_call_id": call.call_id,
                },
            )
            logger.info("lead_conversion_detected", lead_id=lead.id, conversion_call_id=call.call_id)
            return ReconciliationResult(
                decision=LeadDecision.CONVERSION,
                lead=lead,
                previous_category=previous_category,
            )

        if category == (lead.last_category or lead.category):
            lead = await self._update_lead(lead, updates)
            logger.info("lead_repeat_contact", lead_id=lead.id)
            return ReconciliationResult(decision=LeadDecision.REPEAT_CONTACT, lead=lead)

        previous_category = lead.last_category or lead.category
        updates["last_category"] = category.value
        lead = await self._update_lead(lead, updates)
        await log_audit(
            self.db,
            entity_type="lead",
            entity_id=lead.id,
            action="category_changed",
            changes={"category": {"old": previous_category, "new": category}, "call_id": call.call_id},
        )
        logger.info(
            "lead_category_changed",
            lead_id=lead.id,
            old_category=previous_category.value,
            new_category=category.value,
        )
        return ReconciliationResult(
            decision=LeadDecision.CATEGORY_CHANGED,
            lead=lead,
            previous_category=previous_category,
        )

    async def current_lead(self, tenant_id: str, caller_id: str) -> Optional[Lead]:
        """The caller's most recently opened lead."""
        rows = await self.db.select(
            LEADS_TABLE,
            {"tenant_id": tenant_id, "caller_id": caller_id},
            order_by="first_call_date",
            desc=True,
            limit=1,
        )
        return Lead.model_validate(rows[0]) if rows else None

    async def _create_lead(
        self,
        call: CallEvent,
        record: Optional[ExtractedRecord],
        caller: CallerProfile,
        called_at: datetime,
    ) -> Lead:
        row = await self.db.insert(LEADS_TABLE, {
            "tenant_id": call.tenant_id,
            "caller_id": caller.id,
            "phone_number": caller.phone_number,
            "category": CallCategory.NEW_LEAD.value,
            "last_category": CallCategory.NEW_LEAD.value,
            "status": LeadStatus.PENDING.value,
            "conversion_detected": False,
            "conversion_call_id": None,
            "call_id": call.call_id,
            "name": record.name if record else None,
            "email": record.email if record else None,
            "claim_number": record.claim_number if record else None,
            "case_fields": dict(record.case_fields) if record else {},
            "first_call_date": called_at.isoformat(),
            "last_call_date": called_at.isoformat(),
        })
        lead = Lead.model_validate(row)
        await log_audit(
            self.db,
            entity_type="lead",
            entity_id=lead.id,
            action="created",
            changes={"call_id": call.call_id, "status": lead.status},
        )
        logger.info("lead_created", lead_id=lead.id, caller_id=caller.id)
        return lead

    async def _update_lead(self, lead: Lead, updates: dict[str, Any]) -> Lead:
        if not updates:
            return lead
        rows = await self.db.update(LEADS_TABLE, updates, {"id": lead.id})
        if not rows:
            raise LeadNotFoundError(lead.id)
        return Lead.model_validate(rows[0])

    # -- Reviewer actions --

    async def update_status(
        self,
        lead_id: str,
        status: LeadStatus,
        updated_by: str = "admin",
        notes: Optional[str] = None,
    ) -> Lead:
        """
        Set a lead's status on behalf of a human reviewer.

        Raises:
            LeadNotFoundError: if the lead does not exist.
        """
        row = await self.db.select_one(LEADS_TABLE, {"id": lead_id})
        if row is None:
            raise LeadNotFoundError(lead_id)
        old = Lead.model_validate(row)

        values: dict[str, Any] = {
            "status": status.value,
            "status_updated_at": datetime.now(timezone.utc).isoformat(),
            "status_updated_by": updated_by,
        }
        if notes:
            values["notes"] = notes

        lead = await self._update_lead(old, values)
        await log_audit(
            self.db,
            entity_type="lead",
            entity_id=lead_id,
            action="status_updated",
            actor=updated_by,
            changes={"status": {"old": old.status, "new": status}, "notes": notes},
        )
        logger.info("lead_status_updated", lead_id=lead_id, old_status=old.status.value, new_status=status.value)
        return lead

    async def list_leads(self, tenant_id: str, status: Optional[LeadStatus] = None) -> list[Lead]:
        filters: dict[str, Any] = {"tenant_id": tenant_id}
        if status is not None:
            filters["status"] = status.value
        rows = await self.db.select(LEADS_TABLE, filters, order_by="first_call_date", desc=True)
        return [Lead.model_validate(row) for row in rows]

    async def lead_stats(self, tenant_id: str) -> LeadStats:
        """Totals per status; conversion rate is the percent of leads approved."""
        leads = await self.list_leads(tenant_id)
        counts = {status: 0 for status in LeadStatus}
        for lead in leads:
            counts[lead.status] += 1

        total = len(leads)
        return LeadStats(
            total_leads=total,
            pending=counts[LeadStatus.PENDING],
            in_progress=counts[LeadStatus.IN_PROGRESS],
            approved=counts[LeadStatus.APPROVED],
            denied=counts[LeadStatus.DENIED],
            conversions_detected=sum(1 for lead in leads if lead.conversion_detected),
            conversion_rate=round(counts[LeadStatus.APPROVED] / total * 100, 1) if total else None,
        )
