"""
Call Pipeline.

Runs one ended call end to end:

    extract record -> [lock tenant:phone] -> caller profile -> caller type
        -> fact ledger -> lead reconciliation -> processed_calls -> [unlock]

Extraction runs outside the lock since it is the slow LLM step. Store
failures (``StoreError``) propagate so the webhook answers 503 and the
platform redelivers.

A call is applied at most once per ``(tenant_id, call_id)``: the platform
sends both ended and analyzed events, and redelivers on errors.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel

from intake.db import DatabaseClient
from intake.logging_config import call_id_var, get_logger, tenant_id_var
from intake.schemas.call import CallEvent
from intake.schemas.caller import CallerProfile
from intake.schemas.extraction import ExtractedRecord
from intake.schemas.lead import LeadDecision, ReconciliationResult
from intake.services.caller_store import CallerIdentityStore, caller_type_for_category
from intake.services.data_extraction import extract_call_record
from intake.services.lead_reconciliation import LeadReconciler
from intake.services.locks import KeyedLock, caller_lock_key

logger = get_logger(__name__)

PROCESSED_CALLS_TABLE = "processed_calls"


class PipelineResult(BaseModel):
    call_id: str
    record: Optional[ExtractedRecord] = None
    caller: Optional[CallerProfile] = None
    reconciliation: ReconciliationResult


class CallPipeline:
    """Processes ended calls against the caller store and lead table."""

    def __init__(
        self,
        db: DatabaseClient,
        locks: KeyedLock,
        callers: Optional[CallerIdentityStore] = None,
        leads: Optional[LeadReconciler] = None,
    ) -> None:
        self.db = db
        self.locks = locks
        self.callers = callers or CallerIdentityStore(db)
        self.leads = leads or LeadReconciler(db)

    async def process(self, event: CallEvent) -> PipelineResult:
        call_id_var.set(event.call_id)
        tenant_id_var.set(event.tenant_id)
        logger.info(
            "call_processing_started",
            category=event.category.value,
            turns=len(event.transcript),
            has_phone=event.from_number is not None,
        )

        # Unlocked pre-check so a repeat delivery skips the LLM call.
        if event.from_number is not None:
            row = await self._processed_row(event)
            if row is not None:
                return await self._already_processed(event, row)

        record = await extract_call_record(event.transcript, event.category, event.call_id)

        if event.from_number is None:
            logger.warning("lead_tracking_skipped_no_phone")
            return PipelineResult(
                call_id=event.call_id,
                record=record,
                reconciliation=ReconciliationResult(decision=LeadDecision.SKIPPED_NO_PHONE),
            )

        async with self.locks.hold(caller_lock_key(event.tenant_id, event.from_number)):
            row = await self._processed_row(event)
            if row is not None:
                return await self._already_processed(event, row, record)

            caller = await self.callers.get_or_create_caller(
                event.from_number, event.tenant_id, called_at=event.started_at
            )

            caller_type = caller_type_for_category(event.category, caller.caller_type)
            if caller_type != caller.caller_type:
                caller = await self.callers.update_caller_type(caller.id, caller_type)

            if record is not None:
                await self.callers.record_facts_from_record(caller.id, record)

            reconciliation = await self.leads.reconcile(event, record, caller)
            await self._mark_processed(event, caller, reconciliation)

        logger.info(
            "call_processing_complete",
            caller_id=caller.id,
            decision=reconciliation.decision.value,
            lead_id=reconciliation.lead.id if reconciliation.lead else None,
        )
        return PipelineResult(
            call_id=event.call_id,
            record=record,
            caller=caller,
            reconciliation=reconciliation,
        )

    async def _processed_row(self, event: CallEvent) -> Optional[dict]:
        return await self.db.select_one(
            PROCESSED_CALLS_TABLE,
            {"tenant_id": event.tenant_id, "call_id": event.call_id},
        )

    async def _mark_processed(
        self,
        event: CallEvent,
        caller: CallerProfile,
        reconciliation: ReconciliationResult,
    ) -> None:
        await self.db.insert(PROCESSED_CALLS_TABLE, {
            "tenant_id": event.tenant_id,
            "call_id": event.call_id,
            "caller_id": caller.id,
            "category": event.category.value,
            "decision": reconciliation.decision.value,
            "lead_id": reconciliation.lead.id if reconciliation.lead else None,
            "processed_at": datetime.now(timezone.utc).isoformat(),
        })

    async def _already_processed(
        self,
        event: CallEvent,
        row: dict,
        record: Optional[ExtractedRecord] = None,
    ) -> PipelineResult:
        caller = await self.callers.get_caller(row["caller_id"]) if row.get("caller_id") else None
        logger.info("call_already_processed", event_type=event.event_type.value)
        return PipelineResult(
            call_id=event.call_id,
            record=record,
            caller=caller,
            reconciliation=ReconciliationResult(decision=LeadDecision.ALREADY_PROCESSED),
        )
