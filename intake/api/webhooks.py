"""
API Router — Voice Platform Webhooks.

Receives call lifecycle events. Only ended / analyzed calls are processed;
everything else is acknowledged and ignored. An ended call without a
category waits for its analyzed event. Processing completes before the
response is sent.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException

from intake.api.dependencies import get_pipeline
from intake.logging_config import get_logger
from intake.normalization import PayloadError, normalize_call_event
from intake.services.call_pipeline import CallPipeline

logger = get_logger(__name__)
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/call-events")
async def receive_call_event(
    payload: dict[str, Any] = Body(...),
    pipeline: CallPipeline = Depends(get_pipeline),
) -> dict[str, Any]:
    """Process one call event from the voice platform."""
    try:
        event = normalize_call_event(payload)
    except PayloadError as e:
        logger.warning("call_event_rejected", error=str(e))
        raise HTTPException(status_code=422, detail=str(e))

    if not event.event_type.is_terminal:
        logger.info("call_event_ignored", call_id=event.call_id, event_type=event.event_type.value)
        return {"status": "ignored", "call_id": event.call_id, "event": event.event_type.value}

    if event.awaiting_analysis:
        logger.info("call_event_awaiting_analysis", call_id=event.call_id)
        return {"status": "ignored", "call_id": event.call_id, "event": event.event_type.value}

    result = await pipeline.process(event)
    return {
        "status": "processed",
        "call_id": result.call_id,
        "caller_id": result.caller.id if result.caller else None,
        "decision": result.reconciliation.decision.value,
        "lead_id": result.reconciliation.lead.id if result.reconciliation.lead else None,
        "record": result.record.model_dump(mode="json") if result.record else None,
    }
