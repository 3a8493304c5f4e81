"""
API Router — Caller Recognition and Fact Ledger.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from intake.api.dependencies import get_caller_store
from intake.logging_config import get_logger
from intake.schemas.caller import CallerClassification, FactCorrection
from intake.services.caller_store import CallerIdentityStore, CallerNotFoundError

logger = get_logger(__name__)
router = APIRouter(prefix="/callers", tags=["Callers"])


@router.get("/lookup", response_model=CallerClassification)
async def lookup_caller(
    phone: str,
    tenant_id: str,
    callers: CallerIdentityStore = Depends(get_caller_store),
) -> CallerClassification:
    """What to confirm and what to ask when this number calls in."""
    return await callers.classify_caller(phone, tenant_id)


@router.get("/{caller_id}/facts")
async def get_caller_facts(
    caller_id: str,
    callers: CallerIdentityStore = Depends(get_caller_store),
) -> dict[str, Any]:
    """Current value of every field on file."""
    try:
        caller = await callers.get_caller(caller_id)
    except CallerNotFoundError:
        raise HTTPException(status_code=404, detail="Caller not found")

    facts = await callers.get_current_facts(caller_id)
    return {
        "caller": caller.model_dump(mode="json"),
        "facts": {name: fact.model_dump(mode="json") for name, fact in facts.items()},
    }


@router.get("/{caller_id}/facts/{field_name}/history")
async def get_fact_history(
    caller_id: str,
    field_name: str,
    callers: CallerIdentityStore = Depends(get_caller_store),
) -> dict[str, Any]:
    """Every value ever recorded for one field, newest first."""
    history = await callers.get_field_history(caller_id, field_name)
    return {
        "data": [fact.model_dump(mode="json") for fact in history],
        "total": len(history),
    }


@router.post("/{caller_id}/facts/{field_name}/corrections")
async def correct_fact(
    caller_id: str,
    field_name: str,
    body: FactCorrection,
    callers: CallerIdentityStore = Depends(get_caller_store),
) -> dict[str, Any]:
    """Supersede the current value of a field. The old value stays in history."""
    try:
        fact = await callers.correct_fact(
            caller_id,
            field_name,
            body.value,
            source_call_id=body.source_call_id,
            recorded_by=body.recorded_by,
        )
    except CallerNotFoundError:
        raise HTTPException(status_code=404, detail="Caller not found")

    return {"status": "corrected", "fact": fact.model_dump(mode="json")}
