"""
Caller Identity Store.

Durable per-caller profile plus an append-only fact ledger. Every value
ever captured for a caller (name, email, callback phone, claim number) is
a row in ``caller_facts`` tied to the call that produced it. Ordinary call
processing only inserts; superseding a value is an explicit correction,
which closes the old row with ``valid_until`` and audits the change.
Nothing is ever deleted here.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from intake.db import DatabaseClient
from intake.logging_config import get_logger
from intake.normalization import normalize_phone
from intake.schemas.caller import (
    CallerClassification,
    CallerFact,
    CallerProfile,
    CallerType,
    FactConfidence,
    FieldToConfirm,
)
from intake.schemas.extraction import CallCategory, ExtractedRecord
from intake.services.audit import log_audit

logger = get_logger(__name__)

CALLERS_TABLE = "callers"
FACTS_TABLE = "caller_facts"

# Fact field names written from an extracted record.
RECORD_FACT_FIELDS = ("name", "email", "phone", "claim_number")

CATEGORY_CALLER_TYPES: dict[CallCategory, CallerType] = {
    CallCategory.NEW_LEAD: CallerType.NEW_LEAD,
    CallCategory.EXISTING_CLIENT: CallerType.EXISTING_CLIENT,
    CallCategory.ATTORNEY: CallerType.PROFESSIONAL,
    CallCategory.INSURANCE: CallerType.PROFESSIONAL,
    CallCategory.MEDICAL: CallerType.PROFESSIONAL,
    CallCategory.MEDICAL_PROFESSIONAL: CallerType.PROFESSIONAL,
}


class CallerNotFoundError(LookupError):
    """No caller profile with the given id."""


def caller_type_for_category(
    category: CallCategory,
    current: Optional[CallerType],
) -> Optional[CallerType]:
    """
    Caller type implied by a call's category.

    "Other" says nothing about the caller and keeps the current type. An
    existing client is never downgraded back to a new lead.
    """
    implied = CATEGORY_CALLER_TYPES.get(category)
    if implied is None:
        return current
    if current == CallerType.EXISTING_CLIENT and implied == CallerType.NEW_LEAD:
        return current
    return implied


class CallerIdentityStore:
    """Caller profiles and their fact ledger, scoped per tenant."""

    def __init__(self, db: DatabaseClient) -> None:
        self.db = db

    # -- Profiles --

    async def get_caller(self, caller_id: str) -> CallerProfile:
        row = await self.db.select_one(CALLERS_TABLE, {"id": caller_id})
        if row is None:
            raise CallerNotFoundError(caller_id)
        return CallerProfile.model_validate(row)

    async def find_caller(self, phone: str, tenant_id: str) -> Optional[CallerProfile]:
        """Return the profile for a normalized phone number, or None."""
        row = await self.db.select_one(CALLERS_TABLE, {"phone_number": phone, "tenant_id": tenant_id})
        return CallerProfile.model_validate(row) if row else None

    async def get_or_create_caller(
        self,
        phone: str,
        tenant_id: str,
        called_at: Optional[datetime] = None,
    ) -> CallerProfile:
        """
        Resolve the caller for this call, creating the profile on first contact.

        Increments ``total_calls``. ``last_call_date`` only ever moves
        forward, so a late-delivered older call cannot rewind it.
        """
        called_at = called_at or datetime.now(timezone.utc)
        existing = await self.find_caller(phone, tenant_id)

        if existing is None:
            row = await self.db.insert(CALLERS_TABLE, {
                "phone_number": phone,
                "tenant_id": tenant_id,
                "caller_type": None,
                "total_calls": 1,
                "first_call_date": called_at.isoformat(),
                "last_call_date": called_at.isoformat(),
            })
            caller = CallerProfile.model_validate(row).model_copy(update={"is_new": True})
            logger.info("caller_created", caller_id=caller.id)
            return caller

        last_call_date = existing.last_call_date
        if last_call_date is None or called_at > last_call_date:
            last_call_date = called_at

        rows = await self.db.update(
            CALLERS_TABLE,
            {"total_calls": existing.total_calls + 1, "last_call_date": last_call_date.isoformat()},
            {"id": existing.id},
        )
        caller = CallerProfile.model_validate(rows[0]) if rows else existing.model_copy(
            update={"total_calls": existing.total_calls + 1, "last_call_date": last_call_date}
        )
        logger.info("caller_recognized", caller_id=caller.id, total_calls=caller.total_calls)
        return caller

    async def update_caller_type(self, caller_id: str, caller_type: Optional[CallerType]) -> CallerProfile:
        rows = await self.db.update(
            CALLERS_TABLE,
            {"caller_type": caller_type.value if caller_type else None},
            {"id": caller_id},
        )
        if not rows:
            raise CallerNotFoundError(caller_id)
        logger.info("caller_type_updated", caller_id=caller_id, caller_type=caller_type.value if caller_type else None)
        return CallerProfile.model_validate(rows[0])

    # -- Fact ledger --

    async def record_fact(
        self,
        caller_id: str,
        field_name: str,
        value: str,
        source_call_id: Optional[str],
        confidence: FactConfidence | str = FactConfidence.STATED,
        source_type: str = "call_transcript",
        recorded_by: str = "system",
    ) -> CallerFact:
        """Insert a fact row. Never supersedes an existing value."""
        row = await self.db.insert(FACTS_TABLE, {
            "caller_id": caller_id,
            "field_name": field_name,
            "field_value": value,
            "source_call_id": source_call_id,
            "source_type": source_type,
            "confidence": confidence.value if isinstance(confidence, FactConfidence) else confidence,
            "recorded_by": recorded_by,
            "recorded_at": datetime.now(timezone.utc).isoformat(),
            "valid_until": None,
        })
        return CallerFact.model_validate(row)

    async def record_facts_from_record(self, caller_id: str, record: ExtractedRecord) -> list[CallerFact]:
        """Write every non-null identity field of an extracted record as a fact."""
        facts: list[CallerFact] = []
        for field_name in RECORD_FACT_FIELDS:
            value = getattr(record, field_name)
            if not value:
                continue
            confidence = (
                FactConfidence.CONFIRMED_READBACK if field_name == "claim_number"
                else FactConfidence.LLM_EXTRACTED
            )
            facts.append(await self.record_fact(caller_id, field_name, value, record.call_id, confidence))

        if facts:
            logger.info("caller_facts_recorded", caller_id=caller_id, fields=[f.field_name for f in facts])
        return facts

    async def correct_fact(
        self,
        caller_id: str,
        field_name: str,
        new_value: str,
        source_call_id: Optional[str] = None,
        recorded_by: str = "admin",
    ) -> CallerFact:
        """
        Supersede the current value of a field with a corrected one.

        The corrected row is written first and only then are the older
        current rows closed with ``valid_until``, so a failed write never
        leaves the field without a current value.

        Raises:
            CallerNotFoundError: if the caller does not exist.
        """
        await self.get_caller(caller_id)

        fact = await self.record_fact(
            caller_id,
            field_name,
            new_value,
            source_call_id,
            FactConfidence.CORRECTED,
            source_type="manual_correction",
            recorded_by=recorded_by,
        )
        superseded = await self.db.update(
            FACTS_TABLE,
            {"valid_until": datetime.now(timezone.utc).isoformat()},
            {"caller_id": caller_id, "field_name": field_name},
            null_columns=("valid_until",),
            exclude={"id": fact.id},
        )

        await log_audit(
            self.db,
            entity_type="caller_fact",
            entity_id=caller_id,
            action="corrected",
            actor=recorded_by,
            changes={
                "field_name": field_name,
                "old_values": [row.get("field_value") for row in superseded],
                "new_value": new_value,
                "source_call_id": source_call_id,
            },
        )
        logger.info("caller_fact_corrected", caller_id=caller_id, field_name=field_name, superseded=len(superseded))
        return fact

    async def get_current_facts(self, caller_id: str) -> dict[str, CallerFact]:
        """Latest non-superseded fact per field name."""
        rows = await self.db.select(
            FACTS_TABLE,
            {"caller_id": caller_id},
            null_columns=("valid_until",),
            order_by="recorded_at",
            desc=True,
        )
        facts: dict[str, CallerFact] = {}
        for row in rows:
            fact = CallerFact.model_validate(row)
            facts.setdefault(fact.field_name, fact)
        return facts

    async def get_field_history(self, caller_id: str, field_name: str) -> list[CallerFact]:
        """Every value ever recorded for one field, newest first."""
        rows = await self.db.select(
            FACTS_TABLE,
            {"caller_id": caller_id, "field_name": field_name},
            order_by="recorded_at",
            desc=True,
        )
        return [CallerFact.model_validate(row) for row in rows]

    # -- Returning-caller recognition --

    async def classify_caller(self, phone: str, tenant_id: str) -> CallerClassification:
        """
        What is already known about a phone number when a call starts.

        Names and emails on file are confirmed rather than re-asked. A
        claim number on file is always re-confirmed since long digit
        strings are the most commonly mis-heard value; an existing client
        with none on file is asked for one.
        """
        normalized = normalize_phone(phone)
        if normalized is None:
            return CallerClassification(is_known=False)

        caller = await self.find_caller(normalized, tenant_id)
        if caller is None:
            return CallerClassification(is_known=False)

        facts = await self.get_current_facts(caller.id)
        to_confirm: list[FieldToConfirm] = []
        to_ask: list[str] = []

        for field_name in ("name", "email"):
            if field_name in facts:
                to_confirm.append(FieldToConfirm(field=field_name, value=facts[field_name].field_value))
            else:
                to_ask.append(field_name)

        if "phone" in facts:
            to_confirm.append(FieldToConfirm(field="phone", value=facts["phone"].field_value))

        if "claim_number" in facts:
            to_confirm.append(FieldToConfirm(field="claim_number", value=facts["claim_number"].field_value))
        elif caller.caller_type == CallerType.EXISTING_CLIENT:
            to_ask.append("claim_number")

        return CallerClassification(
            is_known=True,
            caller_id=caller.id,
            caller_type=caller.caller_type,
            total_calls=caller.total_calls,
            facts=facts,
            fields_to_confirm=to_confirm,
            fields_to_ask=to_ask,
            context=_build_context(caller, facts),
        )


def _build_context(caller: CallerProfile, facts: dict[str, CallerFact]) -> str:
    """One-paragraph summary a voice agent can read at call start."""
    parts: list[str] = []
    if "name" in facts:
        parts.append(f"Caller's name is {facts['name'].field_value}")
    parts.append(f"This is call #{caller.total_calls + 1} from this number")
    if caller.first_call_date:
        parts.append(f"First called on {caller.first_call_date.date().isoformat()}")
    if caller.caller_type:
        parts.append(f"Caller type: {caller.caller_type.value}")
    if "email" in facts:
        parts.append(f"Email on file: {facts['email'].field_value}")
    if "claim_number" in facts:
        parts.append(f"Claim number on file: {facts['claim_number'].field_value}")
    return ". ".join(parts) + "."
