"""
Data models for caller profiles and the append-only caller fact ledger.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CallerType(str, Enum):
    NEW_LEAD = "new_lead"
    EXISTING_CLIENT = "existing_client"
    PROFESSIONAL = "professional"


class FactConfidence(str, Enum):
    """How a fact came to be known."""
    CONFIRMED_READBACK = "confirmed_readback"
    LLM_EXTRACTED = "llm_extracted"
    CORRECTED = "corrected"
    STATED = "stated"


class CallerProfile(BaseModel):
    id: str
    phone_number: str
    tenant_id: str
    caller_type: Optional[CallerType] = None  # None until a classifying category is seen
    total_calls: int = 1
    first_call_date: Optional[datetime] = None
    last_call_date: Optional[datetime] = None
    is_new: bool = False  # Set only on the profile returned by the creating call


class CallerFact(BaseModel):
    id: str
    caller_id: str
    field_name: str
    field_value: str
    source_call_id: Optional[str] = None
    source_type: str = "call_transcript"
    confidence: str = FactConfidence.STATED.value
    recorded_by: str = "system"
    recorded_at: datetime
    valid_until: Optional[datetime] = None

    @property
    def is_current(self) -> bool:
        return self.valid_until is None


class FieldToConfirm(BaseModel):
    field: str
    value: str


class CallerClassification(BaseModel):
    """What we already know about a phone number when a call starts."""
    is_known: bool
    caller_id: Optional[str] = None
    caller_type: Optional[CallerType] = None
    total_calls: int = 0
    facts: dict[str, CallerFact] = Field(default_factory=dict)
    fields_to_confirm: list[FieldToConfirm] = Field(default_factory=list)
    fields_to_ask: list[str] = Field(default_factory=list)
    context: Optional[str] = None


class FactCorrection(BaseModel):
    """Body of a manual correction request."""
    value: str
    source_call_id: Optional[str] = None
    recorded_by: str = "admin"
