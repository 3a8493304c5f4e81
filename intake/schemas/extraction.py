"""
Data models for structured data extraction results.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class CallCategory(str, Enum):
    """Closed set of categories produced by the upstream call classifier."""
    NEW_LEAD = "New Lead"
    EXISTING_CLIENT = "Existing Client"
    ATTORNEY = "Attorney"
    INSURANCE = "Insurance"
    MEDICAL = "Medical"
    MEDICAL_PROFESSIONAL = "Medical Professional"
    OTHER = "Other"


class ExtractedRecord(BaseModel):
    """Structured facts for one call. Every field may be null; nothing is guessed."""
    model_config = ConfigDict(frozen=True)

    call_id: str
    category: CallCategory
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    claim_number: Optional[str] = None
    purpose: Optional[str] = None
    case_fields: dict[str, str] = Field(default_factory=dict)


class LLMExtraction(BaseModel):
    """Shape the language model is asked to return; unknown keys are ignored."""
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    purpose: Optional[str] = None
    claim_number: Optional[str] = None
    who_representing: Optional[str] = None
    case_name: Optional[str] = None
    incident_description: Optional[str] = None
    incident_date: Optional[str] = None
    incident_location: Optional[str] = None
    case_type: Optional[str] = None
