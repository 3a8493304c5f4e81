"""
Data models for lead tracking and reconciliation outcomes.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from intake.schemas.extraction import CallCategory


class LeadStatus(str, Enum):
    PENDING = "Pending"
    IN_PROGRESS = "In Progress"
    APPROVED = "Approved"
    DENIED = "Denied"


class LeadDecision(str, Enum):
    """Which reconciliation rule fired for a call."""
    NEW_LEAD = "new_lead"
    NOT_TRACKED = "not_tracked"
    CONVERSION = "conversion"
    REPEAT_CONTACT = "repeat_contact"
    CATEGORY_CHANGED = "category_changed"
    SKIPPED_NO_PHONE = "skipped_no_phone"
    ALREADY_PROCESSED = "already_processed"


class Lead(BaseModel):
    id: str
    tenant_id: str
    caller_id: str
    phone_number: str
    category: CallCategory  # Category the lead was opened or converted under
    last_category: Optional[CallCategory] = None  # Most recent call category seen
    status: LeadStatus = LeadStatus.PENDING
    conversion_detected: bool = False
    conversion_call_id: Optional[str] = None
    call_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    claim_number: Optional[str] = None
    case_fields: dict[str, str] = Field(default_factory=dict)
    first_call_date: datetime
    last_call_date: datetime
    status_updated_at: Optional[datetime] = None
    status_updated_by: Optional[str] = None
    notes: Optional[str] = None


class ReconciliationResult(BaseModel):
    decision: LeadDecision
    lead: Optional[Lead] = None
    previous_category: Optional[CallCategory] = None


class LeadStatusUpdate(BaseModel):
    """Action taken by a human reviewer."""
    status: LeadStatus
    updated_by: str = "admin"
    notes: Optional[str] = None


class LeadStats(BaseModel):
    total_leads: int = 0
    pending: int = 0
    in_progress: int = 0
    approved: int = 0
    denied: int = 0
    conversions_detected: int = 0
    conversion_rate: Optional[float] = None  # Percent approved, one decimal
