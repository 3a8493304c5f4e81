"""
Data models for inbound call events after payload normalization.
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from intake.schemas.extraction import CallCategory
from intake.schemas.transcript import Turn


class CallEventType(str, Enum):
    CALL_STARTED = "call_started"
    CALL_ENDED = "call_ended"
    CALL_ANALYZED = "call_analyzed"
    OTHER = "other"

    @property
    def is_terminal(self) -> bool:
        return self in (CallEventType.CALL_ENDED, CallEventType.CALL_ANALYZED)


class CallEvent(BaseModel):
    """One ended call in the internal schema; built only by ``normalize_call_event``."""
    event_type: CallEventType = CallEventType.CALL_ENDED
    call_id: str
    tenant_id: str
    category: CallCategory = CallCategory.OTHER
    has_category: bool = True  # False when the payload carried no category yet
    from_number: Optional[str] = None  # Normalized, or None when unusable
    started_at: Optional[datetime] = None
    transcript: list[Turn] = Field(default_factory=list)

    @property
    def awaiting_analysis(self) -> bool:
        """An ended call whose category arrives with the later analyzed event."""
        return self.event_type == CallEventType.CALL_ENDED and not self.has_category
