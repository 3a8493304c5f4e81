"""
Data models for call transcripts and claim-number confirmation exchanges.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict


class Speaker(str, Enum):
    AGENT = "agent"
    CALLER = "caller"


class Turn(BaseModel):
    """One speaker turn, verbatim as transcribed."""
    model_config = ConfigDict(frozen=True)

    speaker: Speaker
    text: str

    @property
    def is_agent(self) -> bool:
        return self.speaker == Speaker.AGENT


Transcript = list[Turn]


class ConfirmationTopic(str, Enum):
    """What an agent readback is about."""
    CLAIM = "claim"
    PHONE = "phone"
    EMAIL = "email"
    NAME = "name"


class ConfirmationCandidate(BaseModel):
    """An agent readback seen while scanning; never persisted."""
    raw_text: str
    turn_index: int
    topic: ConfirmationTopic


class ConfirmationExchange(BaseModel):
    """A claim readback the caller affirmed, plus the surrounding exchange."""
    readback_text: str
    readback_index: int
    confirmation_index: int
    exchange: list[Turn]
    moved_on_index: Optional[int] = None  # Agent turn that closed the claim section


def transcript_as_text(transcript: Transcript) -> str:
    """Render turns as ``ROLE: text`` lines for prompts and logs."""
    return "\n".join(f"{turn.speaker.value.upper()}: {turn.text}" for turn in transcript)
