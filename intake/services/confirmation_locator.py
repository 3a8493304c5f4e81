"""
Confirmation-Exchange Locator.

Finds the one agent utterance in a transcript that reads back a claim /
policy / file number AND that the caller explicitly affirmed. Callers
often correct the agent several times before a readback is accepted, so
only the readback standing when the caller says "yes" counts; earlier
rejected attempts are discarded.

The scan is a small state machine:

    IDLE ──trigger phrase──▶ IN_CLAIM_SECTION ──caller affirms──▶ CONFIRMED

Readbacks about a phone number, email or name are recognised and ignored,
since the same "is that correct?" phrasing is used for all of them. A
readback that names no topic at all still counts inside the claim section
when it decodes to a claim-length value.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from intake.config import get_settings
from intake.logging_config import get_logger
from intake.schemas.transcript import (
    ConfirmationCandidate,
    ConfirmationExchange,
    ConfirmationTopic,
    Transcript,
    Turn,
)
from intake.services.digit_decoder import decode_claim_number

logger = get_logger(__name__)

CLAIM_TRIGGERS = ("claim number", "policy number", "file number", "our file")

CONFIRMATION_PHRASES = (
    "is that correct",
    "did i get that right",
    "did i get it right",
    "let me confirm",
    "let me read that back",
    "let me repeat",
    "let me make sure",
    "to confirm",
    "to make sure i have",
    "i heard",
    "you said",
    "the claim number is",
    "the number is",
)

# Checked in this order; the first topic whose marker appears wins.
EXCLUDED_TOPICS: tuple[tuple[ConfirmationTopic, tuple[str, ...]], ...] = (
    (ConfirmationTopic.PHONE, ("phone", "reach you", "extension")),
    (ConfirmationTopic.EMAIL, ("email", "@", "dot com")),
    (ConfirmationTopic.NAME, ("full name", "spelling", "spelled")),
)

CLAIM_REFERENCES = ("claim", "policy", "file number")
SECTION_REFERENCES = ("the number", "i heard")

AFFIRMATIONS = frozenset({
    "yes", "yes.", "correct", "correct.", "yeah", "yeah.",
    "yep", "yep.", "alright", "alright.",
})
AFFIRMATION_PHRASES = ("that's right", "thats right")
AFFIRMATION_PREFIXES = ("yes,", "yeah,")
REJECTIONS = frozenset({"no", "no."})

MOVING_ON_PHRASES = (
    "what specifically",
    "what can i help",
    "how can i help",
    "anything else",
    "is there anything else",
)

EXCERPT_MAX_TURNS = 15


class LocatorState(str, Enum):
    IDLE = "idle"
    IN_CLAIM_SECTION = "in_claim_section"
    CONFIRMED = "confirmed"


def has_claim_trigger(text: str) -> bool:
    lowered = text.lower()
    return any(trigger in lowered for trigger in CLAIM_TRIGGERS)


def is_confirmation_attempt(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in CONFIRMATION_PHRASES)


def readback_topic(text: str) -> Optional[ConfirmationTopic]:
    """
    Classify what a confirmation attempt is about.

    Returns None when the turn names neither a claim nor one of the
    excluded topics.
    """
    lowered = text.lower()
    for topic, markers in EXCLUDED_TOPICS:
        if any(marker in lowered for marker in markers):
            return topic
    if any(ref in lowered for ref in CLAIM_REFERENCES + SECTION_REFERENCES):
        return ConfirmationTopic.CLAIM
    return None


def is_affirmation(text: str) -> bool:
    reply = text.strip().lower()
    if reply in AFFIRMATIONS:
        return True
    if any(phrase in reply for phrase in AFFIRMATION_PHRASES):
        return True
    return reply.startswith(AFFIRMATION_PREFIXES)


def is_rejection(text: str) -> bool:
    reply = text.strip().lower()
    return "incorrect" in reply or reply in REJECTIONS


def is_moving_on(text: str) -> bool:
    lowered = text.lower()
    return any(phrase in lowered for phrase in MOVING_ON_PHRASES)


class ConfirmationLocator:
    """
    Single-pass scanner over one transcript.

    Create one per transcript; ``locate()`` feeds every turn through
    ``_step()`` and returns the confirmed exchange, if any.
    """

    def __init__(self, max_turns: int | None = None) -> None:
        self.max_turns = max_turns if max_turns is not None else get_settings().claim_scan_max_turns
        self.state = LocatorState.IDLE
        self.pending: Optional[ConfirmationCandidate] = None
        self.confirmation_index: Optional[int] = None
        self.moved_on_index: Optional[int] = None
        self._transcript: Transcript = []

    def locate(self, transcript: Transcript) -> Optional[ConfirmationExchange]:
        self._transcript = transcript
        for index, turn in enumerate(transcript[: self.max_turns]):
            self._step(index, turn)
            if self.moved_on_index is not None:
                break

        if len(transcript) > self.max_turns:
            logger.warning(
                "claim_scan_truncated",
                turns=len(transcript),
                max_turns=self.max_turns,
            )

        if self.state != LocatorState.CONFIRMED or self.pending is None:
            logger.debug("claim_readback_not_confirmed", state=self.state.value)
            return None

        return ConfirmationExchange(
            readback_text=self.pending.raw_text,
            readback_index=self.pending.turn_index,
            confirmation_index=self.confirmation_index,
            exchange=list(transcript[self.pending.turn_index : self.confirmation_index + 1]),
            moved_on_index=self.moved_on_index,
        )

    def _step(self, index: int, turn: Turn) -> None:
        if self.state == LocatorState.IDLE:
            if not has_claim_trigger(turn.text):
                return
            self._transition(LocatorState.IN_CLAIM_SECTION, index)
            # The triggering turn may itself be the readback.

        if self.state == LocatorState.IN_CLAIM_SECTION:
            if turn.is_agent:
                self._consider_readback(index, turn)
            elif self.pending is not None:
                self._consider_reply(index, turn)
            return

        if self.state == LocatorState.CONFIRMED and turn.is_agent and is_moving_on(turn.text):
            self.moved_on_index = index

    def _consider_readback(self, index: int, turn: Turn) -> None:
        if not is_confirmation_attempt(turn.text):
            return
        topic = readback_topic(turn.text)
        if topic is None:
            # Inside the claim section a bare readback of a long enough
            # value ("L as in Larry, A 3 5 9 ...") is the claim number.
            if decode_claim_number(turn.text) is None:
                return
            topic = ConfirmationTopic.CLAIM
        if topic != ConfirmationTopic.CLAIM:
            logger.debug("readback_skipped", topic=topic.value, turn_index=index)
            return
        if self.pending is not None:
            logger.debug("readback_superseded", previous=self.pending.turn_index, turn_index=index)
        self.pending = ConfirmationCandidate(raw_text=turn.text, turn_index=index, topic=topic)

    def _consider_reply(self, index: int, turn: Turn) -> None:
        # Affirmation wins over rejection ("yes, no problem").
        if is_affirmation(turn.text):
            self.confirmation_index = index
            self._transition(LocatorState.CONFIRMED, index)
        elif is_rejection(turn.text):
            logger.debug("readback_rejected", readback_index=self.pending.turn_index, turn_index=index)
            self.pending = None

    def _transition(self, state: LocatorState, index: int) -> None:
        logger.debug("locator_state_change", from_state=self.state.value, to_state=state.value, turn_index=index)
        self.state = state


def locate_confirmed_readback(
    transcript: Transcript,
    max_turns: int | None = None,
) -> Optional[ConfirmationExchange]:
    """Return the caller-affirmed claim readback, or None when there isn't one."""
    if not transcript:
        return None
    return ConfirmationLocator(max_turns=max_turns).locate(transcript)


def find_confirmed_claim_number(
    transcript: Transcript,
    max_turns: int | None = None,
) -> Optional[str]:
    """
    Locate the confirmed readback and decode it.

    Returns None when no readback was confirmed or the decoded value is
    too short to be a claim number.
    """
    exchange = locate_confirmed_readback(transcript, max_turns=max_turns)
    if exchange is None:
        return None

    claim_number = decode_claim_number(exchange.readback_text)
    if claim_number is None:
        logger.info("confirmed_readback_undecodable", readback_index=exchange.readback_index)
        return None

    logger.info(
        "claim_number_confirmed",
        readback_index=exchange.readback_index,
        confirmation_index=exchange.confirmation_index,
        length=len(claim_number),
    )
    return claim_number


def mentions_claim_number(transcript: Transcript) -> bool:
    return any(has_claim_trigger(turn.text) for turn in transcript)


def claim_exchange_excerpt(
    transcript: Transcript,
    max_turns: int = EXCERPT_MAX_TURNS,
) -> list[Turn]:
    """
    Turns from the first claim-number mention up to the agent moving on.

    Used for manual review of how a claim number was captured.
    """
    start = next((i for i, turn in enumerate(transcript) if has_claim_trigger(turn.text)), None)
    if start is None:
        return []

    excerpt: list[Turn] = []
    for turn in transcript[start : start + max_turns]:
        excerpt.append(turn)
        if len(excerpt) > 1 and turn.is_agent and is_moving_on(turn.text):
            break
    return excerpt
