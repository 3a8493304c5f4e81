"""
Ingestion boundary for call-event payloads.

The voice platform (and the replay tooling) send loosely-typed JSON with
several spellings for the same thing: ``phone`` / ``phone_number`` /
``from_number``, ``agent_id`` / ``tenant_id``, ``user`` / ``caller`` roles,
transcripts as a list of messages or as one ``ROLE: text`` string. This
module maps all of them onto ``CallEvent`` once, so nothing downstream
branches on alternate field names.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from intake.logging_config import get_logger
from intake.schemas.call import CallEvent, CallEventType
from intake.schemas.extraction import CallCategory
from intake.schemas.transcript import Speaker, Turn

logger = get_logger(__name__)

CALL_ID_KEYS = ("call_id", "callId", "id")
TENANT_KEYS = ("tenant_id", "tenantId", "agent_id", "agentId")
PHONE_KEYS = ("from_number", "fromNumber", "phone_number", "phone", "caller_number", "from")
CATEGORY_KEYS = ("category", "call_category", "callCategory", "caller_category")
TRANSCRIPT_KEYS = ("transcript_object", "transcript", "messages", "turns")
EVENT_KEYS = ("event", "event_type", "type")
START_KEYS = ("start_timestamp", "started_at", "start_time", "startTime")

AGENT_ROLES = frozenset({"agent", "assistant", "bot", "ai"})
CALLER_ROLES = frozenset({"user", "caller", "customer", "human", "client"})

BLOCKED_CALLER_IDS = ("anonymous", "private", "blocked", "unknown", "restricted")
MIN_PHONE_DIGITS = 7

_TRANSCRIPT_LINE = re.compile(r"^\s*([A-Za-z]+)\s*:\s*(.*)$")


class PayloadError(ValueError):
    """The payload lacks a field the pipeline cannot run without."""


def normalize_phone(raw: Any) -> str | None:
    """
    Canonicalize a phone number to ``+<digits>``.

    Ten-digit numbers are treated as NANP and get a ``+1`` prefix.
    Blocked / anonymous caller IDs and anything under seven digits
    return None.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    lowered = text.lower()
    if any(marker in lowered for marker in BLOCKED_CALLER_IDS):
        return None

    digits = re.sub(r"\D", "", text)
    if len(digits) < MIN_PHONE_DIGITS:
        return None
    if len(digits) == 10:
        return f"+1{digits}"
    return f"+{digits}"


def normalize_category(raw: Any) -> CallCategory:
    """Map a free-form category label onto the closed category set."""
    if isinstance(raw, CallCategory):
        return raw
    if raw is None:
        return CallCategory.OTHER

    key = re.sub(r"[\s_\-]+", " ", str(raw)).strip().lower()
    for category in CallCategory:
        if category.value.lower() == key:
            return category

    logger.warning("unknown_call_category", category=str(raw))
    return CallCategory.OTHER


def normalize_speaker(raw: Any) -> Speaker | None:
    role = str(raw or "").strip().lower()
    if role in AGENT_ROLES:
        return Speaker.AGENT
    if role in CALLER_ROLES:
        return Speaker.CALLER
    return None


def normalize_transcript(raw: Any) -> list[Turn]:
    """
    Build ordered turns from a message list or a ``ROLE: text`` string.

    Messages with an unknown role are dropped; text is kept verbatim.
    """
    if not raw:
        return []

    if isinstance(raw, str):
        return _turns_from_text(raw)

    turns: list[Turn] = []
    for item in raw:
        if isinstance(item, Turn):
            turns.append(item)
            continue
        if not isinstance(item, dict):
            continue
        speaker = normalize_speaker(item.get("role", item.get("speaker")))
        text = item.get("content", item.get("text"))
        if speaker is None or text is None:
            logger.debug("transcript_item_skipped", role=item.get("role", item.get("speaker")))
            continue
        turns.append(Turn(speaker=speaker, text=str(text)))
    return turns


def normalize_call_event(payload: dict[str, Any]) -> CallEvent:
    """
    Canonicalize an inbound webhook payload.

    Accepts a flat payload or one that nests the call under ``call``;
    analysis output may sit under ``call_analysis`` /
    ``custom_analysis_data``.

    Raises:
        PayloadError: when no call id or tenant id can be found.
    """
    call = payload.get("call") if isinstance(payload.get("call"), dict) else payload
    analysis = call.get("call_analysis") if isinstance(call.get("call_analysis"), dict) else {}
    custom = analysis.get("custom_analysis_data") if isinstance(analysis.get("custom_analysis_data"), dict) else {}
    sources = (call, payload, custom, analysis)

    call_id = _first(sources, CALL_ID_KEYS)
    tenant_id = _first(sources, TENANT_KEYS)
    if not call_id:
        raise PayloadError("call payload has no call id")
    if not tenant_id:
        raise PayloadError(f"call {call_id} has no tenant/agent id")

    raw_category = _first(sources, CATEGORY_KEYS)
    raw_phone = _first(sources, PHONE_KEYS)
    from_number = normalize_phone(raw_phone)
    if raw_phone and not from_number:
        logger.info("caller_number_unusable", call_id=call_id, raw=str(raw_phone))

    return CallEvent(
        event_type=_event_type(_first((payload, call), EVENT_KEYS)),
        call_id=str(call_id),
        tenant_id=str(tenant_id),
        category=normalize_category(raw_category),
        has_category=raw_category is not None,
        from_number=from_number,
        started_at=_parse_start(_first(sources, START_KEYS)),
        transcript=normalize_transcript(_first((call, payload), TRANSCRIPT_KEYS)),
    )


def _first(sources: Iterable[dict[str, Any]], keys: Iterable[str]) -> Any:
    keys = tuple(keys)
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return value
    return None


def _event_type(raw: Any) -> CallEventType:
    if raw is None:
        return CallEventType.CALL_ENDED
    try:
        return CallEventType(str(raw).strip().lower())
    except ValueError:
        return CallEventType.OTHER


def _parse_start(raw: Any) -> Optional[datetime]:
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw if raw.tzinfo else raw.replace(tzinfo=timezone.utc)
    if isinstance(raw, (int, float)):
        # Epoch milliseconds from the platform; plain seconds are also accepted.
        seconds = raw / 1000 if raw > 10_000_000_000 else raw
        return datetime.fromtimestamp(seconds, tz=timezone.utc)
    try:
        parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
    except ValueError:
        logger.warning("unparsable_start_time", raw=str(raw))
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _turns_from_text(text: str) -> list[Turn]:
    turns: list[Turn] = []
    for line in text.splitlines():
        match = _TRANSCRIPT_LINE.match(line)
        if match:
            speaker = normalize_speaker(match.group(1))
            if speaker is not None:
                turns.append(Turn(speaker=speaker, text=match.group(2).strip()))
                continue
        if turns and line.strip():
            # Continuation of the previous speaker's turn
            last = turns[-1]
            turns[-1] = Turn(speaker=last.speaker, text=f"{last.text} {line.strip()}")
    return turns
