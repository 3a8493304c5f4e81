"""Tests for webhook payload normalization."""
from __future__ import annotations

from datetime import datetime, timezone

import pytest

from intake.normalization import (
    PayloadError,
    normalize_call_event,
    normalize_category,
    normalize_phone,
    normalize_transcript,
)
from intake.schemas.call import CallEventType
from intake.schemas.extraction import CallCategory
from intake.schemas.transcript import Speaker


@pytest.mark.parametrize("raw, expected", [
    ("(555) 123-4567", "+15551234567"),
    ("+1 555 123 4567", "+15551234567"),
    ("15551234567", "+15551234567"),
    ("+44 20 7946 0958", "+442079460958"),
    ("Anonymous", None),
    ("RESTRICTED", None),
    ("12345", None),
    ("", None),
    (None, None),
])
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected


@pytest.mark.parametrize("raw, expected", [
    ("New Lead", CallCategory.NEW_LEAD),
    ("new_lead", CallCategory.NEW_LEAD),
    ("existing-client", CallCategory.EXISTING_CLIENT),
    ("MEDICAL PROFESSIONAL", CallCategory.MEDICAL_PROFESSIONAL),
    ("Spam", CallCategory.OTHER),
    (None, CallCategory.OTHER),
])
def test_normalize_category(raw, expected):
    assert normalize_category(raw) == expected


def test_transcript_from_message_list_maps_roles():
    turns = normalize_transcript([
        {"role": "agent", "content": "How can I help?"},
        {"role": "user", "content": "I have a claim."},
        {"role": "tool_call", "content": "lookup()"},
        {"speaker": "caller", "text": "It's 1 2 3."},
    ])

    assert [t.speaker for t in turns] == [Speaker.AGENT, Speaker.CALLER, Speaker.CALLER]
    assert turns[2].text == "It's 1 2 3."


def test_transcript_from_text_keeps_continuation_lines():
    turns = normalize_transcript("Agent: Hello, how can I help?\nUser: My claim number is\n5 5 0 1.\nAgent: Thanks.")

    assert len(turns) == 3
    assert turns[1].speaker == Speaker.CALLER
    assert turns[1].text == "My claim number is 5 5 0 1."


def test_nested_call_payload():
    payload = {
        "event": "call_analyzed",
        "call": {
            "call_id": "call_abc",
            "agent_id": "agent_law_firm",
            "from_number": "+1 (555) 123-4567",
            "start_timestamp": 1714575600000,
            "transcript_object": [
                {"role": "agent", "content": "Hi"},
                {"role": "user", "content": "Hello"},
            ],
            "call_analysis": {"custom_analysis_data": {"call_category": "Existing Client"}},
        },
    }

    event = normalize_call_event(payload)

    assert event.event_type == CallEventType.CALL_ANALYZED
    assert event.call_id == "call_abc"
    assert event.tenant_id == "agent_law_firm"
    assert event.from_number == "+15551234567"
    assert event.category == CallCategory.EXISTING_CLIENT
    assert event.started_at == datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)
    assert len(event.transcript) == 2


def test_flat_payload_defaults_to_call_ended():
    event = normalize_call_event({
        "call_id": "call_1",
        "tenant_id": "t1",
        "phone": "anonymous",
        "category": "New Lead",
        "transcript": "Agent: Hi\nCaller: Hi",
        "started_at": "2024-05-01T15:00:00Z",
    })

    assert event.event_type == CallEventType.CALL_ENDED
    assert event.from_number is None
    assert event.started_at == datetime(2024, 5, 1, 15, 0, tzinfo=timezone.utc)


def test_unknown_event_type_is_not_terminal():
    event = normalize_call_event({"event": "transcript_updated", "call_id": "c", "tenant_id": "t"})

    assert event.event_type == CallEventType.OTHER
    assert event.event_type.is_terminal is False


@pytest.mark.parametrize("payload", [
    {"tenant_id": "t1"},
    {"call": {"call_id": "call_1"}},
])
def test_missing_identifiers_raise(payload):
    with pytest.raises(PayloadError):
        normalize_call_event(payload)


def test_ended_event_without_category_awaits_analysis():
    ended = normalize_call_event({"event": "call_ended", "call_id": "c", "tenant_id": "t"})
    analyzed = normalize_call_event({"event": "call_analyzed", "call_id": "c", "tenant_id": "t"})

    assert ended.has_category is False
    assert ended.awaiting_analysis is True
    assert analyzed.awaiting_analysis is False
    assert analyzed.category == CallCategory.OTHER
