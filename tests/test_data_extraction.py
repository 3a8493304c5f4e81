"""Tests for the structured field extractor and its LLM call."""
from __future__ import annotations

import json

import httpx
import pytest

from conftest import agent, caller
from intake.schemas.extraction import CallCategory, LLMExtraction
from intake.services import data_extraction
from intake.services.data_extraction import (
    ExtractionUnavailableError,
    build_case_fields,
    clean_email,
    extract_call_record,
    parse_llm_json,
)


def claim_transcript():
    return [
        agent("Thanks for calling Smith Law. Do you have a claim number?"),
        caller("Yes, it's 5 5 0 1 9 8 3."),
        agent("Let me confirm, the claim number is 5 5 0 1 9 8 3, is that correct?"),
        caller("Correct."),
        agent("Thank you. How can I help you today?"),
        caller("I'm Jane Doe, I need an update. My email is jane at doe mail dot com."),
    ]


def stub_llm(monkeypatch, reply=None, error=None):
    calls = []

    async def fake_call(transcript_text, category):
        calls.append((transcript_text, category))
        if error is not None:
            raise error
        return reply

    monkeypatch.setattr(data_extraction, "_call_llm_for_extraction", fake_call)
    return calls


@pytest.mark.asyncio
async def test_empty_transcript_returns_none_without_llm_call(monkeypatch):
    calls = stub_llm(monkeypatch, reply={})

    assert await extract_call_record([], CallCategory.NEW_LEAD, "call-1") is None
    assert await extract_call_record([caller("   ")], CallCategory.NEW_LEAD, "call-1") is None
    assert calls == []


@pytest.mark.asyncio
async def test_llm_claim_number_is_overridden_by_confirmed_readback(monkeypatch):
    stub_llm(monkeypatch, reply={
        "name": "Jane Doe",
        "email": "jane at doe mail dot com",
        "claim_number": "5501988",
        "purpose": "Wants a case status update",
    })

    record = await extract_call_record(claim_transcript(), CallCategory.EXISTING_CLIENT, "call-1")

    assert record.claim_number == "5501983"
    assert record.name == "Jane Doe"
    assert record.email == "jane@doemail.com"
    assert record.purpose == "Wants a case status update"
    assert record.case_fields == {}


@pytest.mark.asyncio
async def test_llm_claim_number_is_dropped_without_confirmation(monkeypatch):
    stub_llm(monkeypatch, reply={"name": "Jane Doe", "claim_number": "5501983"})
    transcript = [agent("How can I help you?"), caller("My claim is 5 5 0 1 9 8 3.")]

    record = await extract_call_record(transcript, CallCategory.EXISTING_CLIENT, "call-2")

    assert record.claim_number is None
    assert record.name == "Jane Doe"


@pytest.mark.parametrize("error", [
    ExtractionUnavailableError("LLM unavailable after 3 attempts"),
    ValueError("LLM reply is not JSON"),
])
@pytest.mark.asyncio
async def test_llm_failure_keeps_deterministic_fields(monkeypatch, error):
    stub_llm(monkeypatch, error=error)

    record = await extract_call_record(claim_transcript(), CallCategory.EXISTING_CLIENT, "call-3")

    assert record is not None
    assert record.claim_number == "5501983"
    assert record.name is None
    assert record.email is None
    assert record.purpose is None


@pytest.mark.asyncio
async def test_schema_violation_fails_soft(monkeypatch):
    stub_llm(monkeypatch, reply={"name": {"first": "Jane"}})

    record = await extract_call_record(claim_transcript(), CallCategory.NEW_LEAD, "call-4")

    assert record.name is None
    assert record.claim_number == "5501983"


@pytest.mark.asyncio
async def test_null_strings_and_invalid_values_become_none(monkeypatch):
    stub_llm(monkeypatch, reply={
        "name": "null",
        "email": "not an email",
        "phone": "(555) 123-4567",
        "purpose": "",
        "incident_description": "Rear-ended at a red light",
        "incident_date": "2024-03-02",
        "who_representing": "Acme Insurance",
        "case_type": "None",
    })
    transcript = [agent("How can I help?"), caller("I was in a car accident.")]

    record = await extract_call_record(transcript, CallCategory.NEW_LEAD, "call-5")

    assert record.name is None
    assert record.email is None
    assert record.phone == "+15551234567"
    assert record.purpose is None
    assert record.case_fields == {
        "incident_description": "Rear-ended at a red light",
        "incident_date": "2024-03-02",
    }


@pytest.mark.asyncio
async def test_literal_email_in_transcript_is_used_when_llm_has_none(monkeypatch):
    stub_llm(monkeypatch, reply={"email": None})
    transcript = [agent("Your email?"), caller("It's Jane.Doe@Example.com")]

    record = await extract_call_record(transcript, CallCategory.OTHER, "call-6")

    assert record.email == "jane.doe@example.com"


def test_professional_case_fields():
    extraction = LLMExtraction(who_representing="Acme Insurance", case_name="John Roe", incident_date="2024-01-01")

    assert build_case_fields(extraction, CallCategory.INSURANCE) == {
        "who_representing": "Acme Insurance",
        "case_name": "John Roe",
    }
    assert build_case_fields(extraction, CallCategory.EXISTING_CLIENT) == {}


@pytest.mark.parametrize("raw, expected", [
    ("john at smith law dot com", "john@smithlaw.com"),
    ("Mary.Jones@Company.com", "mary.jones@company.com"),
    ("m at company", None),
    ("", None),
    (None, None),
])
def test_clean_email(raw, expected):
    assert clean_email(raw) == expected


def test_parse_llm_json_accepts_fenced_block():
    assert parse_llm_json('```json\n{"name": "Jane"}\n```') == {"name": "Jane"}
    with pytest.raises(ValueError):
        parse_llm_json("[1, 2]")
    with pytest.raises(ValueError):
        parse_llm_json("sorry, I can't help")


def patch_transport(monkeypatch, handler):
    real_client = httpx.AsyncClient
    monkeypatch.setattr(
        data_extraction.httpx,
        "AsyncClient",
        lambda **kwargs: real_client(transport=httpx.MockTransport(handler), **kwargs),
    )
    monkeypatch.setattr(data_extraction, "BACKOFF_BASE_SECONDS", 0.0)


def completion(content: dict) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": json.dumps(content)}}]})


@pytest.mark.asyncio
async def test_llm_call_retries_on_server_error(monkeypatch):
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        if len(requests) == 1:
            return httpx.Response(503)
        return completion({"name": "Jane Doe"})

    patch_transport(monkeypatch, handler)

    result = await data_extraction._call_llm_for_extraction("AGENT: hi", CallCategory.NEW_LEAD)

    assert result == {"name": "Jane Doe"}
    assert len(requests) == 2
    assert requests[0]["temperature"] == 0
    assert requests[0]["response_format"] == {"type": "json_object"}
    assert "Call category: New Lead" in requests[0]["messages"][1]["content"]


@pytest.mark.asyncio
async def test_llm_call_gives_up_after_bounded_retries(monkeypatch):
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(429)

    patch_transport(monkeypatch, handler)

    with pytest.raises(ExtractionUnavailableError):
        await data_extraction._call_llm_for_extraction("AGENT: hi", CallCategory.OTHER)

    assert len(attempts) == data_extraction.settings.extraction_max_retries + 1


@pytest.mark.asyncio
async def test_llm_call_does_not_retry_client_errors(monkeypatch):
    attempts = []

    def handler(request):
        attempts.append(request)
        return httpx.Response(401)

    patch_transport(monkeypatch, handler)

    with pytest.raises(ExtractionUnavailableError):
        await data_extraction._call_llm_for_extraction("AGENT: hi", CallCategory.OTHER)

    assert len(attempts) == 1


@pytest.mark.asyncio
async def test_undecodable_response_body_is_retried(monkeypatch):
    attempts = []

    def handler(request):
        attempts.append(request)
        raise httpx.DecodingError("bad gzip stream", request=request)

    patch_transport(monkeypatch, handler)

    with pytest.raises(ExtractionUnavailableError):
        await data_extraction._call_llm_for_extraction("AGENT: hi", CallCategory.OTHER)

    assert len(attempts) == data_extraction.settings.extraction_max_retries + 1
