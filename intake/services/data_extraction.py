"""
Structured Field Extractor.

Turns one call transcript into an ``ExtractedRecord``. Two independent
paths feed the record:

1. A deterministic path: the caller-affirmed claim-number readback, decoded
   by the digit decoder. This is the ONLY source of ``claim_number``.
2. One LLM call (OpenAI-compatible chat completions, JSON response format)
   for name, email, callback phone, purpose and the category-specific
   case fields.

The extractor fails soft. If the LLM is unreachable, times out or returns
something unusable, the record still carries the deterministic fields and
everything else is null. It never guesses: a missing value beats a wrong
one.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from intake.config import get_settings
from intake.logging_config import get_logger
from intake.normalization import normalize_phone
from intake.schemas.extraction import CallCategory, ExtractedRecord, LLMExtraction
from intake.schemas.transcript import Transcript, transcript_as_text
from intake.services.confirmation_locator import find_confirmed_claim_number

settings = get_settings()
logger = get_logger(__name__)

# Status codes worth another attempt; everything else 4xx is final.
RETRYABLE_STATUS_CODES = frozenset({408, 429, 500, 502, 503, 504})
BACKOFF_BASE_SECONDS = 1.0

NULL_STRINGS = frozenset({"", "null", "none", "unknown", "n/a"})

NEW_LEAD_CASE_FIELDS = ("incident_description", "incident_date", "incident_location", "case_type")
PROFESSIONAL_CASE_FIELDS = ("who_representing", "case_name")
# Existing clients already have a case on file; nothing case-specific is captured.
CASE_FIELDS_BY_CATEGORY: dict[CallCategory, tuple[str, ...]] = {
    CallCategory.NEW_LEAD: NEW_LEAD_CASE_FIELDS,
    CallCategory.EXISTING_CLIENT: (),
}

_EMAIL = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")
_EMAIL_IN_TEXT = re.compile(r"[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}")
_FENCED_JSON = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)


class ExtractionUnavailableError(RuntimeError):
    """The language model could not be reached or kept failing."""


EXTRACTION_PROMPT = """You are extracting structured data from a phone call transcript for a law firm's intake line.

Call category: {category}

Return ONLY a JSON object with exactly these keys:
{
  "name": "string or null",
  "phone": "string or null",
  "email": "string or null",
  "purpose": "string or null",
  "claim_number": "string or null",
  "who_representing": "string or null",
  "case_name": "string or null",
  "incident_description": "string or null",
  "incident_date": "YYYY-MM-DD or null",
  "incident_location": "string or null",
  "case_type": "string or null"
}

RULES:
1. Use null whenever a value is not clearly stated. Never guess.
2. name: the caller's full name as they gave it; include a title for attorneys (e.g. "Attorney John Smith").
3. email: only an address spelled out or confirmed in the conversation ("m at firm dot com" counts).
4. phone: only a callback number stated or confirmed in the conversation. NEVER use caller-ID metadata.
5. purpose: the specific reason for the call, in one or two sentences.
6. who_representing / case_name: the firm, carrier or practice the caller represents and the client or patient they are calling about.
7. incident_*: for injured callers only; what happened, when, where. case_type: e.g. "car accident", "slip and fall".

TRANSCRIPT:
{transcript}"""


async def extract_call_record(
    transcript: Transcript,
    category: CallCategory,
    call_id: str,
) -> Optional[ExtractedRecord]:
    """
    Build the structured record for one call.

    Args:
        transcript: Ordered speaker turns.
        category: Category assigned upstream to the call.
        call_id: Platform call id, carried into the record.

    Returns:
        ExtractedRecord, or None only when the transcript is empty.
    """
    if not transcript or not any(turn.text.strip() for turn in transcript):
        logger.info("extraction_skipped_empty_transcript", call_id=call_id)
        return None

    logger.info(
        "extraction_started",
        call_id=call_id,
        category=category.value,
        turns=len(transcript),
    )

    claim_number = find_confirmed_claim_number(transcript, max_turns=settings.claim_scan_max_turns)

    try:
        raw = await _call_llm_for_extraction(transcript_as_text(transcript), category)
        extraction = LLMExtraction.model_validate(_clean_nulls(raw))
    except (ExtractionUnavailableError, ValidationError, ValueError, KeyError, IndexError, TypeError) as e:
        logger.error("extraction_llm_error", call_id=call_id, error=str(e))
        return ExtractedRecord(call_id=call_id, category=category, claim_number=claim_number)

    if extraction.claim_number and extraction.claim_number != claim_number:
        logger.info(
            "claim_number_llm_disagreed",
            call_id=call_id,
            confirmed=claim_number is not None,
        )

    email = clean_email(extraction.email) or _email_from_transcript(transcript)

    record = ExtractedRecord(
        call_id=call_id,
        category=category,
        name=_clean_text(extraction.name),
        email=email,
        phone=normalize_phone(extraction.phone),
        claim_number=claim_number,
        purpose=_clean_text(extraction.purpose),
        case_fields=build_case_fields(extraction, category),
    )

    logger.info(
        "extraction_complete",
        call_id=call_id,
        fields_extracted=sorted(k for k, v in record.model_dump(exclude={"call_id", "category"}).items() if v),
        has_claim_number=claim_number is not None,
    )
    return record


async def _call_llm_for_extraction(transcript_text: str, category: CallCategory) -> dict[str, Any]:
    """
    One chat-completions request with bounded retries.

    Retries transport errors, timeouts, 429 and 5xx with exponential
    backoff (1s, 2s, 4s...). Anything else raises immediately.

    Raises:
        ExtractionUnavailableError: when every attempt failed.
        ValueError: when the reply is not a JSON object.
    """
    prompt = (
        EXTRACTION_PROMPT
        .replace("{category}", category.value)
        .replace("{transcript}", transcript_text)
    )
    attempts = settings.extraction_max_retries + 1
    last_error: Exception | None = None

    async with httpx.AsyncClient(timeout=settings.extraction_timeout_seconds) as client:
        for attempt in range(attempts):
            if attempt:
                delay = BACKOFF_BASE_SECONDS * (2 ** (attempt - 1))
                logger.warning("extraction_llm_retry", attempt=attempt + 1, delay=delay, error=str(last_error))
                await asyncio.sleep(delay)
            try:
                response = await client.post(
                    f"{settings.openai_base_url.rstrip('/')}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {settings.openai_api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": settings.extraction_model,
                        "messages": [
                            {"role": "system", "content": "You are a precise data extraction system. Return only valid JSON."},
                            {"role": "user", "content": prompt},
                        ],
                        "response_format": {"type": "json_object"},
                        "temperature": 0,
                    },
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                if e.response.status_code not in RETRYABLE_STATUS_CODES:
                    raise ExtractionUnavailableError(f"LLM request rejected: {e.response.status_code}") from e
                last_error = e
                continue
            except httpx.RequestError as e:
                last_error = e
                continue

            data = response.json()
            content = data["choices"][0]["message"]["content"]
            return parse_llm_json(content)

    raise ExtractionUnavailableError(f"LLM unavailable after {attempts} attempts: {last_error}")


def parse_llm_json(content: str) -> dict[str, Any]:
    """Parse the model reply, tolerating a ```json fenced block."""
    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        fenced = _FENCED_JSON.search(content or "")
        if not fenced:
            raise ValueError("LLM reply is not JSON")
        parsed = json.loads(fenced.group(1))

    if not isinstance(parsed, dict):
        raise ValueError(f"LLM reply is a {type(parsed).__name__}, expected an object")
    return parsed


def clean_email(raw: Optional[str]) -> Optional[str]:
    """
    Collapse a spoken address ("john at firm dot com") and validate it.

    Returns None for anything that is not a plausible address.
    """
    if not raw:
        return None
    email = raw.strip().lower()
    if "@" not in email:
        email = re.sub(r"\s+at\s+", "@", email)
    email = re.sub(r"\s+dot\s+", ".", email)
    email = re.sub(r"\s+", "", email)
    return email if _EMAIL.match(email) else None


def build_case_fields(extraction: LLMExtraction, category: CallCategory) -> dict[str, str]:
    """Keep only the case fields that apply to ``category``, dropping nulls."""
    keys = CASE_FIELDS_BY_CATEGORY.get(category, PROFESSIONAL_CASE_FIELDS)
    fields: dict[str, str] = {}
    for key in keys:
        value = _clean_text(getattr(extraction, key))
        if value is not None:
            fields[key] = value
    return fields


def _clean_nulls(raw: dict[str, Any]) -> dict[str, Any]:
    """Turn "null"-like strings into None and coerce scalars to str."""
    cleaned: dict[str, Any] = {}
    for key, value in raw.items():
        if isinstance(value, str) and value.strip().lower() in NULL_STRINGS:
            value = None
        elif isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        cleaned[key] = value
    return cleaned


def _clean_text(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    value = value.strip()
    return value or None


def _email_from_transcript(transcript: Transcript) -> Optional[str]:
    """Fall back to a literal address typed into the transcript."""
    for turn in transcript:
        match = _EMAIL_IN_TEXT.search(turn.text)
        if match:
            return clean_email(match.group(0))
    return None
