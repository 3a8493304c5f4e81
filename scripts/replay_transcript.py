"""
CLI tool to replay a saved call through the extractor.

Reads a webhook payload (or a bare transcript) from a JSON file, shows
the claim-number exchange the locator found and the decoded value, and
optionally runs the full LLM extraction or the whole pipeline.

Usage:
    python scripts/replay_transcript.py <payload.json> [--category "New Lead"]
    python scripts/replay_transcript.py <payload.json> --extract
    python scripts/replay_transcript.py <payload.json> --process

Examples:
    # Check claim-number recovery only (no LLM, no database)
    python scripts/replay_transcript.py calls/call_abc.json

    # Full pipeline against the configured Supabase project
    python scripts/replay_transcript.py calls/call_abc.json --process
"""

import argparse
import asyncio
import json
import os
import sys

sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), "..")))

from dotenv import load_dotenv
load_dotenv(".env.local")

from intake.db import get_db
from intake.logging_config import get_logger, setup_logging
from intake.normalization import normalize_call_event, normalize_category, normalize_transcript
from intake.schemas.call import CallEvent
from intake.schemas.transcript import transcript_as_text
from intake.services.call_pipeline import CallPipeline
from intake.services.confirmation_locator import (
    claim_exchange_excerpt,
    find_confirmed_claim_number,
    locate_confirmed_readback,
)
from intake.services.data_extraction import extract_call_record
from intake.services.locks import LocalKeyedLock

setup_logging()
logger = get_logger(__name__)


def load_event(path: str, category: str | None) -> CallEvent:
    """Build a CallEvent from a webhook payload or a bare transcript file."""
    with open(path, encoding="utf-8") as f:
        payload = json.load(f)

    if isinstance(payload, dict) and ("call" in payload or "call_id" in payload):
        event = normalize_call_event(payload)
    else:
        event = CallEvent(
            call_id=os.path.splitext(os.path.basename(path))[0],
            tenant_id="replay",
            transcript=normalize_transcript(payload),
        )

    if category:
        event = event.model_copy(update={"category": normalize_category(category)})
    return event


async def replay(path: str, category: str | None, extract: bool, process: bool) -> None:
    event = load_event(path, category)
    print(f"Call {event.call_id}: {len(event.transcript)} turns, category {event.category.value}")

    excerpt = claim_exchange_excerpt(event.transcript)
    if excerpt:
        print("\nClaim-number exchange:")
        print(transcript_as_text(excerpt))
    else:
        print("\nNo claim number discussed.")

    exchange = locate_confirmed_readback(event.transcript)
    if exchange:
        print(f"\nConfirmed readback (turn {exchange.readback_index}): {exchange.readback_text}")
    print(f"Decoded claim number: {find_confirmed_claim_number(event.transcript) or '-'}")

    if process:
        pipeline = CallPipeline(get_db(), LocalKeyedLock())
        result = await pipeline.process(event)
        print(f"\nDecision: {result.reconciliation.decision.value}")
        print(json.dumps(result.model_dump(mode="json"), indent=2))
    elif extract:
        record = await extract_call_record(event.transcript, event.category, event.call_id)
        print("\nExtracted record:")
        print(json.dumps(record.model_dump(mode="json") if record else None, indent=2))


def main() -> None:
    parser = argparse.ArgumentParser(description="Replay a saved call through the extractor")
    parser.add_argument("path", help="JSON file: webhook payload or list of {role, content} turns")
    parser.add_argument("--category", help="Override the call category")
    parser.add_argument("--extract", action="store_true", help="Also run the LLM extraction")
    parser.add_argument("--process", action="store_true", help="Run the full pipeline (writes to the store)")

    args = parser.parse_args()

    asyncio.run(replay(
        path=args.path,
        category=args.category,
        extract=args.extract,
        process=args.process,
    ))


if __name__ == "__main__":
    main()
