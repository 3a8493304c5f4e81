"""HTTP tests for the webhook, caller and lead routes."""
from __future__ import annotations

import pytest
from httpx import ASGITransport, AsyncClient

from intake.api.dependencies import get_caller_store, get_lead_reconciler, get_pipeline
from intake.api_server import app
from intake.services import data_extraction
from intake.services.call_pipeline import CallPipeline

TENANT = "agent_law_firm"


@pytest.fixture(autouse=True)
def stub_llm(monkeypatch):
    async def fake_call(transcript_text, category):
        return {"name": "Jane Doe", "purpose": "Car accident"}

    monkeypatch.setattr(data_extraction, "_call_llm_for_extraction", fake_call)


@pytest.fixture
def pipeline(db, locks) -> CallPipeline:
    return CallPipeline(db, locks)


@pytest.fixture(autouse=True)
def override(pipeline):
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    app.dependency_overrides[get_caller_store] = lambda: pipeline.callers
    app.dependency_overrides[get_lead_reconciler] = lambda: pipeline.leads
    yield pipeline
    app.dependency_overrides.clear()


def api_client() -> AsyncClient:
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver")


def call_ended(call_id="call-1", category="New Lead", phone="(555) 123-4567"):
    return {
        "event": "call_ended",
        "call_id": call_id,
        "tenant_id": TENANT,
        "from_number": phone,
        "category": category,
        "started_at": "2024-05-01T15:00:00Z",
        "transcript": "Agent: How can I help?\nUser: I was in a car accident.",
    }


@pytest.mark.asyncio
async def test_health():
    async with api_client() as client:
        response = await client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert "X-Request-ID" in response.headers


@pytest.mark.asyncio
async def test_call_ended_webhook_creates_lead():
    async with api_client() as client:
        response = await client.post("/webhooks/call-events", json=call_ended())

        body = response.json()
        assert response.status_code == 200
        assert body["status"] == "processed"
        assert body["decision"] == "new_lead"
        assert body["lead_id"] is not None
        assert body["record"]["name"] == "Jane Doe"

        leads = await client.get("/leads", params={"tenant_id": TENANT})
        assert leads.json()["total"] == 1
        assert leads.json()["data"][0]["phone_number"] == "+15551234567"


@pytest.mark.asyncio
async def test_non_terminal_event_is_ignored(fake_supabase):
    async with api_client() as client:
        payload = call_ended()
        payload["event"] = "call_started"

        response = await client.post("/webhooks/call-events", json=payload)

        assert response.json()["status"] == "ignored"
        assert fake_supabase.rows("callers") == []


@pytest.mark.asyncio
async def test_payload_without_call_id_is_rejected():
    async with api_client() as client:
        payload = call_ended()
        del payload["call_id"]

        response = await client.post("/webhooks/call-events", json=payload)

        assert response.status_code == 422


@pytest.mark.asyncio
async def test_store_outage_answers_503(fake_supabase):
    async with api_client() as client:
        fake_supabase.failing_tables.add("callers")

        response = await client.post("/webhooks/call-events", json=call_ended())

        assert response.status_code == 503


@pytest.mark.asyncio
async def test_conversion_shows_in_stats():
    async with api_client() as client:
        await client.post("/webhooks/call-events", json=call_ended("call-1", "New Lead"))
        await client.post("/webhooks/call-events", json=call_ended("call-2", "Existing Client"))

        stats = (await client.get("/leads/stats", params={"tenant_id": TENANT})).json()

        assert stats["total_leads"] == 1
        assert stats["approved"] == 1
        assert stats["conversions_detected"] == 1
        assert stats["conversion_rate"] == 100.0


@pytest.mark.asyncio
async def test_reviewer_status_update():
    async with api_client() as client:
        created = await client.post("/webhooks/call-events", json=call_ended())
        lead_id = created.json()["lead_id"]

        response = await client.post(f"/leads/{lead_id}/status", json={"status": "Denied", "updated_by": "intake@firm"})
        missing = await client.post("/leads/missing/status", json={"status": "Approved"})

        assert response.json()["lead"]["status"] == "Denied"
        assert missing.status_code == 404


@pytest.mark.asyncio
async def test_caller_lookup_and_fact_correction():
    async with api_client() as client:
        created = await client.post("/webhooks/call-events", json=call_ended())
        caller_id = created.json()["caller_id"]

        lookup = (await client.get("/callers/lookup", params={"phone": "555-123-4567", "tenant_id": TENANT})).json()
        assert lookup["is_known"] is True
        assert lookup["fields_to_confirm"][0] == {"field": "name", "value": "Jane Doe"}

        corrected = await client.post(
            f"/callers/{caller_id}/facts/name/corrections",
            json={"value": "Janet Doe", "recorded_by": "paralegal@firm"},
        )
        assert corrected.status_code == 200

        facts = (await client.get(f"/callers/{caller_id}/facts")).json()
        history = (await client.get(f"/callers/{caller_id}/facts/name/history")).json()
        assert facts["facts"]["name"]["field_value"] == "Janet Doe"
        assert history["total"] == 2

        missing = await client.post("/callers/missing/facts/name/corrections", json={"value": "x"})
        assert missing.status_code == 404



@pytest.mark.asyncio
async def test_ended_event_without_category_waits_for_analysis(fake_supabase):
    async with api_client() as client:
        ended = call_ended("call-9")
        del ended["category"]
        analyzed = call_ended("call-9", "Existing Client")
        analyzed["event"] = "call_analyzed"

        await client.post("/webhooks/call-events", json=call_ended("call-1", "New Lead"))
        waiting = await client.post("/webhooks/call-events", json=ended)
        processed = await client.post("/webhooks/call-events", json=analyzed)
        redelivered = await client.post("/webhooks/call-events", json=analyzed)

        assert waiting.json()["status"] == "ignored"
        assert processed.json()["decision"] == "conversion"
        assert redelivered.json()["decision"] == "already_processed"
        assert fake_supabase.rows("callers")[0]["total_calls"] == 2
