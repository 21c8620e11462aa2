"""
Test suite for VAPI webhook processing.

Covers the orchestration service directly and the HTTP surface through the
FastAPI app with in-memory repositories.

Run with: pytest tests/test_vapi_webhook.py -v
"""
import copy
from datetime import datetime, timezone

import httpx
import pytest

from src.exceptions import MissingCallIdError
from src.services.vapi_webhook_service import (
    UNRESOLVED_TENANT_WARNING,
    VapiWebhookService,
    build_escalation,
    parse_timestamp,
)

from tests.conftest import BUSINESS_ID, FakeBusinessRepository


class TestWebhookService:
    """VapiWebhookService.handle end to end against fake repositories."""

    @pytest.mark.asyncio
    async def test_end_of_call_report(self, webhook_service: VapiWebhookService, end_of_call_report, call_repo, business_repo):
        response = await webhook_service.handle(end_of_call_report)

        assert response.success
        assert response.call_id == "call-123"
        assert response.business_id == BUSINESS_ID
        assert response.status == "ended"
        assert response.message_type == "end-of-call-report"
        assert response.training_written
        assert response.warning is None
        assert business_repo.phone_lookups == ["15550102000"], "Dialled number is looked up as digits"

        row = call_repo.calls["call-123"]
        assert row["status"] == "ended"
        assert row["patient_name"] == "Jane Doe"
        assert row["phone"] == "+1 555 867 5309"
        assert row["started_at"] == datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)
        assert row["ended_at"] == datetime(2025, 3, 10, 15, 4, 30, tzinfo=timezone.utc)
        assert row["ended_reason"] == "customer-ended-call"
        assert row["upsell"] is True
        assert row["appointment_booked"] is True
        assert row["total_turns"] == 3
        assert row["last_summary"] == "Jane Doe booked an IV drip for March 14."

    @pytest.mark.asyncio
    async def test_schedule_uses_business_timezone(self, webhook_service, end_of_call_report, call_repo):
        await webhook_service.handle(end_of_call_report)

        schedule = call_repo.calls["call-123"]["schedule"]
        assert schedule.confirmed
        assert schedule.service == "IV Drip"
        assert schedule.start.replace(tzinfo=None) == datetime(2025, 3, 14, 14, 30)
        assert str(schedule.start.tzinfo) == "America/New_York"

    @pytest.mark.asyncio
    async def test_turns_are_reconstructed(self, webhook_service, end_of_call_report, call_repo):
        await webhook_service.handle(end_of_call_report)

        turns = await call_repo.get_turns("call-123")
        assert [turn["role"] for turn in turns] == ["assistant", "caller", "assistant"]
        assert [turn["turn_number"] for turn in turns] == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_training_record(self, webhook_service, end_of_call_report, call_repo, pseudonymizer):
        await webhook_service.handle(end_of_call_report)

        training = call_repo.training["call-123"]
        dumped = training.model_dump_json()
        assert training.phone_token == pseudonymizer.token("+1 555 867 5309", "phone")
        assert training.name_token == pseudonymizer.token("Jane Doe", "name")
        for raw in ("Jane", "jane.doe@example.com", "Glow Med Spa"):
            assert raw not in training.transcript, f"{raw!r} leaked into the training transcript"
        assert "Jane" not in dumped
        assert training.schedule["month"] == "2025-03"
        assert training.started_month == "2025-03"

    @pytest.mark.asyncio
    async def test_duplicate_terminal_event_is_idempotent(self, webhook_service, end_of_call_report, call_repo):
        await webhook_service.handle(end_of_call_report)
        first_row = dict(call_repo.calls["call-123"])
        first_training = call_repo.training["call-123"]

        await webhook_service.handle(copy.deepcopy(end_of_call_report))

        assert len(call_repo.calls) == 1
        assert len(call_repo.training) == 1
        assert call_repo.calls["call-123"] == first_row
        assert call_repo.training["call-123"] == first_training

    @pytest.mark.asyncio
    async def test_started_at_is_set_once(self, webhook_service, status_update, end_of_call_report, call_repo):
        await webhook_service.handle(status_update)
        started_at = call_repo.calls["call-123"]["started_at"]
        assert started_at is not None, "A start status sets started_at"

        await webhook_service.handle(end_of_call_report)
        assert call_repo.calls["call-123"]["started_at"] == started_at

    @pytest.mark.asyncio
    async def test_later_events_do_not_erase_fields(self, webhook_service, end_of_call_report, call_repo):
        await webhook_service.handle(end_of_call_report)
        await webhook_service.handle({"message": {"type": "status-update", "status": "ended", "call": {"id": "call-123"}}})

        row = call_repo.calls["call-123"]
        assert row["patient_name"] == "Jane Doe"
        assert row["last_summary"] is not None
        assert row["business_id"] == BUSINESS_ID

    @pytest.mark.asyncio
    async def test_status_update_does_not_write_training(self, webhook_service, status_update, call_repo):
        response = await webhook_service.handle(status_update)

        assert response.status == "in-progress"
        assert not response.training_written
        assert call_repo.training == {}

    @pytest.mark.asyncio
    async def test_unmapped_status_is_in_progress(self, webhook_service, call_repo):
        response = await webhook_service.handle({"type": "conversation-update", "call": {"id": "call-9"}})

        assert response.status == "in progress"
        assert call_repo.calls["call-9"]["status"] == "in progress"

    @pytest.mark.asyncio
    async def test_missing_call_id(self, webhook_service, call_repo):
        with pytest.raises(MissingCallIdError):
            await webhook_service.handle({"message": {"type": "status-update", "status": "ringing"}})
        assert call_repo.calls == {}

    @pytest.mark.asyncio
    async def test_unresolved_tenant(self, writer, pseudonymizer, detector, end_of_call_report, call_repo):
        service = VapiWebhookService(FakeBusinessRepository(), writer, pseudonymizer, detector)

        response = await service.handle(end_of_call_report)

        assert response.success
        assert response.business_id is None
        assert response.warning == UNRESOLVED_TENANT_WARNING
        assert call_repo.calls["call-123"]["business_id"] is None

    @pytest.mark.asyncio
    async def test_workflow_id_fallback(self, webhook_service, end_of_call_report):
        message = end_of_call_report["message"]
        message["call"]["phoneNumber"] = {"number": "+1 555 000 0000"}
        message["call"]["workflowId"] = "wf-glow"

        response = await webhook_service.handle(end_of_call_report)
        assert response.business_id == BUSINESS_ID

    @pytest.mark.asyncio
    async def test_sensitive_transcript(self, webhook_service, end_of_call_report, call_repo):
        end_of_call_report["message"]["artifact"]["transcript"] += "\nUser: Honestly I want to kill myself."

        await webhook_service.handle(end_of_call_report)

        row = call_repo.calls["call-123"]
        assert row["sensitive_categories"] == ["self_harm"]
        assert "kill myself" not in row["transcript"]
        assert "[SENSITIVE CONTENT]" in row["transcript"]
        assert "Jane Doe" in row["transcript"], "Operators still see who called"

        training = call_repo.training["call-123"]
        assert "[PERSON]" in training.transcript
        assert training.sensitive_categories == ["self_harm"]

    @pytest.mark.asyncio
    async def test_escalation(self, webhook_service, end_of_call_report, call_repo):
        end_of_call_report["message"]["destination"] = {
            "type": "number",
            "number": "+15559990000",
            "message": "Transferring you to the front desk",
        }

        await webhook_service.handle(end_of_call_report)

        row = call_repo.calls["call-123"]
        assert row["escalate"] is True
        assert row["escalation"].destination_number == "+15559990000"

    @pytest.mark.asyncio
    async def test_assistant_handoff_is_not_escalation(self, webhook_service, end_of_call_report, call_repo):
        end_of_call_report["message"]["destination"] = {"type": "assistant", "assistantName": "Billing"}

        await webhook_service.handle(end_of_call_report)

        assert call_repo.calls["call-123"]["escalate"] is False
        assert call_repo.calls["call-123"]["escalation"] is None

    @pytest.mark.asyncio
    async def test_fingerprint_links_calls(self, webhook_service, end_of_call_report, call_repo):
        await webhook_service.handle(end_of_call_report)
        second = copy.deepcopy(end_of_call_report)
        second["message"]["call"]["id"] = "call-456"
        second["message"]["customer"]["number"] = "15558675309"
        await webhook_service.handle(second)

        assert call_repo.calls["call-123"]["patient_fingerprint"] == call_repo.calls["call-456"]["patient_fingerprint"]

    @pytest.mark.asyncio
    async def test_anonymous_fingerprint_is_stable_per_call(self, webhook_service, call_repo):
        payload = {"type": "end-of-call-report", "call": {"id": "call-anon"}}
        await webhook_service.handle(payload)
        first = call_repo.calls["call-anon"]["patient_fingerprint"]
        await webhook_service.handle(payload)

        assert first.startswith("anon-")
        assert call_repo.calls["call-anon"]["patient_fingerprint"] == first

    @pytest.mark.asyncio
    async def test_training_failure_still_succeeds(self, webhook_service, end_of_call_report, call_repo):
        call_repo.fail_training = True

        response = await webhook_service.handle(end_of_call_report)

        assert response.success
        assert not response.training_written
        assert "call-123" in call_repo.calls

    @pytest.mark.asyncio
    async def test_training_uses_identity_from_earlier_events(self, webhook_service, end_of_call_report, call_repo, pseudonymizer):
        await webhook_service.handle({"message": {
            "type": "status-update",
            "status": "in-progress",
            "call": {"id": "call-123"},
            "customer": {"number": "+1 555 222 3333", "name": "Priya Raman"},
        }})
        report = end_of_call_report["message"]
        del report["customer"]
        del report["artifact"]["messages"]
        report["artifact"]["transcript"] = (
            "AI: Who am I speaking with?\n"
            "User: This is Priya Raman, call me back on +1 555 222 3333."
        )
        report["analysis"]["summary"] = "Priya Raman asked for a callback."

        await webhook_service.handle(end_of_call_report)

        row = call_repo.calls["call-123"]
        training = call_repo.training["call-123"]
        assert row["patient_name"] == "Priya Raman"
        assert not row["patient_fingerprint"].startswith("anon-")
        assert training.name_token == pseudonymizer.token("Priya Raman", "name")
        assert training.phone_token == pseudonymizer.token("+1 555 222 3333", "phone")
        assert "Priya" not in training.model_dump_json()

    @pytest.mark.asyncio
    async def test_earlier_name_is_redacted_when_event_name_differs(self, webhook_service, end_of_call_report, call_repo):
        await webhook_service.handle({
            "type": "status-update",
            "status": "in-progress",
            "call": {"id": "call-123"},
            "customer": {"name": "Priya Raman"},
        })
        report = end_of_call_report["message"]
        report["customer"]["name"] = "P. Raman"
        report["artifact"]["transcript"] += "\nUser: Again, it is Priya Raman."

        await webhook_service.handle(end_of_call_report)

        assert "Priya Raman" not in call_repo.training["call-123"].transcript

    @pytest.mark.asyncio
    async def test_fingerprint_is_not_replaced_by_placeholder(self, webhook_service, status_update, call_repo):
        await webhook_service.handle(status_update)
        fingerprint = call_repo.calls["call-123"]["patient_fingerprint"]

        await webhook_service.handle({"type": "conversation-update", "call": {"id": "call-123"}})

        assert not fingerprint.startswith("anon-")
        assert call_repo.calls["call-123"]["patient_fingerprint"] == fingerprint

    @pytest.mark.asyncio
    async def test_ended_call_is_not_reopened(self, webhook_service, end_of_call_report, call_repo):
        await webhook_service.handle(end_of_call_report)

        await webhook_service.handle({"type": "conversation-update", "call": {"id": "call-123", "status": "in-progress"}})

        assert call_repo.calls["call-123"]["status"] == "ended"

    @pytest.mark.asyncio
    async def test_string_destination(self, webhook_service, call_repo):
        response = await webhook_service.handle({"message": {
            "type": "status-update",
            "status": "forwarding",
            "call": {"id": "call-123"},
            "destination": "+15559990000",
        }})

        assert response.success
        row = call_repo.calls["call-123"]
        assert row["escalate"] is True
        assert row["escalation"].destination_number == "+15559990000"

    @pytest.mark.asyncio
    async def test_numeric_ids(self, webhook_service, call_repo):
        response = await webhook_service.handle({
            "type": "status-update",
            "status": "ringing",
            "call": {"id": 987654, "phoneNumber": {"number": 15550102000}},
        })

        assert response.call_id == "987654"
        assert response.business_id == BUSINESS_ID
        assert "987654" in call_repo.calls

    @pytest.mark.asyncio
    async def test_malformed_sub_objects_are_ignored(self, webhook_service, call_repo):
        response = await webhook_service.handle({
            "type": "end-of-call-report",
            "call": {"id": "call-7", "customer": "Jane", "startedAt": ["soon"]},
            "customer": 42,
            "artifact": {"messages": "not a list", "transcript": {"text": "hello"}},
            "analysis": "n/a",
            "destination": 17,
        })

        assert response.success
        assert response.training_written
        assert call_repo.calls["call-7"]["escalation"] is None
        assert call_repo.calls["call-7"]["status"] == "ended"


class TestHelpers:

    @pytest.mark.parametrize("value,expected", [
        ("2025-03-10T15:00:00Z", datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)),
        ("2025-03-10T15:00:00.000Z", datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)),
        (1741618800000, datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)),
        ("yesterday", None),
        (None, None),
    ])
    def test_parse_timestamp(self, value, expected):
        assert parse_timestamp(value) == expected

    def test_build_escalation(self):
        assert build_escalation("sip:desk@clinic.example").destination_sip_uri == "sip:desk@clinic.example"
        assert build_escalation("+15559990000").destination_type == "number"
        assert build_escalation({"type": "number"}) is None
        assert build_escalation("front desk") is None
        assert build_escalation(None) is None


class TestWebhookAPI:
    """HTTP surface: /webhook and /vapi/webhook."""

    @pytest.mark.asyncio
    async def test_post_webhook(self, client: httpx.AsyncClient, end_of_call_report, call_repo):
        resp = await client.post("/webhook", json=end_of_call_report)

        assert resp.status_code == 200, f"Unexpected status: {resp.status_code}, body: {resp.text}"
        data = resp.json()
        assert data["success"] is True
        assert data["call_id"] == "call-123"
        assert data["status"] == "ended"
        assert data["training_written"] is True
        assert "call-123" in call_repo.calls

    @pytest.mark.asyncio
    async def test_vapi_prefix_alias(self, client: httpx.AsyncClient, status_update):
        resp = await client.post("/vapi/webhook", json=status_update)

        assert resp.status_code == 200
        assert resp.json()["status"] == "in-progress"

    @pytest.mark.asyncio
    async def test_bare_message(self, client: httpx.AsyncClient, status_update):
        resp = await client.post("/webhook", json=status_update["message"])
        assert resp.json()["call_id"] == "call-123"

    @pytest.mark.asyncio
    async def test_missing_call_id_is_400(self, client: httpx.AsyncClient):
        resp = await client.post("/webhook", json={"message": {"type": "status-update"}})

        assert resp.status_code == 400
        assert resp.json()["success"] is False
        assert resp.json()["error"] == "Missing call_id"

    @pytest.mark.asyncio
    async def test_persistence_failure_is_200(self, client: httpx.AsyncClient, end_of_call_report, call_repo):
        call_repo.fail_upsert = True

        resp = await client.post("/webhook", json=end_of_call_report)

        assert resp.status_code == 200
        assert resp.json() == {"success": False, "error": "database unavailable"}

    @pytest.mark.asyncio
    async def test_loosely_shaped_event_is_stored(self, client: httpx.AsyncClient, call_repo):
        resp = await client.post("/webhook", json={"message": {
            "type": "status-update",
            "status": "forwarding",
            "call": {"id": 4242},
            "destination": "sip:desk@clinic.example",
        }})

        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert call_repo.calls["4242"]["escalation"].destination_sip_uri == "sip:desk@clinic.example"

    @pytest.mark.asyncio
    async def test_invalid_json_is_200(self, client: httpx.AsyncClient):
        resp = await client.post("/webhook", content=b"{not json", headers={"Content-Type": "application/json"})

        assert resp.status_code == 200
        assert resp.json()["success"] is False

    @pytest.mark.asyncio
    async def test_get_webhook(self, client: httpx.AsyncClient):
        resp = await client.get("/webhook")
        assert resp.json() == {"status": "ok", "service": "vapi-webhook"}

    @pytest.mark.asyncio
    async def test_secret_is_checked(self, client: httpx.AsyncClient, status_update, monkeypatch):
        monkeypatch.setattr("src.routers.vapi.VAPI_WEBHOOK_SECRET", "s3cret")

        resp = await client.post("/webhook", json=status_update)
        assert resp.status_code == 401

        resp = await client.post("/webhook", json=status_update, headers={"X-Vapi-Secret": "wrong"})
        assert resp.status_code == 401

        resp = await client.post("/webhook", json=status_update, headers={"X-Vapi-Secret": "s3cret"})
        assert resp.status_code == 200
