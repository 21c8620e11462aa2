"""
Pytest fixtures for the Coya call pipeline tests.

The database is replaced by in-memory repositories that follow the same merge
rules as the SQL upserts, so the HTTP surface can be exercised without Postgres.
"""
from datetime import datetime, timezone
from typing import Optional

import httpx
import pytest

from src.config import ENDED_CALL_STATUSES
from src.models.call import Business, CanonicalCallRecord, ConversationTurn, TrainingCallRecord
from src.services.call_record_service import DualWriteBuilder
from src.services.pseudonymization_service import Pseudonymizer
from src.services.redaction_service import PiiRedactor
from src.services.sensitive_content_service import SensitiveContentDetector
from src.services.vapi_webhook_service import VapiWebhookService

TEST_SALT = "test-salt"
BUSINESS_ID = "11111111-1111-1111-1111-111111111111"
BUSINESS_NUMBER = "+1 (555) 010-2000"

# Operational record field -> calls column
_COLUMNS = {
    "business_id": "business_id",
    "program_id": "program_id",
    "caller_name": "patient_name",
    "caller_phone": "phone",
    "caller_email": "email",
    "patient_fingerprint": "patient_fingerprint",
    "transcript": "transcript",
    "summary": "last_summary",
    "intent": "last_intent",
    "confidence": "confidence",
    "schedule": "schedule",
    "escalation": "escalation",
    "upsell": "upsell",
    "appointment_booked": "appointment_booked",
    "appointment_rescheduled": "appointment_rescheduled",
    "appointment_cancelled": "appointment_cancelled",
    "ended_reason": "ended_reason",
    "ended_at": "ended_at",
}


class FakeCallRepository:
    """In-memory CallRepository with the same COALESCE semantics as the SQL."""

    def __init__(self):
        self.calls: dict[str, dict] = {}
        self.training: dict[str, TrainingCallRecord] = {}
        self.turns: dict[str, dict[int, dict]] = {}
        self.fail_upsert = False
        self.fail_turns = False
        self.fail_training = False
        self.upsert_count = 0

    async def upsert_call(self, record: CanonicalCallRecord, total_turns: Optional[int] = None):
        if self.fail_upsert:
            raise RuntimeError("database unavailable")
        self.upsert_count += 1

        row = self.calls.setdefault(record.call_id, {
            "call_id": record.call_id,
            "escalate": False,
            "started_at": None,
            "anonymized_at": None,
            "created_at": datetime.now(timezone.utc),
        })
        for field, column in _COLUMNS.items():
            value = getattr(record, field)
            if field == "patient_fingerprint" and value and value.startswith("anon-") and row.get(column):
                continue
            if value is not None:
                row[column] = value
            else:
                row.setdefault(column, None)
        if not (row.get("status") in ENDED_CALL_STATUSES and record.status not in ENDED_CALL_STATUSES):
            row["status"] = record.status
        row["escalate"] = row["escalate"] or record.escalation is not None
        if record.sensitive_categories:
            row["sensitive_categories"] = list(record.sensitive_categories)
        else:
            row.setdefault("sensitive_categories", None)
        if total_turns is not None:
            row["total_turns"] = total_turns
        else:
            row.setdefault("total_turns", None)
        if row["started_at"] is None:
            row["started_at"] = record.started_at

    async def get_by_call_id(self, call_id: str) -> Optional[dict]:
        return self.calls.get(call_id)

    async def upsert_training_call(self, record: TrainingCallRecord):
        if self.fail_training:
            raise RuntimeError("training table unavailable")
        self.training[record.call_id] = record

    async def replace_turns(self, call_id: str, business_id: Optional[str], turns: list[ConversationTurn]) -> int:
        if self.fail_turns:
            raise RuntimeError("call_turns unavailable")
        self.turns[call_id] = {
            turn.turn_number: {
                "call_id": call_id,
                "business_id": business_id,
                "turn_number": turn.turn_number,
                "role": turn.role.value,
                "content": turn.text,
            }
            for turn in turns
        }
        return len(turns)

    async def get_turns(self, call_id: str) -> list[dict]:
        stored = self.turns.get(call_id, {})
        return [stored[number] for number in sorted(stored)]

    async def update_turn_content(self, call_id: str, turn_number: int, content: str):
        self.turns[call_id][turn_number]["content"] = content

    async def list_expired_identifiable(self, cutoff: datetime, limit: int = 1000) -> list[dict]:
        def identifiable(row: dict) -> bool:
            return (
                (row.get("phone") and not row["phone"].startswith("PH-"))
                or (row.get("email") and not row["email"].startswith("EM-"))
                or (row.get("patient_name") and not row["patient_name"].startswith("NM-"))
                or row.get("anonymized_at") is None
            )

        rows = [
            row for row in self.calls.values()
            if row.get("ended_at") is not None and row["ended_at"] < cutoff and identifiable(row)
        ]
        return rows[:limit]

    async def anonymize_call(self, call_id, patient_name, phone, email, transcript, last_summary):
        row = self.calls[call_id]
        row.update({
            "patient_name": patient_name,
            "phone": phone,
            "email": email,
            "transcript": transcript,
            "last_summary": last_summary,
            "anonymized_at": datetime.now(timezone.utc),
        })


class FakeBusinessRepository:
    """In-memory BusinessRepository keyed by dialled digits and workflow id."""

    def __init__(self, businesses: Optional[list[tuple[str, Optional[str], Business]]] = None):
        self.businesses = businesses or []
        self.phone_lookups: list[str] = []

    async def find_by_phone(self, to_number: str) -> Optional[Business]:
        self.phone_lookups.append(to_number)
        for digits, _, business in self.businesses:
            if digits == to_number:
                return business
        return None

    async def find_by_workflow_id(self, workflow_id: str) -> Optional[Business]:
        for _, configured, business in self.businesses:
            if configured and configured == workflow_id:
                return business
        return None


# =============================================================================
# Component fixtures
# =============================================================================

@pytest.fixture
def pseudonymizer() -> Pseudonymizer:
    return Pseudonymizer(TEST_SALT)


@pytest.fixture
def redactor(pseudonymizer: Pseudonymizer) -> PiiRedactor:
    return PiiRedactor(pseudonymizer)


@pytest.fixture
def detector(redactor: PiiRedactor) -> SensitiveContentDetector:
    return SensitiveContentDetector(redactor)


@pytest.fixture
def business() -> Business:
    return Business(
        id=BUSINESS_ID,
        name="Glow Med Spa",
        timezone="America/New_York",
        default_service="IV Therapy",
    )


@pytest.fixture
def call_repo() -> FakeCallRepository:
    return FakeCallRepository()


@pytest.fixture
def business_repo(business: Business) -> FakeBusinessRepository:
    return FakeBusinessRepository([("15550102000", "wf-glow", business)])


@pytest.fixture
def writer(call_repo, pseudonymizer, redactor, detector) -> DualWriteBuilder:
    return DualWriteBuilder(call_repo, pseudonymizer, redactor, detector)


@pytest.fixture
def webhook_service(business_repo, writer, pseudonymizer, detector) -> VapiWebhookService:
    return VapiWebhookService(
        business_repo,
        writer,
        pseudonymizer,
        detector,
        structured_output_ids={"so-booking": "booking_confirmed", "so-upsell": "upsell_opportunity"},
    )


# =============================================================================
# Payload fixtures
# =============================================================================

@pytest.fixture
def end_of_call_report() -> dict:
    """A realistic end-of-call-report, wrapped in the VAPI envelope."""
    return {
        "message": {
            "type": "end-of-call-report",
            "endedReason": "customer-ended-call",
            "call": {
                "id": "call-123",
                "status": "ended",
                "phoneNumber": {"number": BUSINESS_NUMBER},
                "startedAt": "2025-03-10T15:00:00Z",
                "endedAt": "2025-03-10T15:04:30Z",
            },
            "customer": {"number": "+1 555 867 5309", "name": "Jane Doe"},
            "artifact": {
                "transcript": (
                    "AI: Thank you for calling Glow Med Spa, how can I help?\n"
                    "User: Hi, this is Jane Doe, I'd like to book an IV drip. "
                    "My email is jane.doe@example.com.\n"
                    "AI: Great, you're booked for March 14 at 2:30 PM."
                ),
                "messages": [
                    {"role": "system", "message": "You are the receptionist for Glow Med Spa."},
                    {"role": "bot", "message": "Thank you for calling Glow Med Spa, how can I help?",
                     "time": 1741618800000, "secondsFromStart": 0.5},
                    {"role": "user", "message": "Hi, this is Jane Doe, I'd like to book an IV drip.",
                     "time": 1741618805000, "secondsFromStart": 5.2},
                    {"role": "tool_calls", "toolCalls": [
                        {"id": "tc_1", "type": "function", "function": {"name": "createBooking", "arguments": "{}"}}
                    ]},
                    {"role": "tool_call_result", "name": "createBooking", "result": "ok"},
                    {"role": "bot", "message": "Great, you're booked for March 14 at 2:30 PM.",
                     "time": 1741618812000, "secondsFromStart": 12.0},
                ],
                "structuredOutputs": {
                    "so-booking": {
                        "name": "booking_confirmed",
                        "result": {"date": "2025-03-14", "time": "2:30 PM", "service": "IV Drip"},
                    },
                    "so-upsell": {"name": "upsell_opportunity", "result": True},
                },
            },
            "analysis": {"summary": "Jane Doe booked an IV drip for March 14."},
        }
    }


@pytest.fixture
def status_update() -> dict:
    return {
        "message": {
            "type": "status-update",
            "status": "in-progress",
            "call": {"id": "call-123", "phoneNumber": {"number": BUSINESS_NUMBER}},
            "customer": {"number": "+1 555 867 5309"},
        }
    }


# =============================================================================
# HTTP fixtures
# =============================================================================

@pytest.fixture
async def client(call_repo, business_repo, pseudonymizer):
    """Async HTTP client against the app with in-memory repositories."""
    from app import app
    from src.dependencies import get_business_repo, get_call_repo, get_pseudonymizer

    app.dependency_overrides[get_call_repo] = lambda: call_repo
    app.dependency_overrides[get_business_repo] = lambda: business_repo
    app.dependency_overrides[get_pseudonymizer] = lambda: pseudonymizer

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()