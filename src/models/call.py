"""
Call record models.

CanonicalCallRecord is the operator-facing row in `calls` (full fidelity).
TrainingCallRecord is its de-identified twin in `calls_training`.
"""
from datetime import datetime
from enum import Enum
from typing import Optional
from pydantic import BaseModel, Field


class TurnRole(str, Enum):
    """Speaker of a conversation turn."""
    CALLER = "caller"
    ASSISTANT = "assistant"


class ConversationTurn(BaseModel):
    """Single reconstructed turn of a call transcript."""
    turn_number: int = Field(..., ge=1)
    role: TurnRole
    text: str
    timestamp: Optional[str] = None  # ISO string when the platform sent one
    seconds_from_start: Optional[float] = None
    confidence: Optional[float] = None


class EscalationRecord(BaseModel):
    """Where the call was forwarded to. Only exists for a concrete destination."""
    destination_number: Optional[str] = None
    destination_sip_uri: Optional[str] = None
    destination_type: Optional[str] = None  # "number", "sip", "assistant"
    message: Optional[str] = None
    description: Optional[str] = None
    transfer_plan: Optional[dict] = None


class Schedule(BaseModel):
    """Appointment interval extracted from the call."""
    start: datetime
    end: Optional[datetime] = None
    service: Optional[str] = None
    summary: Optional[str] = None
    duration_minutes: Optional[int] = None
    # True for a structured booking confirmation, False for slot-variable inference
    confirmed: bool = False
    source: str = "structured_output"  # or "slot_variables"


class Business(BaseModel):
    """Tenant record resolved from the dialled number or workflow id."""
    id: str
    name: Optional[str] = None
    program_id: Optional[str] = None
    timezone: Optional[str] = None
    default_service: Optional[str] = None


class CanonicalCallRecord(BaseModel):
    """Operational call record - one per call_id, mutated by every event."""
    call_id: str
    business_id: Optional[str] = None
    program_id: Optional[str] = None
    status: str = "in progress"
    message_type: Optional[str] = None
    caller_name: Optional[str] = None
    caller_phone: Optional[str] = None
    caller_email: Optional[str] = None
    patient_fingerprint: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    intent: Optional[str] = None
    confidence: Optional[float] = None
    schedule: Optional[Schedule] = None
    escalation: Optional[EscalationRecord] = None
    upsell: Optional[bool] = None
    appointment_booked: Optional[bool] = None
    appointment_rescheduled: Optional[bool] = None
    appointment_cancelled: Optional[bool] = None
    sensitive_categories: list[str] = []
    ended_reason: Optional[str] = None
    turns: list[ConversationTurn] = []
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    # Names to anonymize in the training twin besides the caller (e.g. business name)
    known_names: list[str] = []


class TrainingCallRecord(BaseModel):
    """De-identified twin of a CanonicalCallRecord, safe for model training."""
    call_id: str
    business_id: Optional[str] = None
    program_id: Optional[str] = None
    status: Optional[str] = None
    phone_token: Optional[str] = None
    email_token: Optional[str] = None
    name_token: Optional[str] = None
    patient_fingerprint: Optional[str] = None
    transcript: Optional[str] = None
    summary: Optional[str] = None
    intent: Optional[str] = None
    confidence: Optional[float] = None
    turns: list[dict] = []
    schedule: Optional[dict] = None
    escalation: Optional[dict] = None
    upsell: Optional[bool] = None
    sensitive_categories: list[str] = []
    ended_reason: Optional[str] = None
    duration_seconds: Optional[int] = None
    started_month: Optional[str] = None  # "YYYY-MM"
    ended_month: Optional[str] = None


class WebhookResponse(BaseModel):
    """Body returned to VAPI for an accepted event."""
    success: bool = True
    call_id: str
    business_id: Optional[str] = None
    message_type: Optional[str] = None
    status: str
    training_written: bool = False
    warning: Optional[str] = None
