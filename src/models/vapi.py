"""
VAPI webhook payload models.

VAPI is a voice AI platform that handles inbound calls for our businesses.
These models define the structure of the server messages VAPI posts to the
webhook while a call is running and after it completes.

Only the fields the pipeline relies on are typed. Everything else is kept as
extra data so the field resolver can try alternative paths. Typed fields are
lenient: a value of the wrong shape is dropped instead of failing the event.
"""
from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, BeforeValidator, ConfigDict, Field, TypeAdapter


TERMINAL_REPORT = "end-of-call-report"
STATUS_UPDATE = "status-update"
CONVERSATION_UPDATE = "conversation-update"


def _scalar_or_none(value: Any) -> Any:
    if isinstance(value, (str, int, float)) and not isinstance(value, bool):
        return value
    return None


def _object_or_none(value: Any) -> Any:
    return value if isinstance(value, (dict, BaseModel)) else None


def _list_or_none(value: Any) -> Any:
    return value if isinstance(value, list) else None


def _destination_or_none(value: Any) -> Any:
    return value if isinstance(value, (dict, str)) else None


# Ids, numbers and timestamps arrive as strings or numbers depending on the sender
Scalar = Annotated[Optional[Union[str, int, float]], BeforeValidator(_scalar_or_none)]
Object = Annotated[Optional[dict], BeforeValidator(_object_or_none)]
Items = Annotated[Optional[list[Any]], BeforeValidator(_list_or_none)]
# Transfer destination: an object, or a bare number / SIP URI
Destination = Annotated[Optional[Union[dict, str]], BeforeValidator(_destination_or_none)]


class VapiModel(BaseModel):
    """Base for VAPI objects - VAPI adds fields often, keep them all."""
    model_config = ConfigDict(extra="allow")


class VapiPhoneNumber(VapiModel):
    """Phone number the call came in on ({"number": "+1234567890"})."""
    id: Scalar = None
    number: Scalar = None


class VapiCustomer(VapiModel):
    """The caller, as far as VAPI knows them."""
    number: Scalar = None
    name: Scalar = None
    email: Scalar = None


class VapiCallObject(VapiModel):
    """VAPI call object included in webhooks."""
    id: Scalar = None
    orgId: Scalar = None
    type: Scalar = None  # "inboundPhoneCall", "webCall", etc.
    status: Scalar = None  # "queued", "ringing", "in-progress", "ended"
    endedReason: Scalar = None
    phoneNumber: Annotated[Optional[VapiPhoneNumber], BeforeValidator(_object_or_none)] = None
    customer: Annotated[Optional[VapiCustomer], BeforeValidator(_object_or_none)] = None
    workflowId: Scalar = None
    assistantId: Scalar = None
    startedAt: Scalar = None  # ISO string or Unix ms
    endedAt: Scalar = None  # ISO string or Unix ms
    # Custom metadata passed via assistantOverrides.variableValues
    metadata: Object = None


class VapiArtifact(VapiModel):
    """Artifact containing transcript, messages, variables and structured outputs."""
    transcript: Scalar = None  # Full transcript text ("AI: ...\nUser: ...")
    # Kept untyped: tool-call entries have a different shape than spoken turns
    messages: Items = None
    variables: Object = None
    # Keyed by opaque structured-output id: {"<id>": {"name": ..., "result": ...}}
    structuredOutputs: Object = None
    recordingUrl: Scalar = None


class VapiAnalysis(VapiModel):
    """Post-call analysis configured on the assistant."""
    summary: Scalar = None
    structuredData: Object = None
    successEvaluation: Optional[Any] = None


class VapiEventBase(VapiModel):
    """Fields shared by every server message."""
    type: str
    call: Annotated[Optional[VapiCallObject], BeforeValidator(_object_or_none)] = None
    customer: Annotated[Optional[VapiCustomer], BeforeValidator(_object_or_none)] = None
    artifact: Annotated[Optional[VapiArtifact], BeforeValidator(_object_or_none)] = None
    analysis: Annotated[Optional[VapiAnalysis], BeforeValidator(_object_or_none)] = None
    timestamp: Scalar = None  # Can be string or Unix ms

    @property
    def is_terminal(self) -> bool:
        return self.type == TERMINAL_REPORT


class VapiEndOfCallReport(VapiEventBase):
    """Final transcript and call data, sent once when the call has ended."""
    type: Literal["end-of-call-report"]
    endedReason: Scalar = None
    # VAPI sends a transfer destination here when the call was forwarded
    destination: Destination = None


class VapiStatusUpdate(VapiEventBase):
    """Call state change."""
    type: Literal["status-update"]
    status: Scalar = None
    endedReason: Scalar = None
    destination: Destination = None


class VapiConversationUpdate(VapiEventBase):
    """Running conversation snapshot, sent after every turn."""
    type: Literal["conversation-update"]
    status: Scalar = None
    messages: Items = None
    conversation: Items = None


class VapiOtherEvent(VapiEventBase):
    """Any server message type the pipeline has no dedicated model for."""
    status: Scalar = None


VapiCallEvent = Annotated[
    Union[VapiEndOfCallReport, VapiStatusUpdate, VapiConversationUpdate],
    Field(discriminator="type"),
]

_event_adapter = TypeAdapter(VapiCallEvent)

KNOWN_EVENT_TYPES = {TERMINAL_REPORT, STATUS_UPDATE, CONVERSATION_UPDATE}


def unwrap_envelope(payload: dict) -> dict:
    """VAPI wraps the actual payload inside a "message" object - unwrap it if present."""
    message = payload.get("message")
    if isinstance(message, dict):
        return message
    return payload


def parse_call_event(payload: dict) -> VapiEventBase:
    """
    Parse an (unwrapped) server message into its event model.

    Known event kinds go through the discriminated union; anything else
    (transcript, speech-update, tool-calls, missing type) becomes a
    VapiOtherEvent so the call is still recorded. Typed fields of the wrong
    shape are dropped, so a dict payload always parses.
    """
    event_type = payload.get("type")
    if isinstance(event_type, str) and event_type in KNOWN_EVENT_TYPES:
        return _event_adapter.validate_python(payload)
    data = dict(payload)
    data["type"] = event_type if isinstance(event_type, str) and event_type else "unknown"
    return VapiOtherEvent.model_validate(data)
