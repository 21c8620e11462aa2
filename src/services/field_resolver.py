"""
Field resolver - extracts canonical scalars from a VAPI event body.

VAPI puts the same fact in different places depending on the event kind,
the assistant configuration and the API version. Every canonical field has an
ordered list of candidate paths; the first defined value wins:

    1. the event-kind specific field (call / customer / analysis)
    2. the platform variable field (artifact.variables)
    3. the tenant default passed in by the caller

Resolution is total: an absent branch resolves to None, never an error.
"""
import logging
from typing import Any, Optional, Sequence, Union

from src.config import DEFAULT_CALL_STATUS, VAPI_STRUCTURED_OUTPUT_IDS
from src.models.vapi import (
    CONVERSATION_UPDATE,
    STATUS_UPDATE,
    TERMINAL_REPORT,
    VapiEventBase,
)

logger = logging.getLogger(__name__)

PathKey = Union[str, int]
Path = tuple[PathKey, ...]

# String values the platform uses when it means "nothing"
_EMPTY_STRINGS = {"", "null", "undefined", "none"}

FIELD_PATHS: dict[str, tuple[Path, ...]] = {
    "call_id": (
        ("call", "id"),
        ("call_id",),
        ("callId",),
    ),
    "to_number": (
        ("call", "phoneNumber", "number"),
        ("phoneNumber", "number"),
        ("artifact", "variables", "phoneNumber", "number"),
        ("call", "to"),
    ),
    "workflow_id": (
        ("call", "workflowId"),
        ("artifact", "variables", "workflowId"),
        ("artifact", "variables", "id"),
    ),
    "program_id": (
        ("call", "metadata", "program_id"),
        ("call", "metadata", "programId"),
        ("artifact", "variables", "program_id"),
        ("artifact", "variables", "programId"),
    ),
    "caller_phone": (
        ("customer", "number"),
        ("call", "customer", "number"),
        ("artifact", "variables", "customer", "number"),
    ),
    "caller_name": (
        ("customer", "name"),
        ("call", "customer", "name"),
        ("analysis", "structuredData", "patient_name"),
        ("analysis", "structuredData", "name"),
        ("artifact", "variables", "customer", "name"),
        ("artifact", "variables", "patient_name"),
        ("artifact", "variables", "name"),
    ),
    "caller_email": (
        ("customer", "email"),
        ("call", "customer", "email"),
        ("analysis", "structuredData", "email"),
        ("artifact", "variables", "customer", "email"),
        ("artifact", "variables", "email"),
    ),
    "transcript": (
        ("artifact", "transcript"),
        ("transcript",),
    ),
    "messages": (
        ("artifact", "messages"),
        ("messages",),
        ("turns",),
    ),
    "summary": (
        ("analysis", "summary"),
        ("summary",),
    ),
    "intent": (
        ("analysis", "structuredData", "intent"),
        ("analysis", "intent"),
        ("intent",),
        ("artifact", "variables", "intent"),
    ),
    "confidence": (
        ("analysis", "structuredData", "confidence"),
        ("confidence",),
    ),
    "started_at": (
        ("call", "startedAt"),
        ("startedAt",),
    ),
    "ended_at": (
        ("call", "endedAt"),
        ("endedAt",),
    ),
    "ended_reason": (
        ("endedReason",),
        ("call", "endedReason"),
    ),
    "destination": (
        ("destination",),
        ("call", "destination"),
        ("artifact", "variables", "transferDestination"),
    ),
    "slot_date": (
        ("artifact", "variables", "appointment_date"),
        ("artifact", "variables", "appointmentDate"),
        ("artifact", "variables", "date"),
    ),
    "slot_time": (
        ("artifact", "variables", "appointment_time"),
        ("artifact", "variables", "appointmentTime"),
        ("artifact", "variables", "time"),
    ),
    "service": (
        ("artifact", "variables", "service"),
        ("artifact", "variables", "serviceName"),
        ("analysis", "structuredData", "service"),
    ),
}


def _is_defined(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and value.strip().lower() in _EMPTY_STRINGS:
        return False
    return True


def resolve_path(data: Any, path: Sequence[PathKey]) -> Any:
    """Walk dicts (str keys) and lists (int keys). Returns None on any miss."""
    current = data
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def first_defined(data: Any, paths: Sequence[Path]) -> Any:
    """Return the first defined value found along the candidate paths."""
    for path in paths:
        value = resolve_path(data, path)
        if _is_defined(value):
            return value
    return None


def derive_status(event: VapiEventBase) -> str:
    """
    Map an event to the status shown on the call record.

    - end-of-call-report: always "ended"
    - status-update: the reported status
    - conversation-update: call.status, else the message status
    Anything missing or empty becomes "in progress" so an active call never
    loses its visible state.
    """
    if event.type == TERMINAL_REPORT:
        return "ended"

    status = None
    if event.type == STATUS_UPDATE:
        status = getattr(event, "status", None)
    elif event.type == CONVERSATION_UPDATE:
        status = event.call.status if event.call else None
        if not _is_defined(status):
            status = getattr(event, "status", None)

    if not _is_defined(status) or not isinstance(status, str):
        return DEFAULT_CALL_STATUS
    return status.strip()


class FieldResolver:
    """Ordered fallback-path resolution over one event."""

    def __init__(
        self,
        event: VapiEventBase,
        structured_output_ids: Optional[dict[str, str]] = None,
    ):
        self.event = event
        self.data = event.model_dump(mode="python", exclude_none=True)
        self.structured_output_ids = (
            VAPI_STRUCTURED_OUTPUT_IDS if structured_output_ids is None else structured_output_ids
        )

    def get(self, field: str, defaults: Optional[dict[str, Any]] = None) -> Any:
        """
        Resolve a canonical field.

        Args:
            field: Key in FIELD_PATHS
            defaults: Tenant defaults, consulted after every event path

        Returns:
            The first defined value, or None
        """
        value = first_defined(self.data, FIELD_PATHS.get(field, ()))
        if value is None and defaults:
            default = defaults.get(field)
            if _is_defined(default):
                value = default
        return value

    def get_str(self, field: str, defaults: Optional[dict[str, Any]] = None) -> Optional[str]:
        """Resolve a field and coerce scalars to a stripped string."""
        value = self.get(field, defaults)
        if isinstance(value, (str, int, float)) and not isinstance(value, bool):
            text = str(value).strip()
            return text or None
        return None

    def get_float(self, field: str) -> Optional[float]:
        value = self.get(field)
        if isinstance(value, bool):
            return None
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @property
    def call_id(self) -> Optional[str]:
        return self.get_str("call_id")

    @property
    def status(self) -> str:
        return derive_status(self.event)

    def structured_output(self, meaning: str) -> Any:
        """
        Return the result of the structured output configured for `meaning`.

        Outputs are keyed by opaque id; the configured id table decides what
        each one means. An output whose name equals the meaning is used when no
        configured id matches.
        """
        outputs = resolve_path(self.data, ("artifact", "structuredOutputs"))
        if not isinstance(outputs, dict):
            return None

        for output_id, configured in self.structured_output_ids.items():
            if configured == meaning and output_id in outputs:
                return _output_result(outputs[output_id])

        for output in outputs.values():
            if isinstance(output, dict) and output.get("name") == meaning:
                return _output_result(output)
        return None

    def structured_flag(self, meaning: str) -> Optional[bool]:
        """Structured output coerced to a boolean flag (None when absent)."""
        value = self.structured_output(meaning)
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in ("true", "yes", "1"):
                return True
            if lowered in ("false", "no", "0"):
                return False
        if isinstance(value, (int, float)):
            return bool(value)
        return None


def _output_result(output: Any) -> Any:
    if isinstance(output, dict) and "result" in output:
        result = output["result"]
        return result if _is_defined(result) else None
    return output if _is_defined(output) else None
