"""
Coya Call Pipeline Models.

This module re-exports all model classes for convenient importing.
"""

# VAPI server messages
from .vapi import (
    TERMINAL_REPORT,
    STATUS_UPDATE,
    CONVERSATION_UPDATE,
    VapiCallObject,
    VapiArtifact,
    VapiAnalysis,
    VapiEventBase,
    VapiEndOfCallReport,
    VapiStatusUpdate,
    VapiConversationUpdate,
    VapiOtherEvent,
    parse_call_event,
    unwrap_envelope,
)

# Call records
from .call import (
    TurnRole,
    ConversationTurn,
    EscalationRecord,
    Schedule,
    Business,
    CanonicalCallRecord,
    TrainingCallRecord,
    WebhookResponse,
)

__all__ = [
    # VAPI
    "TERMINAL_REPORT",
    "STATUS_UPDATE",
    "CONVERSATION_UPDATE",
    "VapiCallObject",
    "VapiArtifact",
    "VapiAnalysis",
    "VapiEventBase",
    "VapiEndOfCallReport",
    "VapiStatusUpdate",
    "VapiConversationUpdate",
    "VapiOtherEvent",
    "parse_call_event",
    "unwrap_envelope",
    # Calls
    "TurnRole",
    "ConversationTurn",
    "EscalationRecord",
    "Schedule",
    "Business",
    "CanonicalCallRecord",
    "TrainingCallRecord",
    "WebhookResponse",
]
