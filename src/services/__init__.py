"""
Service layer for business logic.
"""
from .pseudonymization_service import Pseudonymizer
from .redaction_service import PiiRedactor, REDACTION_RULES
from .sensitive_content_service import SensitiveContentDetector, SensitivityAssessment
from .field_resolver import FieldResolver
from .schedule_parser import build_schedule, resolve_schedule
from .transcript_service import RoleStateMachine, reconstruct
from .call_record_service import DualWriteBuilder
from .vapi_webhook_service import VapiWebhookService
from .retention_service import RetentionService, RetentionResult

__all__ = [
    "Pseudonymizer",
    "PiiRedactor",
    "REDACTION_RULES",
    "SensitiveContentDetector",
    "SensitivityAssessment",
    "FieldResolver",
    "build_schedule",
    "resolve_schedule",
    "RoleStateMachine",
    "reconstruct",
    "DualWriteBuilder",
    "VapiWebhookService",
    "RetentionService",
    "RetentionResult",
]
