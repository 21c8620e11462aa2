"""
VAPI webhook service - turns one server message into persisted call records.

Flow:
    envelope unwrap -> event parse -> call id check -> tenant lookup
    -> record assembly (fields, schedule, turns, sensitivity, fingerprint)
    -> dual write -> response

A tenant that cannot be resolved does not stop the pipeline: the call is
stored without business_id and the response carries a warning.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from src.config import ENDED_CALL_STATUSES, STARTED_CALL_STATUSES
from src.exceptions import MissingCallIdError
from src.models.call import Business, CanonicalCallRecord, EscalationRecord, WebhookResponse
from src.models.vapi import VapiEventBase, parse_call_event, unwrap_envelope
from src.repositories.business_repo import BusinessRepository
from src.services.call_record_service import DualWriteBuilder
from src.services.field_resolver import FieldResolver
from src.services.pseudonymization_service import Pseudonymizer, is_token, normalize_phone
from src.services.schedule_parser import resolve_schedule
from src.services.sensitive_content_service import SensitiveContentDetector
from src.services.transcript_service import reconstruct_call, render_transcript

logger = logging.getLogger(__name__)

UNRESOLVED_TENANT_WARNING = "Business not found for this call; stored without business_id"


def parse_timestamp(value: Any) -> Optional[datetime]:
    """ISO string or Unix seconds/ms -> aware datetime (None when unusable)."""
    if value is None or isinstance(value, bool):
        return None
    try:
        if isinstance(value, (int, float)):
            seconds = value / 1000 if value > 1e11 else value
            return datetime.fromtimestamp(seconds, tz=timezone.utc)
        if isinstance(value, str) and value.strip():
            parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
            return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    except (ValueError, OverflowError, OSError):
        logger.warning(f"Ignoring unparseable timestamp: {value!r}")
    return None


def _stored_identity(stored: Optional[Mapping[str, Any]], column: str) -> Optional[str]:
    """Identity column of the stored call row, unless retention already tokenized it."""
    if stored is None:
        return None
    value = stored.get(column)
    if not isinstance(value, str) or not value.strip() or is_token(value):
        return None
    return value


def build_escalation(destination: Any) -> Optional[EscalationRecord]:
    """
    Escalation from a VAPI transfer destination.

    Only a concrete number or SIP URI counts; an assistant handoff or an empty
    destination object is not an escalation.
    """
    if isinstance(destination, str):
        value = destination.strip()
        if value.lower().startswith("sip:"):
            return EscalationRecord(destination_sip_uri=value, destination_type="sip")
        if normalize_phone(value):
            return EscalationRecord(destination_number=value, destination_type="number")
        return None

    if not isinstance(destination, dict):
        return None

    number = destination.get("number") or destination.get("phoneNumber")
    sip_uri = destination.get("sipUri") or destination.get("sip_uri")
    if not (isinstance(number, str) and normalize_phone(number)) and not (isinstance(sip_uri, str) and sip_uri.strip()):
        return None

    return EscalationRecord(
        destination_number=number if isinstance(number, str) else None,
        destination_sip_uri=sip_uri if isinstance(sip_uri, str) else None,
        destination_type=destination.get("type") or ("sip" if sip_uri else "number"),
        message=destination.get("message") if isinstance(destination.get("message"), str) else None,
        description=destination.get("description") if isinstance(destination.get("description"), str) else None,
        transfer_plan=destination.get("transferPlan") if isinstance(destination.get("transferPlan"), dict) else None,
    )


class VapiWebhookService:
    """Processes VAPI server messages into calls / call_turns / calls_training rows."""

    def __init__(
        self,
        business_repo: BusinessRepository,
        writer: DualWriteBuilder,
        pseudonymizer: Pseudonymizer,
        detector: SensitiveContentDetector,
        structured_output_ids: Optional[dict[str, str]] = None,
    ):
        self.business_repo = business_repo
        self.writer = writer
        self.pseudonymizer = pseudonymizer
        self.detector = detector
        self.structured_output_ids = structured_output_ids

    async def resolve_business(self, resolver: FieldResolver) -> Optional[Business]:
        """Dialled number first, workflow id second."""
        to_number = resolver.get_str("to_number")
        if to_number and normalize_phone(to_number):
            business = await self.business_repo.find_by_phone(normalize_phone(to_number))
            if business:
                return business

        workflow_id = resolver.get_str("workflow_id")
        if workflow_id:
            return await self.business_repo.find_by_workflow_id(workflow_id)
        return None

    def _timestamps(self, resolver: FieldResolver, event: VapiEventBase, status: str):
        now = datetime.now(timezone.utc)
        started_at = parse_timestamp(resolver.get("started_at"))
        if started_at is None and status.lower() in STARTED_CALL_STATUSES:
            started_at = now

        ended_at = None
        if event.is_terminal or status.lower() in ENDED_CALL_STATUSES:
            ended_at = parse_timestamp(resolver.get("ended_at")) or now
        return started_at, ended_at

    def build_record(
        self,
        event: VapiEventBase,
        resolver: FieldResolver,
        business: Optional[Business],
        stored: Optional[Mapping[str, Any]] = None,
    ) -> CanonicalCallRecord:
        """
        Assemble the canonical record for one event.

        Caller identity missing from the event is taken from the stored row,
        so the fingerprint and the training twin see everything earlier
        events recorded.
        """
        call_id = resolver.call_id
        status = resolver.status

        caller_name = resolver.get_str("caller_name") or _stored_identity(stored, "patient_name")
        caller_phone = resolver.get_str("caller_phone") or _stored_identity(stored, "phone")
        caller_email = resolver.get_str("caller_email") or _stored_identity(stored, "email")
        known_names = [business.name] if business and business.name else []
        stored_name = _stored_identity(stored, "patient_name")
        if stored_name and stored_name != caller_name:
            known_names.append(stored_name)
        names = [name for name in [caller_name, *known_names] if name]

        turns = reconstruct_call(resolver.get("messages"), resolver.get_str("transcript"))
        transcript = resolver.get_str("transcript") or (render_transcript(turns) if turns else None)

        summary = resolver.get_str("summary")
        if summary is None:
            call_summary = resolver.structured_output("call_summary")
            summary = call_summary.strip() if isinstance(call_summary, str) and call_summary.strip() else None

        transcript_assessment = self.detector.assess(transcript, names)
        summary_assessment = self.detector.assess(summary, names)
        categories = sorted(transcript_assessment.categories | summary_assessment.categories)

        schedule = resolve_schedule(
            resolver,
            default_service=business.default_service if business else None,
            timezone=business.timezone if business else None,
        )
        booked = resolver.structured_flag("appointment_booked")
        if booked is None and schedule is not None and schedule.confirmed:
            booked = True

        started_at, ended_at = self._timestamps(resolver, event, status)

        return CanonicalCallRecord(
            call_id=call_id,
            business_id=business.id if business else None,
            program_id=resolver.get_str("program_id") or (business.program_id if business else None),
            status=status,
            message_type=event.type,
            caller_name=caller_name,
            caller_phone=caller_phone,
            caller_email=caller_email,
            patient_fingerprint=self.pseudonymizer.fingerprint(
                phone=caller_phone, email=caller_email, name=caller_name, nonce=call_id
            ),
            transcript=transcript_assessment.sanitized_text,
            summary=summary_assessment.sanitized_text,
            intent=resolver.get_str("intent"),
            confidence=resolver.get_float("confidence"),
            schedule=schedule,
            escalation=build_escalation(resolver.get("destination")),
            upsell=resolver.structured_flag("upsell_opportunity"),
            appointment_booked=booked,
            appointment_rescheduled=resolver.structured_flag("appointment_rescheduled"),
            appointment_cancelled=resolver.structured_flag("appointment_cancelled"),
            sensitive_categories=categories,
            ended_reason=resolver.get_str("ended_reason"),
            turns=turns,
            started_at=started_at,
            ended_at=ended_at,
            known_names=known_names,
        )

    async def handle(self, payload: dict) -> WebhookResponse:
        """
        Process one webhook body.

        Args:
            payload: Raw JSON body, with or without the {"message": ...} envelope

        Returns:
            WebhookResponse for VAPI

        Raises:
            MissingCallIdError: If no call id can be resolved
            Exception: If the operational write fails
        """
        message = unwrap_envelope(payload)
        event = parse_call_event(message)
        resolver = FieldResolver(event, self.structured_output_ids)

        call_id = resolver.call_id
        if not call_id:
            logger.warning(f"VAPI webhook without call id: type={event.type}")
            raise MissingCallIdError(event.type)

        logger.info(f"VAPI webhook received: type={event.type}, call_id={call_id}")

        business = await self.resolve_business(resolver)
        warning = None
        if business is None:
            logger.warning(f"No business found for call {call_id}, storing without business_id")
            warning = UNRESOLVED_TENANT_WARNING

        # Terminal events need the identity earlier events stored for the training twin
        stored = await self.writer.call_repo.get_by_call_id(call_id) if event.is_terminal else None

        record = self.build_record(event, resolver, business, stored)
        training_written = await self.writer.write(record, event)

        return WebhookResponse(
            success=True,
            call_id=call_id,
            business_id=record.business_id,
            message_type=event.type,
            status=record.status,
            training_written=training_written,
            warning=warning,
        )
