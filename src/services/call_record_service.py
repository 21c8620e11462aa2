"""
Dual-write builder - persists one call event as two records.

1. the operational row in `calls` (full fidelity, plus its turns in `call_turns`)
2. for ended calls only, the de-identified twin in `calls_training`

The two writes are independent upserts keyed by call_id. A failing operational
write propagates to the caller; a failing turn or training write is logged and
the event still counts as processed. Redelivering the same terminal event
rewrites the same rows, so processing is idempotent.
"""
import logging
from datetime import datetime
from typing import Optional

from src.models.call import (
    CanonicalCallRecord,
    ConversationTurn,
    EscalationRecord,
    Schedule,
    TrainingCallRecord,
)
from src.models.vapi import VapiEventBase
from src.repositories.call_repo import CallRepository
from src.services.pseudonymization_service import Pseudonymizer
from src.services.redaction_service import PiiRedactor
from src.services.sensitive_content_service import SensitiveContentDetector, mask_pronouns

logger = logging.getLogger(__name__)


def _month(value: Optional[datetime]) -> Optional[str]:
    return value.strftime("%Y-%m") if value else None


def _duration_seconds(started_at: Optional[datetime], ended_at: Optional[datetime]) -> Optional[int]:
    if not started_at or not ended_at:
        return None
    try:
        seconds = int((ended_at - started_at).total_seconds())
    except TypeError:
        # naive vs aware timestamps from different sources
        return None
    return seconds if seconds >= 0 else None


class DualWriteBuilder:
    """Builds and writes the operational record and its training twin."""

    def __init__(
        self,
        call_repo: CallRepository,
        pseudonymizer: Pseudonymizer,
        redactor: PiiRedactor,
        detector: SensitiveContentDetector,
    ):
        self.call_repo = call_repo
        self.pseudonymizer = pseudonymizer
        self.redactor = redactor
        self.detector = detector

    def build_operational(self, record: CanonicalCallRecord) -> CanonicalCallRecord:
        """
        Operational rendition: identity kept, sensitive spans replaced.

        Transcript and summary arrive sanitized already; turns are sanitized here
        so call_turns never holds more than the transcript does.
        """
        if not record.sensitive_categories or not record.turns:
            return record
        turns = [
            turn.model_copy(update={"text": self.detector.sanitize(turn.text)})
            for turn in record.turns
        ]
        return record.model_copy(update={"turns": turns})

    def _training_text(self, text: Optional[str], names: list[str], sensitive: bool) -> Optional[str]:
        redacted = self.redactor.redact(text, names)
        return mask_pronouns(redacted) if sensitive else redacted

    def _training_schedule(self, schedule: Optional[Schedule]) -> Optional[dict]:
        if schedule is None:
            return None
        return {
            "month": _month(schedule.start),
            "service": schedule.service,
            "duration_minutes": schedule.duration_minutes,
            "confirmed": schedule.confirmed,
            "source": schedule.source,
        }

    def _training_escalation(self, escalation: Optional[EscalationRecord], names: list[str]) -> Optional[dict]:
        if escalation is None:
            return None
        return {
            "destination_token": self.pseudonymizer.token(escalation.destination_number, "phone"),
            "sip_token": self.pseudonymizer.token(escalation.destination_sip_uri, "sip"),
            "destination_type": escalation.destination_type,
            "message": self.redactor.redact(escalation.message, names),
            "description": self.redactor.redact(escalation.description, names),
        }

    def build_training(self, record: CanonicalCallRecord) -> TrainingCallRecord:
        """
        De-identified twin of an operational record.

        Identity fields become tokens, free text is redacted with the caller and
        business names as the allow-list, and timestamps keep year and month only.
        """
        names = [name for name in [record.caller_name, *record.known_names] if name]
        sensitive = bool(record.sensitive_categories)

        turns = [
            {
                "turn_number": turn.turn_number,
                "role": turn.role.value,
                "text": self._training_text(turn.text, names, sensitive),
                "seconds_from_start": turn.seconds_from_start,
                "confidence": turn.confidence,
            }
            for turn in self.build_operational(record).turns
        ]

        return TrainingCallRecord(
            call_id=record.call_id,
            business_id=record.business_id,
            program_id=record.program_id,
            status=record.status,
            phone_token=self.pseudonymizer.token(record.caller_phone, "phone"),
            email_token=self.pseudonymizer.token(record.caller_email, "email"),
            name_token=self.pseudonymizer.token(record.caller_name, "name"),
            patient_fingerprint=record.patient_fingerprint,
            transcript=self._training_text(record.transcript, names, sensitive),
            summary=self._training_text(record.summary, names, sensitive),
            intent=self.redactor.redact(record.intent, names),
            confidence=record.confidence,
            turns=turns,
            schedule=self._training_schedule(record.schedule),
            escalation=self._training_escalation(record.escalation, names),
            upsell=record.upsell,
            sensitive_categories=record.sensitive_categories,
            ended_reason=record.ended_reason,
            duration_seconds=_duration_seconds(record.started_at, record.ended_at),
            started_month=_month(record.started_at),
            ended_month=_month(record.ended_at),
        )

    async def _write_turns(self, record: CanonicalCallRecord, turns: list[ConversationTurn]):
        try:
            stored = await self.call_repo.replace_turns(record.call_id, record.business_id, turns)
            logger.info(f"Stored {stored} turns for call {record.call_id}")
        except Exception as e:
            logger.error(f"Failed to store turns for call {record.call_id}: {e}")

    async def write(self, record: CanonicalCallRecord, event: VapiEventBase) -> bool:
        """
        Persist both renditions of a call event.

        Args:
            record: Assembled canonical record for this event
            event: The parsed event (decides whether the twin is written)

        Returns:
            bool: True when the training twin was written

        Raises:
            Exception: Whatever the operational upsert raised
        """
        operational = self.build_operational(record)
        total_turns = len(operational.turns) if operational.turns else None

        await self.call_repo.upsert_call(operational, total_turns)
        logger.info(f"Upserted call {record.call_id} (status={record.status})")

        if operational.turns:
            await self._write_turns(operational, operational.turns)

        if not event.is_terminal:
            return False

        try:
            training = self.build_training(record)
            await self.call_repo.upsert_training_call(training)
            logger.info(f"Upserted training record for call {record.call_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to write training record for call {record.call_id}: {e}")
            return False
