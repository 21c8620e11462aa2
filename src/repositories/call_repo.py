"""
Call repository - operational call rows, their turns, and the training twin.
"""
import asyncpg
import json
import logging
from datetime import datetime
from typing import Optional

from src.models.call import CanonicalCallRecord, ConversationTurn, TrainingCallRecord

logger = logging.getLogger(__name__)


def _jsonb(value) -> Optional[str]:
    if value is None:
        return None
    return json.dumps(value, default=str)


class CallRepository:
    """Repository for call, call turn and training call database operations."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def upsert_call(self, record: CanonicalCallRecord, total_turns: Optional[int] = None):
        """
        Insert or update the operational row for record.call_id.

        Values from a later event only overwrite stored ones when they are set;
        started_at is written once and never moved. An ended call stays ended.
        """
        schedule = record.schedule.model_dump(mode="json") if record.schedule else None
        escalation = record.escalation.model_dump(mode="json", exclude_none=True) if record.escalation else None

        await self.pool.execute(
            """
            INSERT INTO calls (
                call_id, business_id, program_id, status,
                patient_name, phone, email, patient_fingerprint,
                transcript, last_summary, last_intent, confidence,
                schedule, escalate, escalation, upsell,
                appointment_booked, appointment_rescheduled, appointment_cancelled,
                sensitive_categories, ended_reason, total_turns,
                started_at, ended_at
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                    $13::jsonb, $14, $15::jsonb, $16, $17, $18, $19, $20, $21, $22, $23, $24)
            ON CONFLICT (call_id) DO UPDATE SET
                business_id = COALESCE(EXCLUDED.business_id, calls.business_id),
                program_id = COALESCE(EXCLUDED.program_id, calls.program_id),
                -- a late in-flight event never reopens an ended call
                status = CASE
                    WHEN calls.status IN ('ended', 'completed', 'failed')
                         AND EXCLUDED.status NOT IN ('ended', 'completed', 'failed')
                    THEN calls.status
                    ELSE EXCLUDED.status
                END,
                patient_name = COALESCE(EXCLUDED.patient_name, calls.patient_name),
                phone = COALESCE(EXCLUDED.phone, calls.phone),
                email = COALESCE(EXCLUDED.email, calls.email),
                -- an anon- placeholder never replaces a fingerprint built from identity
                patient_fingerprint = CASE
                    WHEN EXCLUDED.patient_fingerprint LIKE 'anon-%'
                    THEN COALESCE(calls.patient_fingerprint, EXCLUDED.patient_fingerprint)
                    ELSE COALESCE(EXCLUDED.patient_fingerprint, calls.patient_fingerprint)
                END,
                transcript = COALESCE(EXCLUDED.transcript, calls.transcript),
                last_summary = COALESCE(EXCLUDED.last_summary, calls.last_summary),
                last_intent = COALESCE(EXCLUDED.last_intent, calls.last_intent),
                confidence = COALESCE(EXCLUDED.confidence, calls.confidence),
                schedule = COALESCE(EXCLUDED.schedule, calls.schedule),
                escalate = calls.escalate OR EXCLUDED.escalate,
                escalation = COALESCE(EXCLUDED.escalation, calls.escalation),
                upsell = COALESCE(EXCLUDED.upsell, calls.upsell),
                appointment_booked = COALESCE(EXCLUDED.appointment_booked, calls.appointment_booked),
                appointment_rescheduled = COALESCE(EXCLUDED.appointment_rescheduled, calls.appointment_rescheduled),
                appointment_cancelled = COALESCE(EXCLUDED.appointment_cancelled, calls.appointment_cancelled),
                sensitive_categories = COALESCE(EXCLUDED.sensitive_categories, calls.sensitive_categories),
                ended_reason = COALESCE(EXCLUDED.ended_reason, calls.ended_reason),
                total_turns = COALESCE(EXCLUDED.total_turns, calls.total_turns),
                started_at = COALESCE(calls.started_at, EXCLUDED.started_at),
                ended_at = COALESCE(EXCLUDED.ended_at, calls.ended_at),
                updated_at = NOW()
            """,
            record.call_id,
            record.business_id,
            record.program_id,
            record.status,
            record.caller_name,
            record.caller_phone,
            record.caller_email,
            record.patient_fingerprint,
            record.transcript,
            record.summary,
            record.intent,
            record.confidence,
            _jsonb(schedule),
            record.escalation is not None,
            _jsonb(escalation),
            record.upsell,
            record.appointment_booked,
            record.appointment_rescheduled,
            record.appointment_cancelled,
            record.sensitive_categories or None,
            record.ended_reason,
            total_turns,
            record.started_at,
            record.ended_at,
        )

    async def get_by_call_id(self, call_id: str) -> Optional[asyncpg.Record]:
        """Get the operational row for a platform call id."""
        return await self.pool.fetchrow(
            "SELECT * FROM calls WHERE call_id = $1",
            call_id
        )

    async def upsert_training_call(self, record: TrainingCallRecord):
        """Insert or replace the de-identified twin of a call (keyed by call_id)."""
        await self.pool.execute(
            """
            INSERT INTO calls_training (
                call_id, business_id, program_id, status,
                phone_token, email_token, name_token, patient_fingerprint,
                transcript, summary, intent, confidence,
                turns, schedule, escalation, upsell,
                sensitive_categories, ended_reason, duration_seconds,
                started_month, ended_month
            )
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12,
                    $13::jsonb, $14::jsonb, $15::jsonb, $16, $17, $18, $19, $20, $21)
            ON CONFLICT (call_id) DO UPDATE SET
                business_id = EXCLUDED.business_id,
                program_id = EXCLUDED.program_id,
                status = EXCLUDED.status,
                phone_token = EXCLUDED.phone_token,
                email_token = EXCLUDED.email_token,
                name_token = EXCLUDED.name_token,
                patient_fingerprint = EXCLUDED.patient_fingerprint,
                transcript = EXCLUDED.transcript,
                summary = EXCLUDED.summary,
                intent = EXCLUDED.intent,
                confidence = EXCLUDED.confidence,
                turns = EXCLUDED.turns,
                schedule = EXCLUDED.schedule,
                escalation = EXCLUDED.escalation,
                upsell = EXCLUDED.upsell,
                sensitive_categories = EXCLUDED.sensitive_categories,
                ended_reason = EXCLUDED.ended_reason,
                duration_seconds = EXCLUDED.duration_seconds,
                started_month = EXCLUDED.started_month,
                ended_month = EXCLUDED.ended_month,
                updated_at = NOW()
            """,
            record.call_id,
            record.business_id,
            record.program_id,
            record.status,
            record.phone_token,
            record.email_token,
            record.name_token,
            record.patient_fingerprint,
            record.transcript,
            record.summary,
            record.intent,
            record.confidence,
            _jsonb(record.turns),
            _jsonb(record.schedule),
            _jsonb(record.escalation),
            record.upsell,
            record.sensitive_categories or None,
            record.ended_reason,
            record.duration_seconds,
            record.started_month,
            record.ended_month,
        )

    async def replace_turns(
        self,
        call_id: str,
        business_id: Optional[str],
        turns: list[ConversationTurn],
    ) -> int:
        """
        Upsert turns on (call_id, turn_number) and drop numbers beyond the new count.

        Returns:
            Number of turns stored
        """
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                for turn in turns:
                    await conn.execute(
                        """
                        INSERT INTO call_turns (
                            call_id, business_id, turn_number, role, content,
                            timestamp, seconds_from_start, confidence
                        )
                        VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                        ON CONFLICT (call_id, turn_number) DO UPDATE SET
                            business_id = COALESCE(EXCLUDED.business_id, call_turns.business_id),
                            role = EXCLUDED.role,
                            content = EXCLUDED.content,
                            timestamp = EXCLUDED.timestamp,
                            seconds_from_start = EXCLUDED.seconds_from_start,
                            confidence = EXCLUDED.confidence,
                            updated_at = NOW()
                        """,
                        call_id,
                        business_id,
                        turn.turn_number,
                        turn.role.value,
                        turn.text,
                        turn.timestamp,
                        turn.seconds_from_start,
                        turn.confidence,
                    )
                await conn.execute(
                    "DELETE FROM call_turns WHERE call_id = $1 AND turn_number > $2",
                    call_id,
                    len(turns),
                )
        return len(turns)

    async def get_turns(self, call_id: str) -> list[asyncpg.Record]:
        """Get stored turns of a call in order."""
        return await self.pool.fetch(
            "SELECT * FROM call_turns WHERE call_id = $1 ORDER BY turn_number",
            call_id
        )

    async def update_turn_content(self, call_id: str, turn_number: int, content: str):
        """Replace the text of one stored turn."""
        await self.pool.execute(
            """
            UPDATE call_turns SET content = $3, updated_at = NOW()
            WHERE call_id = $1 AND turn_number = $2
            """,
            call_id,
            turn_number,
            content,
        )

    async def list_expired_identifiable(self, cutoff: datetime, limit: int = 1000) -> list[asyncpg.Record]:
        """
        Ended calls older than cutoff whose identity fields are not all tokens yet.
        """
        return await self.pool.fetch(
            """
            SELECT call_id, business_id, patient_name, phone, email, transcript, last_summary
            FROM calls
            WHERE ended_at < $1
            AND (
                (phone IS NOT NULL AND phone NOT LIKE 'PH-%')
                OR (email IS NOT NULL AND email NOT LIKE 'EM-%')
                OR (patient_name IS NOT NULL AND patient_name NOT LIKE 'NM-%')
                OR anonymized_at IS NULL
            )
            ORDER BY ended_at ASC
            LIMIT $2
            """,
            cutoff,
            limit,
        )

    async def anonymize_call(
        self,
        call_id: str,
        patient_name: Optional[str],
        phone: Optional[str],
        email: Optional[str],
        transcript: Optional[str],
        last_summary: Optional[str],
    ):
        """Overwrite identifying fields of an expired call and stamp anonymized_at."""
        await self.pool.execute(
            """
            UPDATE calls SET
                patient_name = $2,
                phone = $3,
                email = $4,
                transcript = $5,
                last_summary = $6,
                anonymized_at = NOW(),
                updated_at = NOW()
            WHERE call_id = $1
            """,
            call_id,
            patient_name,
            phone,
            email,
            transcript,
            last_summary,
        )
