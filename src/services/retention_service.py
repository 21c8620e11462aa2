"""
Retention service - anonymizes operational call rows past the retention window.

Operators see full-fidelity records for CALL_RETENTION_DAYS after a call ends.
After that, identity fields are swapped for their pseudonymization tokens and
free text is redacted in place, including the stored turns. The training twin
is de-identified at write time and needs no pass here.
"""
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from pydantic import BaseModel

from src.config import CALL_RETENTION_DAYS
from src.repositories.call_repo import CallRepository
from src.services.pseudonymization_service import Pseudonymizer, is_token
from src.services.redaction_service import PiiRedactor

logger = logging.getLogger(__name__)


class RetentionResult(BaseModel):
    """Outcome of one anonymization run."""
    success: bool = True
    anonymized: int = 0
    errors: int = 0
    total: int = 0
    retention_days: int
    cutoff_date: datetime


class RetentionService:
    """Anonymizes expired calls in place."""

    def __init__(
        self,
        call_repo: CallRepository,
        pseudonymizer: Pseudonymizer,
        redactor: PiiRedactor,
        retention_days: Optional[int] = None,
        batch_size: int = 1000,
    ):
        self.call_repo = call_repo
        self.pseudonymizer = pseudonymizer
        self.redactor = redactor
        self.retention_days = CALL_RETENTION_DAYS if retention_days is None else retention_days
        self.batch_size = batch_size

    def _tokenize(self, value: Optional[str], namespace: str) -> Optional[str]:
        if not value or is_token(value):
            return value
        return self.pseudonymizer.token(value, namespace)

    async def _anonymize_turns(self, call_id: str, names: list[str]):
        for turn in await self.call_repo.get_turns(call_id):
            content = turn["content"]
            redacted = self.redactor.redact(content, names)
            if redacted != content:
                await self.call_repo.update_turn_content(call_id, turn["turn_number"], redacted)

    async def anonymize_expired(self, now: Optional[datetime] = None) -> RetentionResult:
        """
        Anonymize every ended call older than the retention window.

        One failing call is counted and logged; the run continues with the next.
        """
        now = now or datetime.now(timezone.utc)
        cutoff = now - timedelta(days=self.retention_days)
        logger.info(f"Anonymizing calls ended before {cutoff.isoformat()} ({self.retention_days} day retention)")

        rows = await self.call_repo.list_expired_identifiable(cutoff, self.batch_size)
        result = RetentionResult(total=len(rows), retention_days=self.retention_days, cutoff_date=cutoff)

        for row in rows:
            call_id = row["call_id"]
            patient_name = row["patient_name"]
            # A name already tokenized can no longer be matched in free text
            names = [patient_name] if patient_name and not is_token(patient_name) else []
            try:
                # Turns first: the row stops matching the expired query once it is stamped
                await self._anonymize_turns(call_id, names)
                await self.call_repo.anonymize_call(
                    call_id,
                    patient_name=self._tokenize(patient_name, "name"),
                    phone=self._tokenize(row["phone"], "phone"),
                    email=self._tokenize(row["email"], "email"),
                    transcript=self.redactor.redact(row["transcript"], names),
                    last_summary=self.redactor.redact(row["last_summary"], names),
                )
                result.anonymized += 1
            except Exception as e:
                logger.error(f"Failed to anonymize call {call_id}: {e}")
                result.errors += 1

        logger.info(f"Anonymization complete: {result.anonymized} calls anonymized, {result.errors} errors")
        return result
