"""
Maintenance router - scheduled data-retention jobs.

Called by a cron scheduler with `Authorization: Bearer $CRON_SECRET`.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header

from src.config import CALL_RETENTION_DAYS, CRON_SECRET
from src.dependencies import get_retention_service
from src.exceptions import UnauthorizedError
from src.services.retention_service import RetentionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/calls", tags=["Maintenance"])


def verify_cron_secret(authorization: Optional[str]) -> bool:
    if not CRON_SECRET:
        return True
    return authorization == f"Bearer {CRON_SECRET}"


@router.post("/anonymize-expired")
async def anonymize_expired_calls(
    authorization: Optional[str] = Header(None),
    service: RetentionService = Depends(get_retention_service),
):
    """Anonymize calls that ended more than CALL_RETENTION_DAYS ago."""
    if not verify_cron_secret(authorization):
        logger.warning("Rejected anonymization run: bad cron secret")
        raise UnauthorizedError()

    result = await service.anonymize_expired()
    return result.model_dump(mode="json")


@router.get("/anonymize-expired")
async def anonymize_expired_info():
    """Show the configured retention (use POST to run)."""
    return {
        "message": "Call cleanup endpoint - use POST to run cleanup",
        "retention_days": CALL_RETENTION_DAYS,
    }
