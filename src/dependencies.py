"""
FastAPI dependency injection factories.

This module provides dependency factories for repositories, services,
and the privacy components shared across routers.
"""
import asyncpg
from functools import lru_cache
from fastapi import Depends

from src.config import HIPAA_HASH_SALT
from src.database import get_db_pool
from src.repositories import BusinessRepository, CallRepository
from src.services import (
    DualWriteBuilder,
    PiiRedactor,
    Pseudonymizer,
    RetentionService,
    SensitiveContentDetector,
    VapiWebhookService,
)


# =============================================================================
# Database Dependencies
# =============================================================================

async def get_pool() -> asyncpg.Pool:
    """Get the database connection pool."""
    return await get_db_pool()


# =============================================================================
# Repository Dependencies
# =============================================================================

async def get_call_repo(
    pool: asyncpg.Pool = Depends(get_pool)
) -> CallRepository:
    """Get a CallRepository instance."""
    return CallRepository(pool)


async def get_business_repo(
    pool: asyncpg.Pool = Depends(get_pool)
) -> BusinessRepository:
    """Get a BusinessRepository instance."""
    return BusinessRepository(pool)


# =============================================================================
# Privacy Dependencies
# =============================================================================

@lru_cache
def get_pseudonymizer() -> Pseudonymizer:
    """Pseudonymizer with the configured salt (stateless, shared)."""
    return Pseudonymizer(HIPAA_HASH_SALT)


def get_redactor(
    pseudonymizer: Pseudonymizer = Depends(get_pseudonymizer)
) -> PiiRedactor:
    return PiiRedactor(pseudonymizer)


def get_detector(
    redactor: PiiRedactor = Depends(get_redactor)
) -> SensitiveContentDetector:
    return SensitiveContentDetector(redactor)


# =============================================================================
# Service Dependencies
# =============================================================================

async def get_webhook_service(
    call_repo: CallRepository = Depends(get_call_repo),
    business_repo: BusinessRepository = Depends(get_business_repo),
    pseudonymizer: Pseudonymizer = Depends(get_pseudonymizer),
    redactor: PiiRedactor = Depends(get_redactor),
    detector: SensitiveContentDetector = Depends(get_detector),
) -> VapiWebhookService:
    """Get a VapiWebhookService wired to the call tables."""
    writer = DualWriteBuilder(call_repo, pseudonymizer, redactor, detector)
    return VapiWebhookService(business_repo, writer, pseudonymizer, detector)


async def get_retention_service(
    call_repo: CallRepository = Depends(get_call_repo),
    pseudonymizer: Pseudonymizer = Depends(get_pseudonymizer),
    redactor: PiiRedactor = Depends(get_redactor),
) -> RetentionService:
    """Get a RetentionService instance."""
    return RetentionService(call_repo, pseudonymizer, redactor)
