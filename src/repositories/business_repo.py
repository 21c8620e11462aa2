"""
Business repository - tenant lookup for incoming calls.
"""
import asyncpg
from typing import Optional

from src.models.call import Business


def _to_business(row: Optional[asyncpg.Record]) -> Optional[Business]:
    if row is None:
        return None
    return Business(
        id=str(row["id"]),
        name=row["name"],
        program_id=str(row["program_id"]) if row["program_id"] else None,
        timezone=row["timezone"],
        default_service=row["default_service"],
    )


class BusinessRepository:
    """Repository for business (tenant) lookups."""

    def __init__(self, pool: asyncpg.Pool):
        self.pool = pool

    async def find_by_phone(self, to_number: str) -> Optional[Business]:
        """Find the business that owns a dialled number (digits compared only)."""
        row = await self.pool.fetchrow(
            """
            SELECT id, name, program_id, timezone, default_service
            FROM businesses
            WHERE regexp_replace(to_number, '[^0-9]', '', 'g') = $1
            LIMIT 1
            """,
            to_number
        )
        return _to_business(row)

    async def find_by_workflow_id(self, workflow_id: str) -> Optional[Business]:
        """Find the business configured for a VAPI workflow."""
        row = await self.pool.fetchrow(
            """
            SELECT id, name, program_id, timezone, default_service
            FROM businesses
            WHERE workflow_id = $1
            LIMIT 1
            """,
            workflow_id
        )
        return _to_business(row)
