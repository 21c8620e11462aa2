"""
Database connection management and migrations.
"""
import asyncpg
import logging
from typing import Optional
from src.config import DATABASE_URL

logger = logging.getLogger(__name__)

# Global connection pool
_db_pool: Optional[asyncpg.Pool] = None


async def get_db_pool() -> asyncpg.Pool:
    """Get or create the database connection pool.

    Pool configuration optimized for Supabase Session Mode Pooler:
    - setup callback validates connections on acquire (like SQLAlchemy pool_pre_ping)
    - max_inactive_connection_lifetime matches Supabase pooler timeout (~5 min)
    - min_size=2 pre-warms connections to avoid cold start latency
    """
    global _db_pool
    if _db_pool is None:
        if not DATABASE_URL:
            raise RuntimeError("DATABASE_URL environment variable is required")

        # Convert SQLAlchemy URL to asyncpg format
        raw_url = DATABASE_URL.replace("postgresql+asyncpg://", "postgresql://")

        async def setup_connection(conn):
            """Validate connection on acquire - equivalent to pool_pre_ping."""
            await conn.execute("SELECT 1")

        _db_pool = await asyncpg.create_pool(
            raw_url,
            min_size=2,                              # Pre-warm connections
            max_size=10,                             # Stay within Supabase Session pooler limits
            command_timeout=60,                      # Query timeout (seconds)
            max_inactive_connection_lifetime=300.0,  # Match Supabase pooler timeout (~5 min)
            setup=setup_connection,                  # Validate on each acquire
        )
        logger.info("Database connection pool created (min=2, max=10, idle_lifetime=300s)")
    return _db_pool


async def close_db_pool():
    """Close the database connection pool."""
    global _db_pool
    if _db_pool is not None:
        await _db_pool.close()
        _db_pool = None
        logger.info("Database connection pool closed")


async def run_schema_migrations(pool: asyncpg.Pool):
    """Create the call tables if they don't exist yet."""
    try:
        await pool.execute("""
            CREATE TABLE IF NOT EXISTS businesses (
                id              UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                name            VARCHAR(200),
                to_number       VARCHAR(32),
                workflow_id     VARCHAR(255),
                program_id      UUID,
                timezone        VARCHAR(64),
                default_service VARCHAR(200),
                created_at      TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at      TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await pool.execute("""
            CREATE INDEX IF NOT EXISTS idx_businesses_to_number ON businesses(to_number);
            CREATE INDEX IF NOT EXISTS idx_businesses_workflow_id ON businesses(workflow_id);
        """)

        # Operational record - one row per call_id, business_id may be NULL (unresolved tenant)
        await pool.execute("""
            CREATE TABLE IF NOT EXISTS calls (
                id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                call_id               VARCHAR(255) NOT NULL UNIQUE,
                business_id           UUID REFERENCES businesses(id) ON DELETE SET NULL,
                program_id            UUID,
                status                VARCHAR(50) NOT NULL DEFAULT 'in progress',
                patient_name          TEXT,
                phone                 TEXT,
                email                 TEXT,
                patient_fingerprint   VARCHAR(64),
                transcript            TEXT,
                last_summary          TEXT,
                last_intent           TEXT,
                confidence            DOUBLE PRECISION,
                schedule              JSONB,
                escalate              BOOLEAN NOT NULL DEFAULT false,
                escalation            JSONB,
                upsell                BOOLEAN,
                appointment_booked    BOOLEAN,
                appointment_rescheduled BOOLEAN,
                appointment_cancelled BOOLEAN,
                sensitive_categories  TEXT[],
                ended_reason          VARCHAR(100),
                total_turns           INTEGER,
                started_at            TIMESTAMPTZ,
                ended_at              TIMESTAMPTZ,
                anonymized_at         TIMESTAMPTZ,
                created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at            TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)

        # De-identified twin - written only for ended calls
        await pool.execute("""
            CREATE TABLE IF NOT EXISTS calls_training (
                id                    UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                call_id               VARCHAR(255) NOT NULL UNIQUE,
                business_id           UUID,
                program_id            UUID,
                status                VARCHAR(50),
                phone_token           VARCHAR(32),
                email_token           VARCHAR(32),
                name_token            VARCHAR(32),
                patient_fingerprint   VARCHAR(64),
                transcript            TEXT,
                summary               TEXT,
                intent                TEXT,
                confidence            DOUBLE PRECISION,
                turns                 JSONB,
                schedule              JSONB,
                escalation            JSONB,
                upsell                BOOLEAN,
                sensitive_categories  TEXT[],
                ended_reason          VARCHAR(100),
                duration_seconds      INTEGER,
                started_month         VARCHAR(7),
                ended_month           VARCHAR(7),
                created_at            TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at            TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)

        await pool.execute("""
            CREATE TABLE IF NOT EXISTS call_turns (
                id                 UUID PRIMARY KEY DEFAULT gen_random_uuid(),
                call_id            VARCHAR(255) NOT NULL,
                business_id        UUID,
                turn_number        INTEGER NOT NULL,
                role               VARCHAR(20) NOT NULL,
                content            TEXT NOT NULL,
                timestamp          TEXT,
                seconds_from_start DOUBLE PRECISION,
                confidence         DOUBLE PRECISION,
                created_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at         TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                CONSTRAINT uq_call_turns_call_turn UNIQUE (call_id, turn_number)
            );
        """)

        await pool.execute("""
            CREATE INDEX IF NOT EXISTS idx_calls_business ON calls(business_id);
            CREATE INDEX IF NOT EXISTS idx_calls_ended_at ON calls(ended_at);
            CREATE INDEX IF NOT EXISTS idx_calls_fingerprint ON calls(patient_fingerprint);
            CREATE INDEX IF NOT EXISTS idx_calls_training_business ON calls_training(business_id);
            CREATE INDEX IF NOT EXISTS idx_call_turns_call ON call_turns(call_id);
        """)

        logger.info("Schema migrations completed")
    except Exception as e:
        logger.warning(f"Schema migration warning (may be ok if already done): {e}")
