"""
Configuration module for the Coya call pipeline.
Centralizes environment variables, logging setup, and constants.
"""
import os
import json
import logging
from dotenv import load_dotenv

# Load .env file for local development
load_dotenv()

# ============================================================================
# Logging Configuration
# ============================================================================

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

# ============================================================================
# Environment Configuration
# ============================================================================

# Environment identifier (production, staging, development, etc.)
ENVIRONMENT = os.environ.get("ENVIRONMENT", "production")

# ============================================================================
# Database Configuration
# ============================================================================

# Checked when the pool is created so the pipeline stays importable without a database
DATABASE_URL = os.environ.get("DATABASE_URL")

# ============================================================================
# VAPI Configuration
# ============================================================================

# Shared secret VAPI sends in the X-Vapi-Secret header (empty = no check)
VAPI_WEBHOOK_SECRET = os.environ.get("VAPI_WEBHOOK_SECRET", "")

# Structured outputs are keyed by opaque VAPI ids; this table gives them meaning.
# Override with a JSON object, e.g. {"5f0c...": "booking_confirmed"}
STRUCTURED_OUTPUT_MEANINGS = (
    "booking_confirmed",
    "appointment_booked",
    "appointment_rescheduled",
    "appointment_cancelled",
    "upsell_opportunity",
    "call_summary",
)


def _load_structured_output_ids() -> dict[str, str]:
    raw = os.environ.get("VAPI_STRUCTURED_OUTPUT_IDS", "")
    if not raw:
        return {}
    try:
        table = json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"VAPI_STRUCTURED_OUTPUT_IDS is not valid JSON, ignoring: {e}")
        return {}
    if not isinstance(table, dict):
        logger.warning("VAPI_STRUCTURED_OUTPUT_IDS must be a JSON object, ignoring")
        return {}
    return {
        str(output_id): meaning
        for output_id, meaning in table.items()
        if meaning in STRUCTURED_OUTPUT_MEANINGS
    }


VAPI_STRUCTURED_OUTPUT_IDS = _load_structured_output_ids()

# ============================================================================
# Privacy Configuration
# ============================================================================

# Salt for pseudonymization tokens - injected into Pseudonymizer, never read there
HIPAA_HASH_SALT = os.environ.get("HIPAA_HASH_SALT", "default-salt-change-in-production")
if HIPAA_HASH_SALT == "default-salt-change-in-production" and ENVIRONMENT == "production":
    logger.warning("HIPAA_HASH_SALT not set, using the default salt")

# Operational rows older than this are anonymized in place
CALL_RETENTION_DAYS = int(os.environ.get("CALL_RETENTION_DAYS", "90"))

# Bearer token expected on the retention endpoint (empty = no check)
CRON_SECRET = os.environ.get("CRON_SECRET", "")

# ============================================================================
# Scheduling Configuration
# ============================================================================

# Infer a tentative appointment from raw slot variables when no confirmed booking exists
ALLOW_TENTATIVE_SCHEDULE = os.environ.get("ALLOW_TENTATIVE_SCHEDULE", "true").lower() in ("1", "true", "yes")

# Used when the business record carries no timezone (empty = naive local times)
DEFAULT_TIMEZONE = os.environ.get("DEFAULT_TIMEZONE", "")

# ============================================================================
# Application Constants
# ============================================================================

# Status shown while a call is active or when the platform sent nothing usable
DEFAULT_CALL_STATUS = "in progress"

# Statuses that mean the call has finished
ENDED_CALL_STATUSES = {"ended", "completed", "failed"}

# Statuses that mean the call has just started
STARTED_CALL_STATUSES = {"ringing", "in-progress", "in progress", "queued"}
