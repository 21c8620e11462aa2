"""
Schedule parser - turns spoken/slot-filled date and time values into an
appointment interval.

Two sources, in order of trust:
1. the confirmed booking structured output (authoritative)
2. raw slot-filling variables (tentative, fixed one-hour length)

Nothing in here raises: unparseable input gives None, and date arithmetic
errors give a schedule without an end.
"""
import logging
import re
from datetime import date, datetime, time, timedelta
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from src.config import ALLOW_TENTATIVE_SCHEDULE, DEFAULT_TIMEZONE
from src.models.call import Schedule
from src.services.field_resolver import FieldResolver

logger = logging.getLogger(__name__)

DEFAULT_DURATION_MINUTES = 60
TENTATIVE_DURATION_MINUTES = 60

_TIME_PATTERN = re.compile(
    r"^(?P<hour>\d{1,2})(?:[:.h](?P<minute>\d{2}))?(?::\d{2})?\s*(?P<suffix>am|pm|a|p)?$"
)

_DATE_FORMATS = (
    "%Y-%m-%d",
    "%Y/%m/%d",
    "%m/%d/%Y",
    "%m-%d-%Y",
    "%m/%d/%y",
    "%B %d, %Y",
    "%B %d %Y",
    "%b %d, %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%A, %B %d, %Y",
    "%A %B %d %Y",
)

# Keys the booking structured output and slot variables use
_DATE_KEYS = ("date", "appointment_date", "appointmentDate", "booking_date", "bookingDate")
_TIME_KEYS = ("time", "appointment_time", "appointmentTime", "booking_time", "bookingTime")
_DURATION_KEYS = ("duration", "duration_minutes", "durationMinutes", "length")
_SERVICE_KEYS = ("service", "service_name", "serviceName", "treatment")
_DATETIME_KEYS = ("start", "startTime", "start_time", "datetime", "dateTime")


def parse_time(value: Any) -> Optional[tuple[int, int]]:
    """
    Normalize a time expression to (hour, minute) in 24-hour form.

    Handles "2:30 PM", "2:30pm", "9am", "9 a.m.", "14:30", "14", "noon",
    "midnight". 12 PM stays 12, 12 AM becomes 0.
    """
    if value is None:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    if text == "noon":
        return 12, 0
    if text == "midnight":
        return 0, 0

    # "a.m." / "p. m." -> "am" / "pm"
    text = re.sub(r"([ap])\.?\s?m\.?$", r"\1m", text)
    match = _TIME_PATTERN.match(text)
    if not match:
        return None

    hour = int(match.group("hour"))
    minute = int(match.group("minute") or 0)
    suffix = match.group("suffix")

    if suffix:
        if hour < 1 or hour > 12:
            return None
        if suffix.startswith("p"):
            hour = 12 if hour == 12 else hour + 12
        else:
            hour = 0 if hour == 12 else hour

    if hour > 23 or minute > 59:
        return None
    return hour, minute


def parse_date(value: Any) -> Optional[date]:
    """Parse ISO, US slashed and month-name dates. Returns None when unrecognized."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = re.sub(r"(\d)(?:st|nd|rd|th)\b", r"\1", str(value).strip())
    text = re.sub(r"\s+", " ", text)
    if not text:
        return None

    # ISO timestamp - keep the date part
    iso_match = re.match(r"^(\d{4}-\d{2}-\d{2})[T ]", text)
    if iso_match:
        text = iso_match.group(1)

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def parse_duration(value: Any) -> Optional[int]:
    """Minutes from 45, "45", "45 minutes", "1 hour", "1.5 hours"."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    text = str(value).strip().lower()
    match = re.match(r"^(\d+(?:\.\d+)?)\s*(h|hr|hrs|hour|hours|m|min|mins|minute|minutes)?$", text)
    if not match:
        return None
    amount = float(match.group(1))
    unit = match.group(2) or "min"
    if unit.startswith("h"):
        amount *= 60
    return int(amount)


def _tzinfo(timezone: Optional[str]):
    if not timezone:
        return None
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning(f"Unknown timezone '{timezone}', using naive local times")
        return None


def _summary(start: datetime, service: Optional[str]) -> str:
    label = service or "Appointment"
    clock = start.strftime("%I:%M %p").lstrip("0")
    return f"{label} on {start.strftime('%A, %B')} {start.day}, {start.year} at {clock}"


def build_schedule(
    date_value: Any,
    time_value: Any,
    duration: Any = None,
    service: Optional[str] = None,
    timezone: Optional[str] = None,
    confirmed: bool = True,
    source: str = "structured_output",
) -> Optional[Schedule]:
    """
    Combine a date and time expression into a Schedule.

    Args:
        date_value: e.g. "2025-03-14", "March 14, 2025"
        time_value: e.g. "2:30 PM", "9am", "14:30"
        duration: Minutes (default 60 when unspecified)
        service: Service label for the summary
        timezone: IANA name; naive local times when absent/unknown

    Returns:
        Schedule, or None if date or time is missing or unparseable
    """
    if not date_value or not time_value:
        return None

    day = parse_date(date_value)
    clock = parse_time(time_value)
    if day is None or clock is None:
        logger.info(f"Could not parse schedule date={date_value!r} time={time_value!r}")
        return None

    try:
        start = datetime.combine(day, time(clock[0], clock[1]), tzinfo=_tzinfo(timezone))
    except (ValueError, OverflowError, TypeError) as e:
        logger.warning(f"Schedule start could not be built: {e}")
        return None

    minutes = DEFAULT_DURATION_MINUTES if duration in (None, "") else parse_duration(duration)
    end = None
    if minutes is not None and minutes > 0:
        try:
            end = start + timedelta(minutes=minutes)
        except (OverflowError, ValueError) as e:
            logger.warning(f"Schedule end could not be computed: {e}")
            end = None

    return Schedule(
        start=start,
        end=end,
        service=service,
        summary=_summary(start, service),
        duration_minutes=minutes if end is not None else None,
        confirmed=confirmed,
        source=source,
    )


def _pick(data: dict, keys: tuple[str, ...]) -> Any:
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _split_datetime(value: Any) -> tuple[Optional[str], Optional[str]]:
    """"2025-03-14T14:30:00" -> ("2025-03-14", "14:30")."""
    if not isinstance(value, str):
        return None, None
    match = re.match(r"^(\d{4}-\d{2}-\d{2})[T ](\d{1,2}:\d{2})", value.strip())
    if not match:
        return None, None
    return match.group(1), match.group(2)


def schedule_from_booking(
    booking: Any,
    default_service: Optional[str] = None,
    timezone: Optional[str] = None,
) -> Optional[Schedule]:
    """Confirmed schedule from the booking structured output result."""
    if not isinstance(booking, dict):
        return None

    date_value = _pick(booking, _DATE_KEYS)
    time_value = _pick(booking, _TIME_KEYS)
    if not date_value or not time_value:
        split_date, split_time = _split_datetime(_pick(booking, _DATETIME_KEYS))
        date_value = date_value or split_date
        time_value = time_value or split_time

    return build_schedule(
        date_value,
        time_value,
        duration=_pick(booking, _DURATION_KEYS),
        service=_pick(booking, _SERVICE_KEYS) or default_service,
        timezone=timezone,
        confirmed=True,
        source="structured_output",
    )


def resolve_schedule(
    resolver: FieldResolver,
    default_service: Optional[str] = None,
    timezone: Optional[str] = None,
    allow_tentative: Optional[bool] = None,
) -> Optional[Schedule]:
    """
    Schedule for a call: confirmed booking first, slot-variable inference second.

    Never raises - a broken payload just means no schedule.
    """
    allow_tentative = ALLOW_TENTATIVE_SCHEDULE if allow_tentative is None else allow_tentative
    timezone = timezone or DEFAULT_TIMEZONE or None

    try:
        confirmed = schedule_from_booking(
            resolver.structured_output("booking_confirmed"),
            default_service=default_service,
            timezone=timezone,
        )
        if confirmed:
            return confirmed

        if not allow_tentative:
            return None

        defaults = {"service": default_service} if default_service else None
        return build_schedule(
            resolver.get("slot_date"),
            resolver.get("slot_time"),
            duration=TENTATIVE_DURATION_MINUTES,
            service=resolver.get_str("service", defaults),
            timezone=timezone,
            confirmed=False,
            source="slot_variables",
        )
    except Exception as e:
        logger.warning(f"Schedule resolution failed, continuing without schedule: {e}")
        return None
