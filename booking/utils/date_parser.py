"""
Date and time helpers for the booking API.

Clients send dates as "YYYY-MM-DD" (or day-first variants such as
"15/03/2026") and times as "HH:MM", always in the business timezone.
"""

from datetime import date, datetime, time
from functools import lru_cache
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser

from shared.config import get_settings

WEEKDAYS_ES = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
MONTHS_ES = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre"
]


@lru_cache
def get_business_tz() -> ZoneInfo:
    """Timezone in which working hours and client dates are expressed."""
    return ZoneInfo(get_settings().TIMEZONE)


def now_local() -> datetime:
    return datetime.now(get_business_tz())


def parse_date(value: str | date) -> date:
    """
    Parse a calendar date.

    Raises:
        ValueError: If the value is not a recognizable date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    value = value.strip()
    if not value:
        raise ValueError("Fecha vacía")
    try:
        return date.fromisoformat(value)
    except ValueError:
        pass
    try:
        return date_parser.parse(value, dayfirst=True).date()
    except (ValueError, OverflowError) as e:
        raise ValueError(f"Fecha inválida: '{value}'") from e


def parse_time(value: str | time) -> time:
    """
    Parse an "HH:MM" (or "HH:MM:SS") wall-clock time.

    Raises:
        ValueError: If the value is not a valid time
    """
    if isinstance(value, time):
        return value
    try:
        parsed = time.fromisoformat(value.strip())
    except ValueError as e:
        raise ValueError(f"Hora inválida: '{value}'") from e
    return parsed.replace(second=0, microsecond=0)


def combine_local(day: date, wall_time: time) -> datetime:
    """Timezone-aware datetime for a local date and wall-clock time."""
    return datetime.combine(day, wall_time, tzinfo=get_business_tz())


def to_local(dt: datetime) -> datetime:
    """Convert an aware datetime to the business timezone (naive ones are assumed local)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=get_business_tz())
    return dt.astimezone(get_business_tz())


def format_hhmm(dt: datetime) -> str:
    return to_local(dt).strftime("%H:%M")


def format_date_spanish(dt: datetime) -> str:
    """
    Format datetime to Spanish date string.

    Example:
        >>> format_date_spanish(datetime(2026, 3, 16, 10, 0))
        'lunes 16 de marzo'
    """
    return f"{WEEKDAYS_ES[dt.weekday()]} {dt.day} de {MONTHS_ES[dt.month - 1]}"
