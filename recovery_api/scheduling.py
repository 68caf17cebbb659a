import math
from datetime import date, datetime, time
from zoneinfo import ZoneInfo

from .config import BUSINESS_TIMEZONE
from .errors import WindowClosed

CHANGE_WINDOW_HOURS = 24

_WINDOW_MESSAGES = {
    "cancel": ("Cannot cancel within 24 hours of appointment", "canCancel"),
    "reschedule": ("Cannot reschedule within 24 hours of current appointment", "canReschedule"),
}


def appointment_instant(appointment_date: str, appointment_time: str, tz_name: str = BUSINESS_TIMEZONE) -> datetime:
    """Combine a ``YYYY-MM-DD`` date and ``HH:MM`` time in the business zone."""
    day = date.fromisoformat(appointment_date[:10])
    clock = time.fromisoformat(appointment_time)
    return datetime.combine(day, clock, tzinfo=ZoneInfo(tz_name))


def hours_until(appointment_date: str, appointment_time: str, now: datetime, tz_name: str = BUSINESS_TIMEZONE) -> float:
    delta = appointment_instant(appointment_date, appointment_time, tz_name) - now
    return delta.total_seconds() / 3600


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def check_change_window(
    appointment_date: str,
    appointment_time: str,
    now: datetime,
    action: str = "cancel",
    tz_name: str = BUSINESS_TIMEZONE,
) -> float:
    """Raise WindowClosed if the appointment is less than 24 hours away."""
    hours = hours_until(appointment_date, appointment_time, now, tz_name)
    if hours < CHANGE_WINDOW_HOURS:
        message, flag = _WINDOW_MESSAGES[action]
        raise WindowClosed(message, **{flag: False, "hoursUntilAppointment": round_half_up(hours)})
    return hours
