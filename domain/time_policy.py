"""Move-in time policy

Pure functions deriving the reminder / at-risk schedule of a reservation from
its move-in date, plus the booking horizon check. Nothing in here reads the
wall clock; callers pass "now" in.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable

from dateutil.relativedelta import relativedelta

from domain.value_objects import MoveInSchedule

REMINDER_OFFSET = timedelta(days=1)
RISK_OFFSET = timedelta(days=2)
BOOKING_HORIZON = relativedelta(months=3)
MAX_EXTENSION_DAYS = 90

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def start_of_day(day: date) -> datetime:
    """Midnight UTC of the given day"""
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def compute_schedule(move_in_date: date) -> MoveInSchedule:
    """Reminder is due one day after move-in, at-risk two days after"""
    move_in = start_of_day(move_in_date)
    return MoveInSchedule(
        reminder_date=move_in + REMINDER_OFFSET,
        risk_date=move_in + RISK_OFFSET,
    )


def booking_window(today: date) -> tuple:
    """Inclusive (earliest, latest) move-in dates bookable on `today`"""
    return today, today + BOOKING_HORIZON


def is_within_booking_window(move_in_date: date, today: date) -> bool:
    earliest, latest = booking_window(today)
    return earliest <= move_in_date <= latest


def is_reminder_due(reminder_date: datetime, now: datetime) -> bool:
    return reminder_date <= now


def is_risk_due(risk_date: datetime, now: datetime) -> bool:
    return risk_date <= now
