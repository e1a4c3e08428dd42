from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

DAY_START = 0
DAY_END = 24 * 60
MIN_SLOT_MINUTES = 30
DEFAULT_HORIZON_DAYS = 365

STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


def parse_time(text: str) -> int:
    """Parse ``HH:MM`` (24h) into minutes since midnight."""
    try:
        hour_text, minute_text = str(text).strip().split(":")
        hour, minute = int(hour_text), int(minute_text)
    except ValueError as error:
        raise ValueError(f"Invalid time {text!r}. Expected format: HH:MM") from error

    if not (0 <= hour <= 23 and 0 <= minute <= 59):
        raise ValueError(f"Invalid time {text!r}. Expected format: HH:MM")
    return hour * 60 + minute


def format_time(minutes: int) -> str:
    hour, minute = divmod(minutes, 60)
    return f"{hour:02d}:{minute:02d}"


def parse_date(text: str) -> date:
    try:
        return datetime.strptime(str(text).strip(), "%Y-%m-%d").date()
    except ValueError as error:
        raise ValueError(f"Invalid date {text!r}. Expected format: YYYY-MM-DD") from error


def format_date(value: date) -> str:
    return value.isoformat()


@dataclass(frozen=True)
class TimeRange:
    start: int
    end: int

    @staticmethod
    def from_text(start_text: str, end_text: str) -> "TimeRange":
        return TimeRange(parse_time(start_text), parse_time(end_text))

    @property
    def duration_minutes(self) -> int:
        return self.end - self.start

    def overlaps(self, other: "TimeRange") -> bool:
        return has_time_overlap(self, other)

    def __str__(self) -> str:
        return f"{format_time(self.start)} - {format_time(self.end)}"


@dataclass(frozen=True)
class Reservation:
    reservation_id: str
    venue_id: str
    date: date
    time_range: TimeRange
    status: str = STATUS_PENDING

    @property
    def is_active(self) -> bool:
        return self.status != STATUS_REJECTED


def has_time_overlap(new_range: TimeRange, existing_range: TimeRange) -> bool:
    """Return True when two time ranges overlap by even one minute.

    Ranges are treated as half-open intervals [start, end),
    so touching boundaries (e.g. 09:00-10:00 and 10:00-11:00) do not overlap.
    """
    return new_range.start < existing_range.end and new_range.end > existing_range.start


def _same_slot_active(pool: Iterable[Reservation], venue_id: str, target_date: date) -> list[Reservation]:
    return [
        reservation
        for reservation in pool
        if reservation.venue_id == venue_id and reservation.date == target_date and reservation.is_active
    ]


def find_conflicts(candidate: Reservation, pool: Iterable[Reservation]) -> list[Reservation]:
    """Return the active reservations that would block ``candidate``.

    The entry sharing the candidate's id is skipped so that re-saving an
    edited reservation never collides with its own stored version.
    """
    return [
        existing
        for existing in _same_slot_active(pool, candidate.venue_id, candidate.date)
        if existing.reservation_id != candidate.reservation_id
        and has_time_overlap(candidate.time_range, existing.time_range)
    ]


def has_conflict(candidate: Reservation, pool: Iterable[Reservation]) -> bool:
    return bool(find_conflicts(candidate, pool))


def free_slots(
    venue_id: str,
    target_date: date,
    pool: Iterable[Reservation],
    min_slot_minutes: int = MIN_SLOT_MINUTES,
) -> list[TimeRange]:
    """Return the gaps of at least ``min_slot_minutes`` left between active reservations."""
    occupied = sorted(
        _same_slot_active(pool, venue_id, target_date),
        key=lambda reservation: reservation.time_range.start,
    )

    slots: list[TimeRange] = []
    cursor = DAY_START
    for reservation in occupied:
        start, end = reservation.time_range.start, reservation.time_range.end
        if start > cursor and start - cursor >= min_slot_minutes:
            slots.append(TimeRange(cursor, start))
        cursor = max(cursor, end)

    if DAY_END > cursor and DAY_END - cursor >= min_slot_minutes:
        slots.append(TimeRange(cursor, DAY_END))
    return slots


def free_dates(
    venue_id: str,
    time_range: TimeRange,
    pool: Iterable[Reservation],
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    today: date | None = None,
) -> list[date]:
    """Return the days after ``today`` (up to ``horizon_days`` ahead) where ``time_range`` is free."""
    base = today or date.today()
    blocked = {
        reservation.date
        for reservation in pool
        if reservation.venue_id == venue_id
        and reservation.is_active
        and has_time_overlap(time_range, reservation.time_range)
    }

    days: list[date] = []
    for offset in range(1, horizon_days + 1):
        candidate = base + timedelta(days=offset)
        if candidate not in blocked:
            days.append(candidate)
    return days
