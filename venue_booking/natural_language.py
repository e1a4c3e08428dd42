import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Iterable

from .booking import DAY_END, Reservation, TimeRange, has_conflict, parse_date, parse_time
from .yaml_store import Venue

_DATE_RE = re.compile(r"(?P<date>\d{4}[/-]\d{1,2}[/-]\d{1,2})")
_TIME_RE = re.compile(r"(?<!\d)(?P<time>(?:[01]?\d|2[0-3]):[0-5]\d)(?!\d)")
_RELATIVE_DATE_RE = re.compile(r"\b(?P<day>today|tomorrow)\b", re.IGNORECASE)
_MERIDIEM_TIME_RE = re.compile(
    r"\b(?:at\s+)?(?P<hour>\d{1,2})(?::(?P<minute>[0-5]\d))?\s*(?P<ampm>am|pm)\b",
    re.IGNORECASE,
)
_DURATION_RE = re.compile(
    r"\bfor\s+(?:(?P<hours>\d+)\s*(?:hours?|hrs?)(?:\s+(?:and\s+)?(?P<minutes>\d+)\s*(?:minutes?|mins?))?"
    r"|(?P<only_minutes>\d+)\s*(?:minutes?|mins?))\b",
    re.IGNORECASE,
)
_VENUE_CLEAN_RE = re.compile(r"\b(book|reserve|please|on|at|for|from|to|until|the)\b", re.IGNORECASE)


@dataclass(frozen=True)
class ParsedBookingRequest:
    venue: str | None
    date: date
    time_range: TimeRange
    raw_text: str


def _extract_venue(text: str, fragments: list[str]) -> str | None:
    candidate = text
    for fragment in fragments:
        if fragment:
            candidate = candidate.replace(fragment, " ")
    candidate = re.sub(r"[~\-]", " ", candidate)
    candidate = _VENUE_CLEAN_RE.sub(" ", candidate)
    candidate = re.sub(r"\s+", " ", candidate).strip(" ,.")
    return candidate or None


def parse_booking_request(text: str, reference_datetime: datetime | None = None) -> ParsedBookingRequest:
    """Parse a booking request such as ``"Main Auditorium 2024-06-01 10:00~11:00"``.

    Relative requests like ``"Seminar Hall 1 tomorrow at 3pm for 2 hours"`` are
    resolved against ``reference_datetime``.
    """
    if not text or not text.strip():
        raise ValueError("text must not be empty")

    date_match = _DATE_RE.search(text)
    if date_match:
        time_matches = _TIME_RE.findall(text)
        if len(time_matches) < 2:
            raise ValueError("Could not find start/end time in text. Expected format: HH:MM")

        date_text = date_match.group("date")
        start_time, end_time = time_matches[0], time_matches[1]
        target_date = parse_date(date_text.replace("/", "-"))
        time_range = TimeRange(parse_time(start_time), parse_time(end_time))
        if time_range.start >= time_range.end:
            raise ValueError("start time must be earlier than end time")

        venue = _extract_venue(text, [date_text, start_time, end_time])
        return ParsedBookingRequest(venue=venue, date=target_date, time_range=time_range, raw_text=text)

    relative_date_match = _RELATIVE_DATE_RE.search(text)
    relative_time_match = _MERIDIEM_TIME_RE.search(text)
    duration_match = _DURATION_RE.search(text)
    if not (relative_date_match and relative_time_match and duration_match):
        raise ValueError(
            "Could not find a date in text. Expected format: YYYY-MM-DD or relative form like 'tomorrow at 3pm for 1 hour'"
        )

    now = reference_datetime or datetime.now()
    day_keyword = relative_date_match.group("day").lower()
    target_date = now.date() + timedelta(days=1 if day_keyword == "tomorrow" else 0)

    hour = int(relative_time_match.group("hour"))
    minute_group = relative_time_match.group("minute")
    minute = int(minute_group) if minute_group else 0
    ampm = relative_time_match.group("ampm").lower()
    if not 1 <= hour <= 12:
        raise ValueError("Invalid hour in 12-hour time expression")
    if ampm == "pm" and hour < 12:
        hour += 12
    if ampm == "am" and hour == 12:
        hour = 0

    if duration_match.group("only_minutes"):
        duration_minutes = int(duration_match.group("only_minutes"))
    else:
        duration_minutes = int(duration_match.group("hours")) * 60 + int(duration_match.group("minutes") or 0)
    if duration_minutes <= 0:
        raise ValueError("duration must be greater than zero")

    start = hour * 60 + minute
    end = start + duration_minutes
    if end > DAY_END:
        raise ValueError("Bookings cannot run past midnight")

    venue = _extract_venue(
        text,
        [relative_date_match.group(0), relative_time_match.group(0), duration_match.group(0)],
    )
    return ParsedBookingRequest(venue=venue, date=target_date, time_range=TimeRange(start, end), raw_text=text)


def resolve_venue(name: str, venues: Iterable[Venue]) -> Venue | None:
    """Match ``name`` against venue names or ids, ignoring case."""
    wanted = name.strip().casefold()
    for venue in venues:
        if venue.name.casefold() == wanted or venue.venue_id.casefold() == wanted:
            return venue
    return None


def can_book_from_text(text: str, venues: Iterable[Venue], existing_reservations: Iterable[Reservation]) -> bool:
    parsed = parse_booking_request(text)
    venue = resolve_venue(parsed.venue or "", venues)
    if venue is None:
        raise ValueError(f"Unknown venue: {parsed.venue}")

    candidate = Reservation(
        reservation_id="",
        venue_id=venue.venue_id,
        date=parsed.date,
        time_range=parsed.time_range,
    )
    return not has_conflict(candidate, existing_reservations)
