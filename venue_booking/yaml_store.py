from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime, timedelta
from pathlib import Path
from threading import RLock
from typing import Any, Callable
import random
import shutil
from uuid import uuid4

import yaml

from .booking import (
    DEFAULT_HORIZON_DAYS,
    MIN_SLOT_MINUTES,
    STATUS_APPROVED,
    STATUS_PENDING,
    STATUS_REJECTED,
    STATUSES,
    Reservation,
    TimeRange,
    find_conflicts,
    format_date,
    format_time,
    free_dates,
    free_slots,
    parse_date,
    parse_time,
)


class BookingError(Exception):
    """Base class for booking failures surfaced to callers."""


class ConflictError(BookingError):
    def __init__(self, message: str, conflicts: list[Reservation] | None = None) -> None:
        super().__init__(message)
        self.conflicts = list(conflicts or [])


class ValidationError(BookingError, ValueError):
    pass


class RegistrationError(BookingError, ValueError):
    pass


class StatusTransitionError(BookingError, ValueError):
    pass


class ReservationStorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class Venue:
    venue_id: str
    name: str

    def to_dict(self) -> dict[str, str]:
        return {"venue_id": self.venue_id, "name": self.name}

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Venue":
        return Venue(venue_id=str(data["venue_id"]), name=str(data["name"]))


@dataclass(frozen=True)
class Attendee:
    email: str
    name: str
    department: str = ""
    section: str = ""
    year: str = ""
    registered_at: datetime | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "email": self.email,
            "name": self.name,
            "department": self.department,
            "section": self.section,
            "year": self.year,
            "registered_at": self.registered_at.isoformat(timespec="seconds") if self.registered_at else None,
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "Attendee":
        registered_at = data.get("registered_at")
        return Attendee(
            email=str(data["email"]),
            name=str(data.get("name", "")),
            department=str(data.get("department", "")),
            section=str(data.get("section", "")),
            year=str(data.get("year", "")),
            registered_at=datetime.fromisoformat(str(registered_at)) if registered_at else None,
        )


@dataclass(frozen=True)
class EventRecord:
    event_id: str
    title: str
    venue_id: str
    date: date
    time_range: TimeRange
    status: str
    organizer_email: str
    created_at: datetime
    updated_at: datetime
    description: str = ""
    department: str = ""
    coordinators: str = ""
    max_attendees: int = 50
    attendees: tuple[Attendee, ...] = field(default_factory=tuple)

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, datetime.min.time()) + timedelta(minutes=self.time_range.start)

    @property
    def ends_at(self) -> datetime:
        return datetime.combine(self.date, datetime.min.time()) + timedelta(minutes=self.time_range.end)

    @property
    def is_full(self) -> bool:
        return len(self.attendees) >= self.max_attendees

    def as_reservation(self) -> Reservation:
        return Reservation(
            reservation_id=self.event_id,
            venue_id=self.venue_id,
            date=self.date,
            time_range=self.time_range,
            status=self.status,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "title": self.title,
            "description": self.description,
            "venue_id": self.venue_id,
            "date": format_date(self.date),
            "start_time": format_time(self.time_range.start),
            "end_time": format_time(self.time_range.end),
            "status": self.status,
            "organizer_email": self.organizer_email,
            "department": self.department,
            "coordinators": self.coordinators,
            "max_attendees": self.max_attendees,
            "attendees": [attendee.to_dict() for attendee in self.attendees],
            "created_at": self.created_at.isoformat(timespec="seconds"),
            "updated_at": self.updated_at.isoformat(timespec="seconds"),
        }

    @staticmethod
    def from_dict(data: dict[str, Any]) -> "EventRecord":
        return EventRecord(
            event_id=str(data["event_id"]),
            title=str(data.get("title", "")),
            description=str(data.get("description") or ""),
            venue_id=str(data["venue_id"]),
            date=parse_date(str(data["date"])),
            time_range=TimeRange(_read_time(data["start_time"]), _read_time(data["end_time"])),
            status=str(data.get("status", STATUS_PENDING)),
            organizer_email=str(data.get("organizer_email", "")),
            department=str(data.get("department") or ""),
            coordinators=str(data.get("coordinators") or ""),
            max_attendees=int(data.get("max_attendees", DEFAULT_MAX_ATTENDEES)),
            attendees=tuple(Attendee.from_dict(row) for row in data.get("attendees") or [] if isinstance(row, dict)),
            created_at=datetime.fromisoformat(str(data["created_at"])),
            updated_at=datetime.fromisoformat(str(data["updated_at"])),
        )


@dataclass(frozen=True)
class SaveResult:
    ok: bool
    event: EventRecord | None = None
    error: ConflictError | None = None


ChangeListener = Callable[[str, dict[str, Any]], None]

DEFAULT_MAX_ATTENDEES = 50
INITIAL_VENUES = [
    Venue("v1", "Main Auditorium"),
    Venue("v2", "Mini Auditorium"),
    Venue("v3", "Seminar Hall 1"),
    Venue("v4", "Open Air Theatre"),
    Venue("v5", "Computer Lab 1"),
]
CONFLICT_MESSAGE = "Venue is already booked for this date and time range."


class EventYamlRepository:
    def __init__(self, base_dir: str | Path = "data") -> None:
        self.base_dir = Path(base_dir)
        self.events_file = self.base_dir / "events.yaml"
        self.venues_file = self.base_dir / "venues.yaml"
        self.log_file = self.base_dir / "booking_events.yaml"
        self._lock = RLock()
        self._listeners: list[ChangeListener] = []
        self._ensure_files()

    def _ensure_files(self) -> None:
        self.base_dir.mkdir(parents=True, exist_ok=True)
        for path in (self.events_file, self.log_file):
            if not path.exists():
                path.write_text("[]\n", encoding="utf-8")
        if not self.venues_file.exists():
            self._write_yaml_list(self.venues_file, [venue.to_dict() for venue in INITIAL_VENUES])

    def _read_yaml_list(self, path: Path) -> list[dict[str, Any]]:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            path.write_text("[]\n", encoding="utf-8")
            return []
        except (OSError, UnicodeDecodeError, yaml.YAMLError) as error:
            self._recover_corrupted_yaml(path, error)
            return []

        if payload is None:
            return []
        if not isinstance(payload, list):
            self._recover_corrupted_yaml(path, ValueError("top-level YAML is not a list"))
            return []

        sanitized: list[dict[str, Any]] = []
        for index, row in enumerate(payload):
            if isinstance(row, dict):
                sanitized.append(row)
            elif path != self.log_file:
                self._log_event(
                    "YAML_ROW_SKIPPED",
                    {
                        "file": str(path.name),
                        "index": index,
                        "reason": "row is not a mapping",
                    },
                )
        return sanitized

    def _write_yaml_list(self, path: Path, rows: list[dict[str, Any]]) -> None:
        temp_path = path.with_suffix(path.suffix + ".tmp")
        try:
            temp_path.write_text(yaml.safe_dump(rows, allow_unicode=True, sort_keys=False), encoding="utf-8")
            temp_path.replace(path)
        except OSError as error:
            raise ReservationStorageError(f"Failed to write YAML file: {path}") from error
        finally:
            if temp_path.exists():
                temp_path.unlink(missing_ok=True)

    def _recover_corrupted_yaml(self, path: Path, error: Exception) -> None:
        timestamp = datetime.now().strftime("%Y%m%d%H%M%S")
        backup_path = path.with_name(f"{path.stem}.corrupt.{timestamp}{path.suffix}")
        try:
            if path.exists():
                shutil.copy2(path, backup_path)
        except OSError:
            backup_path = Path("")

        path.write_text("[]\n", encoding="utf-8")
        if path != self.log_file:
            self._log_event(
                "YAML_RECOVERED",
                {
                    "file": str(path.name),
                    "backup": str(backup_path.name),
                    "reason": str(error),
                },
            )

    def _log_event(self, event_type: str, payload: dict[str, Any], event_time: datetime | None = None) -> None:
        timestamp = (event_time or datetime.now()).isoformat(timespec="seconds")
        entries = self._read_yaml_list(self.log_file)
        entries.append({"event_time": timestamp, "event_type": event_type, "payload": payload})
        self._write_yaml_list(self.log_file, entries)

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register ``listener`` to be called after every successful mutation.

        Returns a callable that removes the listener again.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish_change(self, event_type: str, payload: dict[str, Any], event_time: datetime) -> None:
        self._log_event(event_type, payload, event_time)
        for listener in list(self._listeners):
            try:
                listener(event_type, payload)
            except Exception as error:
                # The mutation is already committed at this point.
                self._log_event(
                    "LISTENER_FAILED",
                    {
                        "event_type": event_type,
                        "listener": getattr(listener, "__qualname__", repr(listener)),
                        "reason": str(error),
                    },
                    event_time,
                )

    # venues

    def get_venues(self) -> list[Venue]:
        return [Venue.from_dict(row) for row in self._read_yaml_list(self.venues_file)]

    def get_venue(self, venue_id: str) -> Venue | None:
        for venue in self.get_venues():
            if venue.venue_id == venue_id:
                return venue
        return None

    def add_venue(self, name: str, venue_id: str | None = None, now: datetime | None = None) -> Venue:
        effective_now = now or datetime.now()
        venue = Venue(venue_id=venue_id or f"v{uuid4().hex[:8]}", name=_normalize_name(name, "name"))
        with self._lock:
            venues = self.get_venues()
            if any(existing.venue_id == venue.venue_id for existing in venues):
                raise ValidationError(f"venue_id already exists: {venue.venue_id}")
            venues.append(venue)
            self._write_yaml_list(self.venues_file, [row.to_dict() for row in venues])
            self._publish_change("VENUE_CREATED", venue.to_dict(), effective_now)
        return venue

    def rename_venue(self, venue_id: str, name: str, now: datetime | None = None) -> Venue:
        effective_now = now or datetime.now()
        new_name = _normalize_name(name, "name")
        with self._lock:
            venues = self.get_venues()
            for index, venue in enumerate(venues):
                if venue.venue_id == venue_id:
                    renamed = replace(venue, name=new_name)
                    venues[index] = renamed
                    break
            else:
                raise ValidationError(f"venue_id not found: {venue_id}")

            self._write_yaml_list(self.venues_file, [row.to_dict() for row in venues])
            self._publish_change("VENUE_RENAMED", renamed.to_dict(), effective_now)
        return renamed

    def delete_venue(self, venue_id: str, now: datetime | None = None) -> Venue:
        effective_now = now or datetime.now()
        with self._lock:
            venues = self.get_venues()
            removed = next((venue for venue in venues if venue.venue_id == venue_id), None)
            if removed is None:
                raise ValidationError(f"venue_id not found: {venue_id}")

            self._write_yaml_list(self.venues_file, [row.to_dict() for row in venues if row.venue_id != venue_id])
            self._publish_change("VENUE_DELETED", removed.to_dict(), effective_now)
        return removed

    # events

    def get_events(self) -> list[EventRecord]:
        return [EventRecord.from_dict(row) for row in self._read_yaml_list(self.events_file)]

    def get_event(self, event_id: str) -> EventRecord | None:
        for record in self.get_events():
            if record.event_id == event_id:
                return record
        return None

    def list_reservations(self, venue_id: str | None = None, target_date: date | None = None) -> list[Reservation]:
        """Return a snapshot of reservations, optionally narrowed to a venue and/or date."""
        return [
            record.as_reservation()
            for record in self.get_events()
            if (venue_id is None or record.venue_id == venue_id)
            and (target_date is None or record.date == target_date)
        ]

    def save_event(self, record: EventRecord, now: datetime | None = None) -> SaveResult:
        """Insert or replace ``record`` unless it overlaps another active booking.

        A conflict leaves the store untouched and is returned in the result.
        """
        effective_now = now or datetime.now()
        with self._lock:
            existing = self.get_events()
            conflicts = find_conflicts(record.as_reservation(), [row.as_reservation() for row in existing])
            if conflicts:
                self._log_event(
                    "EVENT_CONFLICT_REJECTED",
                    {
                        "event_id": record.event_id,
                        "venue_id": record.venue_id,
                        "date": format_date(record.date),
                        "time_range": str(record.time_range),
                        "conflicts_with": [conflict.reservation_id for conflict in conflicts],
                    },
                    effective_now,
                )
                return SaveResult(ok=False, error=ConflictError(CONFLICT_MESSAGE, conflicts))

            rows = [row.to_dict() for row in existing]
            found_index = next((index for index, row in enumerate(existing) if row.event_id == record.event_id), -1)
            if found_index >= 0:
                rows[found_index] = record.to_dict()
                event_type = "EVENT_UPDATED"
            else:
                rows.append(record.to_dict())
                event_type = "EVENT_CREATED"
            self._write_yaml_list(self.events_file, rows)

            self._publish_change(
                event_type,
                {
                    "event_id": record.event_id,
                    "venue_id": record.venue_id,
                    "date": format_date(record.date),
                    "time_range": str(record.time_range),
                    "status": record.status,
                },
                effective_now,
            )
        return SaveResult(ok=True, event=record)

    def create_event(
        self,
        *,
        title: str,
        venue_id: str,
        event_date: date,
        time_range: TimeRange,
        organizer_email: str,
        is_admin: bool = False,
        description: str = "",
        department: str = "",
        coordinators: str = "",
        max_attendees: int = DEFAULT_MAX_ATTENDEES,
        now: datetime | None = None,
    ) -> SaveResult:
        effective_now = now or datetime.now()
        if self.get_venue(venue_id) is None:
            raise ValidationError(f"Unknown venue: {venue_id}")
        validate_booking_request(event_date, time_range, effective_now)

        record = EventRecord(
            event_id=str(uuid4()),
            title=_normalize_name(title, "title"),
            description=description,
            venue_id=venue_id,
            date=event_date,
            time_range=time_range,
            status=STATUS_APPROVED if is_admin else STATUS_PENDING,
            organizer_email=_normalize_name(organizer_email, "organizer_email"),
            department=department,
            coordinators=coordinators,
            max_attendees=_validate_capacity(max_attendees),
            created_at=effective_now,
            updated_at=effective_now,
        )
        return self.save_event(record, now=effective_now)

    def update_event(
        self,
        event_id: str,
        *,
        title: str | None = None,
        venue_id: str | None = None,
        event_date: date | None = None,
        time_range: TimeRange | None = None,
        description: str | None = None,
        department: str | None = None,
        coordinators: str | None = None,
        max_attendees: int | None = None,
        now: datetime | None = None,
    ) -> SaveResult:
        effective_now = now or datetime.now()
        with self._lock:
            current = self.get_event(event_id)
            if current is None:
                raise ValidationError("event_id not found")

            new_venue_id = venue_id if venue_id is not None else current.venue_id
            if new_venue_id != current.venue_id and self.get_venue(new_venue_id) is None:
                raise ValidationError(f"Unknown venue: {new_venue_id}")

            new_date = event_date or current.date
            new_range = time_range or current.time_range
            validate_booking_request(new_date, new_range, effective_now)

            updated = replace(
                current,
                title=_normalize_name(title, "title") if title is not None else current.title,
                venue_id=new_venue_id,
                date=new_date,
                time_range=new_range,
                description=description if description is not None else current.description,
                department=department if department is not None else current.department,
                coordinators=coordinators if coordinators is not None else current.coordinators,
                max_attendees=_validate_capacity(max_attendees) if max_attendees is not None else current.max_attendees,
                updated_at=effective_now,
            )
            return self.save_event(updated, now=effective_now)

    def delete_event(self, event_id: str, now: datetime | None = None) -> EventRecord:
        effective_now = now or datetime.now()
        with self._lock:
            existing = self.get_events()
            removed = next((record for record in existing if record.event_id == event_id), None)
            if removed is None:
                raise ValidationError("event_id not found")

            self._write_yaml_list(self.events_file, [row.to_dict() for row in existing if row.event_id != event_id])
            self._publish_change(
                "EVENT_DELETED",
                {"event_id": event_id, "venue_id": removed.venue_id, "date": format_date(removed.date)},
                effective_now,
            )
        return removed

    def set_status(self, event_id: str, status: str, now: datetime | None = None) -> EventRecord:
        """Approve or reject a pending event. Decisions are final."""
        effective_now = now or datetime.now()
        if status not in STATUSES:
            raise ValidationError(f"Unknown status: {status!r}")
        if status not in (STATUS_APPROVED, STATUS_REJECTED):
            raise StatusTransitionError(f"status must be {STATUS_APPROVED} or {STATUS_REJECTED}")

        with self._lock:
            existing = self.get_events()
            index = next((i for i, record in enumerate(existing) if record.event_id == event_id), -1)
            if index < 0:
                raise ValidationError("event_id not found")

            current = existing[index]
            if current.status != STATUS_PENDING:
                raise StatusTransitionError(f"Event is already {current.status}")

            updated = replace(current, status=status, updated_at=effective_now)
            existing[index] = updated
            self._write_yaml_list(self.events_file, [row.to_dict() for row in existing])
            self._publish_change(
                "EVENT_STATUS_CHANGED",
                {"event_id": event_id, "from": current.status, "to": status},
                effective_now,
            )
        return updated

    def register_attendee(self, event_id: str, attendee: Attendee, now: datetime | None = None) -> EventRecord:
        effective_now = now or datetime.now()
        with self._lock:
            existing = self.get_events()
            index = next((i for i, record in enumerate(existing) if record.event_id == event_id), -1)
            if index < 0:
                raise RegistrationError("Event not found")

            current = existing[index]
            if current.status != STATUS_APPROVED:
                raise RegistrationError("Event is not open for registration")
            if current.ends_at < effective_now:
                raise RegistrationError("Event has already ended")
            if current.is_full:
                raise RegistrationError("Event is full")
            if any(row.email == attendee.email for row in current.attendees):
                raise RegistrationError("Already registered")

            registered = replace(attendee, registered_at=attendee.registered_at or effective_now)
            updated = replace(current, attendees=current.attendees + (registered,), updated_at=effective_now)
            existing[index] = updated
            self._write_yaml_list(self.events_file, [row.to_dict() for row in existing])
            self._publish_change(
                "ATTENDEE_REGISTERED",
                {"event_id": event_id, "email": attendee.email, "count": len(updated.attendees)},
                effective_now,
            )
        return updated

    def split_by_time(self, now: datetime | None = None) -> tuple[list[EventRecord], list[EventRecord]]:
        """Partition events into (upcoming, past) by their end time."""
        effective_now = now or datetime.now()
        upcoming: list[EventRecord] = []
        past: list[EventRecord] = []
        for record in sorted(self.get_events(), key=lambda row: (row.date, row.time_range.start)):
            (upcoming if record.ends_at >= effective_now else past).append(record)
        return upcoming, past

    def approved_events_by_date(self, year: int, month: int) -> dict[date, list[EventRecord]]:
        if not 1 <= month <= 12:
            raise ValidationError("month must be between 1 and 12")

        grouped: dict[date, list[EventRecord]] = {}
        for record in self.get_events():
            if record.status != STATUS_APPROVED:
                continue
            if record.date.year == year and record.date.month == month:
                grouped.setdefault(record.date, []).append(record)

        for records in grouped.values():
            records.sort(key=lambda row: row.time_range.start)
        return dict(sorted(grouped.items()))

    def seed_test_data(
        self,
        now: datetime | None = None,
        days: int = 14,
        overwrite: bool = True,
    ) -> list[EventRecord]:
        effective_now = now or datetime.now()
        generated = generate_test_events(effective_now.date(), self.get_venues(), days=days, reference_now=effective_now)

        with self._lock:
            rows = [] if overwrite else self._read_yaml_list(self.events_file)
            rows.extend(record.to_dict() for record in generated)
            self._write_yaml_list(self.events_file, rows)
            self._publish_change(
                "TEST_DATA_GENERATED",
                {"count": len(generated), "days": days, "overwrite": overwrite},
                effective_now,
            )
        return generated


def validate_booking_request(event_date: date, time_range: TimeRange, now: datetime) -> None:
    """Reject bookings whose range is empty or inverted, or which start in the past."""
    if not (0 <= time_range.start < 24 * 60 and 0 < time_range.end <= 24 * 60):
        raise ValidationError("Event times must fall within a single day.")
    if time_range.start >= time_range.end:
        raise ValidationError("End time must be after start time.")

    starts_at = datetime.combine(event_date, datetime.min.time()) + timedelta(minutes=time_range.start)
    if starts_at < now:
        raise ValidationError("Event cannot be scheduled in the past.")


def find_free_slots(
    repository: EventYamlRepository,
    venue_id: str,
    target_date: date,
    min_slot_minutes: int = MIN_SLOT_MINUTES,
) -> list[TimeRange]:
    pool = repository.list_reservations(venue_id=venue_id, target_date=target_date)
    return free_slots(venue_id, target_date, pool, min_slot_minutes=min_slot_minutes)


def find_free_dates(
    repository: EventYamlRepository,
    venue_id: str,
    time_range: TimeRange,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
    today: date | None = None,
) -> list[date]:
    pool = repository.list_reservations(venue_id=venue_id)
    return free_dates(venue_id, time_range, pool, horizon_days=horizon_days, today=today)


def book_from_text(
    text: str,
    repository: EventYamlRepository,
    organizer_email: str,
    title: str | None = None,
    is_admin: bool = False,
    now: datetime | None = None,
) -> SaveResult:
    from .natural_language import parse_booking_request, resolve_venue

    effective_now = now or datetime.now()
    parsed = parse_booking_request(text, reference_datetime=effective_now)
    if not parsed.venue:
        raise ValidationError("Could not determine venue from request text.")

    venue = resolve_venue(parsed.venue, repository.get_venues())
    if venue is None:
        raise ValidationError(f"Unknown venue: {parsed.venue}")

    return repository.create_event(
        title=title or f"Booking for {venue.name}",
        venue_id=venue.venue_id,
        event_date=parsed.date,
        time_range=parsed.time_range,
        organizer_email=organizer_email,
        is_admin=is_admin,
        description=text,
        now=effective_now,
    )


def generate_test_events(
    start_date: date,
    venues: list[Venue],
    days: int = 14,
    reference_now: datetime | None = None,
) -> list[EventRecord]:
    if days <= 0:
        raise ValueError("days must be greater than zero")
    if not venues:
        raise ValueError("venues must not be empty")

    rng = random.Random(f"events:{start_date.isoformat()}:{days}")
    now = reference_now or datetime.now()
    records: list[EventRecord] = []

    for offset in range(1, days + 1):
        day = start_date + timedelta(days=offset)
        for venue in venues:
            cursor = 8 * 60
            for _ in range(rng.randint(0, 3)):
                start = cursor + rng.choice([0, 30, 60, 90])
                end = start + rng.choice([30, 60, 90, 120])
                if end > 20 * 60:
                    break
                cursor = end

                status = rng.choices(STATUSES, weights=[3, 6, 1])[0]
                records.append(
                    EventRecord(
                        event_id=str(uuid4()),
                        title=f"{venue.name} session {format_time(start)}",
                        venue_id=venue.venue_id,
                        date=day,
                        time_range=TimeRange(start, end),
                        status=status,
                        organizer_email="organizer@example.com",
                        created_at=now,
                        updated_at=now,
                    )
                )

    return records


def _read_time(value: Any) -> int:
    # YAML 1.1 reads an unquoted 10:30 as the base-60 integer 630, which is already minutes.
    if isinstance(value, int):
        return value
    text = str(value)
    if text == "24:00":
        return 24 * 60
    return parse_time(text)


def _validate_capacity(max_attendees: int) -> int:
    if max_attendees <= 0:
        raise ValidationError("max_attendees must be greater than zero")
    return max_attendees


def _normalize_name(value: str | None, label: str) -> str:
    if value is None:
        raise ValidationError(f"{label} must not be None")

    normalized = value.strip()
    if not normalized:
        raise ValidationError(f"{label} must not be empty")
    return normalized
