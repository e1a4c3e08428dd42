from .booking import (
    Reservation,
    TimeRange,
    find_conflicts,
    format_time,
    free_dates,
    free_slots,
    has_conflict,
    has_time_overlap,
    parse_time,
)
from .natural_language import ParsedBookingRequest, can_book_from_text, parse_booking_request
from .yaml_store import (
    Attendee,
    ConflictError,
    EventRecord,
    EventYamlRepository,
    RegistrationError,
    ReservationStorageError,
    SaveResult,
    StatusTransitionError,
    ValidationError,
    Venue,
    book_from_text,
    find_free_dates,
    find_free_slots,
    generate_test_events,
    validate_booking_request,
)

__all__ = [
    "Reservation",
    "TimeRange",
    "find_conflicts",
    "format_time",
    "free_dates",
    "free_slots",
    "has_conflict",
    "has_time_overlap",
    "parse_time",
    "ParsedBookingRequest",
    "can_book_from_text",
    "parse_booking_request",
    "Attendee",
    "ConflictError",
    "EventRecord",
    "EventYamlRepository",
    "RegistrationError",
    "ReservationStorageError",
    "SaveResult",
    "StatusTransitionError",
    "ValidationError",
    "Venue",
    "book_from_text",
    "find_free_dates",
    "find_free_slots",
    "generate_test_events",
    "validate_booking_request",
]
