import unittest
from datetime import date, datetime

from venue_booking import Reservation, TimeRange, can_book_from_text, parse_booking_request
from venue_booking.booking import STATUS_APPROVED
from venue_booking.natural_language import resolve_venue
from venue_booking.yaml_store import INITIAL_VENUES


class TestBookingRequestParsing(unittest.TestCase):
    def test_parse_with_tilde_format(self) -> None:
        parsed = parse_booking_request("Main Auditorium 2024-06-01 10:00~11:00")

        self.assertEqual(parsed.venue, "Main Auditorium")
        self.assertEqual(parsed.date, date(2024, 6, 1))
        self.assertEqual(parsed.time_range, TimeRange(600, 660))

    def test_parse_with_english_connectors(self) -> None:
        parsed = parse_booking_request("Book Seminar Hall 1 on 2024/06/01 from 14:30 to 15:30 please")

        self.assertEqual(parsed.venue, "Seminar Hall 1")
        self.assertEqual(parsed.time_range, TimeRange(870, 930))

    def test_parse_relative_request(self) -> None:
        parsed = parse_booking_request(
            "book Open Air Theatre tomorrow at 3pm for 1 hour 30 minutes",
            reference_datetime=datetime(2026, 2, 24, 9, 0),
        )

        self.assertEqual(parsed.venue, "Open Air Theatre")
        self.assertEqual(parsed.date, date(2026, 2, 25))
        self.assertEqual(parsed.time_range, TimeRange(900, 990))

    def test_parse_relative_minutes_only(self) -> None:
        parsed = parse_booking_request("Computer Lab 1 today at 12am for 45 minutes", reference_datetime=datetime(2026, 2, 24))

        self.assertEqual(parsed.date, date(2026, 2, 24))
        self.assertEqual(parsed.time_range, TimeRange(0, 45))

    def test_parse_rejects_past_midnight(self) -> None:
        with self.assertRaises(ValueError):
            parse_booking_request("Main Auditorium today at 11pm for 2 hours", reference_datetime=datetime(2026, 2, 24))

    def test_parse_raises_when_missing_date(self) -> None:
        with self.assertRaises(ValueError):
            parse_booking_request("Main Auditorium 10:00~11:00")

    def test_parse_raises_when_end_not_after_start(self) -> None:
        with self.assertRaises(ValueError):
            parse_booking_request("Main Auditorium 2024-06-01 11:00~11:00")

    def test_resolve_venue_ignores_case_and_accepts_ids(self) -> None:
        self.assertEqual(resolve_venue("main auditorium", INITIAL_VENUES).venue_id, "v1")
        self.assertEqual(resolve_venue("V3", INITIAL_VENUES).name, "Seminar Hall 1")
        self.assertIsNone(resolve_venue("Gym", INITIAL_VENUES))


class TestBookingFromText(unittest.TestCase):
    def setUp(self) -> None:
        self.existing = [Reservation("a", "v1", date(2024, 6, 1), TimeRange(600, 660), STATUS_APPROVED)]

    def test_can_book_when_boundary_touching(self) -> None:
        self.assertTrue(can_book_from_text("Main Auditorium 2024-06-01 11:00~12:00", INITIAL_VENUES, self.existing))

    def test_cannot_book_when_overlapping(self) -> None:
        self.assertFalse(can_book_from_text("Main Auditorium 2024-06-01 10:30~11:30", INITIAL_VENUES, self.existing))

    def test_unknown_venue_raises(self) -> None:
        with self.assertRaises(ValueError):
            can_book_from_text("Gym 2024-06-01 10:30~11:30", INITIAL_VENUES, self.existing)


if __name__ == "__main__":
    unittest.main()
