import tempfile
import unittest
from datetime import date, datetime
from pathlib import Path
from unittest import mock

from venue_booking import EventYamlRepository, TimeRange
from venue_booking.yaml_store import ReservationStorageError
from venue_booking.web_app import create_app

NOW = datetime(2024, 5, 31, 9, 0)


class TestWebApp(unittest.TestCase):
    def setUp(self) -> None:
        self._temp_dir = tempfile.TemporaryDirectory()
        self.data_dir = Path(self._temp_dir.name) / "data"
        self.repo = EventYamlRepository(self.data_dir)
        self.app = create_app(self.data_dir, now_provider=lambda: NOW)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self._temp_dir.cleanup()

    def _create(self, start: str, end: str, event_date: str = "2024-06-01", **extra):
        payload = {
            "title": "Hackathon kickoff",
            "venue_id": "v1",
            "date": event_date,
            "start_time": start,
            "end_time": end,
            "organizer_email": "organizer@example.com",
            **extra,
        }
        return self.client.post("/api/events", json=payload)

    def test_venues_are_listed(self) -> None:
        response = self.client.get("/api/venues")

        self.assertEqual(response.status_code, 200)
        names = [venue["name"] for venue in response.get_json()["venues"]]
        self.assertIn("Main Auditorium", names)
        self.assertEqual(response.headers["Access-Control-Allow-Origin"], "*")

    def test_create_then_conflict(self) -> None:
        first = self._create("09:00", "10:30", is_admin=True)
        self.assertEqual(first.status_code, 201)
        self.assertEqual(first.get_json()["event"]["status"], "APPROVED")
        self.assertEqual(first.get_json()["event"]["venue_name"], "Main Auditorium")

        conflict = self._create("10:00", "11:00")
        self.assertEqual(conflict.status_code, 409)
        payload = conflict.get_json()
        self.assertFalse(payload["ok"])
        self.assertEqual(payload["conflicts"], [first.get_json()["event"]["event_id"]])
        self.assertEqual(len(self.repo.get_events()), 1)

    def test_create_validation_errors(self) -> None:
        self.assertEqual(self._create("10:00", "09:00").status_code, 400)
        self.assertEqual(self._create("10:00", "11:00", event_date="2024-05-30").status_code, 400)
        self.assertEqual(self._create("25:00", "26:00").status_code, 400)
        self.assertEqual(self._create("10:00", "11:00", venue_id="missing").status_code, 400)

    def test_update_keeps_status_and_excludes_itself(self) -> None:
        created = self._create("09:00", "10:00").get_json()["event"]

        response = self.client.post(f"/api/events/{created['event_id']}/update", json={"end_time": "10:30"})

        self.assertEqual(response.status_code, 200)
        event = response.get_json()["event"]
        self.assertEqual(event["end_time"], "10:30")
        self.assertEqual(event["status"], "PENDING")

        missing = self.client.post("/api/events/missing/update", json={"end_time": "10:30"})
        self.assertEqual(missing.status_code, 404)

    def test_is_admin_must_be_a_real_boolean(self) -> None:
        created = self._create("09:00", "10:00", is_admin="false")

        self.assertEqual(created.status_code, 201)
        self.assertEqual(created.get_json()["event"]["status"], "PENDING")

    def test_storage_failure_returns_json_500(self) -> None:
        repository = self.app.config["EVENT_REPOSITORY"]
        created = self._create("09:00", "10:00").get_json()["event"]

        with mock.patch.object(repository, "_write_yaml_list", side_effect=ReservationStorageError("disk full")):
            create = self._create("11:00", "12:00")
            update = self.client.post(f"/api/events/{created['event_id']}/update", json={"title": "Renamed"})

        for response in (create, update):
            self.assertEqual(response.status_code, 500)
            self.assertFalse(response.get_json()["ok"])
            self.assertIn("unexpected error", response.get_json()["message"])
        self.assertEqual(len(self.repo.get_events()), 1)

    def test_unknown_status_is_a_bad_request(self) -> None:
        created = self._create("09:00", "10:00").get_json()["event"]

        response = self.client.post(f"/api/events/{created['event_id']}/status", json={"status": "FOO"})

        self.assertEqual(response.status_code, 400)
        self.assertFalse(response.get_json()["ok"])
        self.assertEqual(self.repo.get_event(created["event_id"]).status, "PENDING")

    def test_events_filter_by_organizer_and_attendee(self) -> None:
        mine = self._create("09:00", "10:00", is_admin=True).get_json()["event"]
        self._create("11:00", "12:00", organizer_email="someone@example.com")
        self.client.post(f"/api/events/{mine['event_id']}/register", json={"email": "a@example.com", "name": "Asha"})

        by_organizer = self.client.get("/api/events?organizer_email=Organizer@Example.com").get_json()["events"]
        by_attendee = self.client.get("/api/events?attendee_email=a@example.com").get_json()["events"]
        nobody = self.client.get("/api/events?attendee_email=z@example.com").get_json()["events"]

        self.assertEqual([event["event_id"] for event in by_organizer], [mine["event_id"]])
        self.assertEqual([event["event_id"] for event in by_attendee], [mine["event_id"]])
        self.assertEqual(nobody, [])

    def test_status_and_registration_flow(self) -> None:
        created = self._create("09:00", "10:00", max_attendees=1).get_json()["event"]
        event_id = created["event_id"]

        early = self.client.post(f"/api/events/{event_id}/register", json={"email": "a@example.com", "name": "Asha"})
        self.assertEqual(early.status_code, 400)

        approved = self.client.post(f"/api/events/{event_id}/status", json={"status": "approved"})
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.get_json()["event"]["status"], "APPROVED")

        again = self.client.post(f"/api/events/{event_id}/status", json={"status": "REJECTED"})
        self.assertEqual(again.status_code, 409)

        registered = self.client.post(f"/api/events/{event_id}/register", json={"email": "a@example.com", "name": "Asha"})
        self.assertEqual(registered.status_code, 200)
        self.assertTrue(registered.get_json()["event"]["is_full"])

        full = self.client.post(f"/api/events/{event_id}/register", json={"email": "b@example.com", "name": "Ben"})
        self.assertEqual(full.status_code, 400)

    def test_free_slots_endpoint(self) -> None:
        self._create("09:00", "10:30", is_admin=True)

        response = self.client.get("/api/availability/slots?venue_id=v1&date=2024-06-01")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["slots"], ["00:00 - 09:00", "10:30 - 24:00"])

    def test_free_slots_endpoint_reports_empty_result(self) -> None:
        self.repo.create_event(
            title="All day",
            venue_id="v2",
            event_date=date(2024, 6, 1),
            time_range=TimeRange(0, 24 * 60),
            organizer_email="organizer@example.com",
            now=NOW,
        )

        response = self.client.get("/api/availability/slots?venue_id=v2&date=2024-06-01")

        payload = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertTrue(payload["ok"])
        self.assertEqual(payload["slots"], [])
        self.assertIn("No free slots", payload["message"])

    def test_free_slots_endpoint_errors(self) -> None:
        self.assertEqual(self.client.get("/api/availability/slots?venue_id=nope&date=2024-06-01").status_code, 404)
        self.assertEqual(self.client.get("/api/availability/slots?venue_id=v1&date=06/01/2024").status_code, 400)

    def test_free_dates_endpoint(self) -> None:
        self._create("14:30", "14:45", is_admin=True)

        response = self.client.get("/api/availability/dates?venue_id=v1&start=14:00&end=15:00")

        payload = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(payload["dates"]), 364)
        self.assertNotIn("2024-06-01", payload["dates"])
        self.assertNotIn("2024-05-31", payload["dates"])
        self.assertEqual(payload["dates"][0], "2024-06-02")

    def test_free_dates_endpoint_validation(self) -> None:
        self.assertEqual(self.client.get("/api/availability/dates?venue_id=v1&start=15:00&end=14:00").status_code, 400)
        self.assertEqual(
            self.client.get("/api/availability/dates?venue_id=v1&start=14:00&end=15:00&horizon_days=0").status_code,
            400,
        )
        short = self.client.get("/api/availability/dates?venue_id=v1&start=14:00&end=15:00&horizon_days=3")
        self.assertEqual(short.get_json()["dates"], ["2024-06-01", "2024-06-02", "2024-06-03"])

    def test_parse_endpoint_suggests_free_slots_on_conflict(self) -> None:
        self._create("09:00", "10:30", is_admin=True)

        free = self.client.post("/api/events/parse", json={"text": "Main Auditorium 2024-06-01 11:00~12:00"})
        self.assertTrue(free.get_json()["available"])
        self.assertEqual(free.get_json()["venue_id"], "v1")

        busy = self.client.post("/api/events/parse", json={"text": "Main Auditorium 2024-06-01 10:00~11:00"})
        payload = busy.get_json()
        self.assertFalse(payload["available"])
        self.assertEqual(payload["free_slots"], ["00:00 - 09:00", "10:30 - 24:00"])

        unknown = self.client.post("/api/events/parse", json={"text": "Gym 2024-06-01 10:00~11:00"})
        self.assertEqual(unknown.status_code, 400)

    def test_calendar_and_split(self) -> None:
        self._create("09:00", "10:00", is_admin=True)
        self._create("11:00", "12:00")

        calendar = self.client.get("/api/calendar?year=2024&month=6").get_json()
        self.assertEqual(list(calendar["days"]), ["2024-06-01"])
        self.assertEqual(len(calendar["days"]["2024-06-01"]), 1)

        split = self.client.get("/api/events/split").get_json()
        self.assertEqual(len(split["upcoming"]), 2)
        self.assertEqual(split["past"], [])

    def test_venue_management_endpoints(self) -> None:
        created = self.client.post("/api/venues", json={"name": "Seminar Hall 2"})
        self.assertEqual(created.status_code, 201)
        venue_id = created.get_json()["venue"]["venue_id"]

        renamed = self.client.post(f"/api/venues/{venue_id}/rename", json={"name": "Board Room"})
        self.assertEqual(renamed.get_json()["venue"]["name"], "Board Room")

        deleted = self.client.post(f"/api/venues/{venue_id}/delete")
        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(self.client.post(f"/api/venues/{venue_id}/delete").status_code, 404)


if __name__ == "__main__":
    unittest.main()
