from __future__ import annotations

from datetime import datetime, timedelta
import traceback

from venue_booking import EventYamlRepository, TimeRange, find_free_dates, find_free_slots


def main() -> int:
    print("[INFO] Venue Booking Quick Check")
    print("[INFO] Generating sample events...")

    repo = EventYamlRepository("data")
    now = datetime.now().replace(second=0, microsecond=0)

    generated = repo.seed_test_data(now=now, days=14, overwrite=True)
    print(f"[OK] Sample events generated: {len(generated)} records")

    venue = repo.get_venues()[0]
    tomorrow = now.date() + timedelta(days=1)
    result = repo.create_event(
        title="Quick check booking",
        venue_id=venue.venue_id,
        event_date=tomorrow,
        time_range=TimeRange(21 * 60, 22 * 60),
        organizer_email="quickcheck@example.com",
        is_admin=True,
        now=now,
    )
    if result.ok:
        print(f"[OK] Booked {venue.name} on {tomorrow.isoformat()} {result.event.time_range}")
    else:
        print(f"[INFO] Booking refused: {result.error}")

    slots = find_free_slots(repo, venue.venue_id, tomorrow)
    print(f"[OK] Free slots for {venue.name} on {tomorrow.isoformat()}: {', '.join(str(slot) for slot in slots) or 'none'}")

    dates = find_free_dates(repo, venue.venue_id, TimeRange(10 * 60, 11 * 60), horizon_days=14, today=now.date())
    print(f"[OK] Free dates for 10:00 - 11:00 in the next 14 days: {len(dates)}")
    print(f"[OK] Events YAML: {repo.events_file.resolve()}")
    print(f"[OK] Event Log YAML: {repo.log_file.resolve()}")

    print("[DONE] Quick check completed successfully.")
    return 0


if __name__ == "__main__":
    try:
        raise SystemExit(main())
    except Exception:
        print("[ERROR] Quick check failed.")
        traceback.print_exc()
        raise SystemExit(1)
