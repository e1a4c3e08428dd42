from __future__ import annotations

import os
from datetime import date
from pathlib import Path

from mcp.server.fastmcp import FastMCP

from venue_booking import EventYamlRepository, TimeRange, find_free_dates, find_free_slots, parse_time
from venue_booking.booking import DEFAULT_HORIZON_DAYS, parse_date

mcp = FastMCP(
    "Venue Booking MCP Server",
    instructions="Expose venues, bookings and availability queries from the venue_booking project.",
    json_response=True,
)

DATA_DIR = Path(os.environ.get("VENUE_BOOKING_DATA_DIR", Path(__file__).parent / "data"))
REPOSITORY = EventYamlRepository(DATA_DIR)


@mcp.resource("booking://venues")
async def list_venues() -> list[dict[str, str]]:
    """List bookable venues."""
    return [venue.to_dict() for venue in REPOSITORY.get_venues()]


@mcp.tool()
def list_bookings(venue_id: str | None = None, date_text: str | None = None) -> list[dict]:
    """Return bookings, optionally filtered by venue id and YYYY-MM-DD date."""
    target_date = parse_date(date_text) if date_text else None
    return [
        record.to_dict()
        for record in REPOSITORY.get_events()
        if (venue_id is None or record.venue_id == venue_id) and (target_date is None or record.date == target_date)
    ]


@mcp.tool()
def free_time_slots(venue_id: str, date_text: str) -> list[str]:
    """Return the free time slots (HH:MM - HH:MM) of a venue on a date."""
    return [str(slot) for slot in find_free_slots(REPOSITORY, venue_id, parse_date(date_text))]


@mcp.tool()
def free_booking_dates(venue_id: str, start_time: str, end_time: str, horizon_days: int = DEFAULT_HORIZON_DAYS) -> list[str]:
    """Return the upcoming dates on which the venue is free for the given time range."""
    time_range = TimeRange(parse_time(start_time), parse_time(end_time))
    if time_range.start >= time_range.end:
        raise ValueError("end_time must be after start_time")
    dates = find_free_dates(REPOSITORY, venue_id, time_range, horizon_days=horizon_days, today=date.today())
    return [value.isoformat() for value in dates]


def main() -> None:
    mcp.run()


if __name__ == "__main__":
    main()
