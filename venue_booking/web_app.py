from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Callable

from flask import Flask, jsonify, request

from .booking import (
    DEFAULT_HORIZON_DAYS,
    MIN_SLOT_MINUTES,
    Reservation,
    TimeRange,
    find_conflicts,
    format_time,
    free_slots,
    parse_date,
    parse_time,
)
from .natural_language import parse_booking_request, resolve_venue
from .yaml_store import (
    DEFAULT_MAX_ATTENDEES,
    Attendee,
    EventRecord,
    EventYamlRepository,
    RegistrationError,
    SaveResult,
    StatusTransitionError,
    ValidationError,
    find_free_dates,
    find_free_slots,
)

NO_SLOTS_MESSAGE = "No free slots available (24 hrs)"
SAVE_FAILED_MESSAGE = "An unexpected error occurred while saving the event."


def create_app(
    data_dir: str | Path = "data",
    now_provider: Callable[[], datetime] | None = None,
    min_slot_minutes: int = MIN_SLOT_MINUTES,
    horizon_days: int = DEFAULT_HORIZON_DAYS,
) -> Flask:
    app = Flask(__name__)
    repository = EventYamlRepository(data_dir)
    clock: Callable[[], datetime] = now_provider or datetime.now
    app.config["EVENT_REPOSITORY"] = repository

    def _serialize_event(record: EventRecord) -> dict[str, Any]:
        venue = repository.get_venue(record.venue_id)
        return {
            **record.to_dict(),
            "venue_name": venue.name if venue else None,
            "attendee_count": len(record.attendees),
            "is_full": record.is_full,
        }

    def _save_response(result: SaveResult, success_status: int = 200) -> Any:
        if not result.ok:
            conflicts = result.error.conflicts if result.error else []
            return (
                jsonify(
                    {
                        "ok": False,
                        "message": str(result.error),
                        "conflicts": [conflict.reservation_id for conflict in conflicts],
                    }
                ),
                409,
            )
        return jsonify({"ok": True, "event": _serialize_event(result.event)}), success_status

    @app.after_request
    def add_cors_headers(response: Any) -> Any:
        response.headers["Access-Control-Allow-Origin"] = "*"
        response.headers["Access-Control-Allow-Methods"] = "GET,POST,OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = "Content-Type"
        return response

    @app.get("/api/venues")
    def list_venues() -> Any:
        return jsonify({"ok": True, "venues": [venue.to_dict() for venue in repository.get_venues()]})

    @app.post("/api/venues")
    def add_venue() -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            venue = repository.add_venue(str(payload.get("name", "")), now=clock())
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400
        return jsonify({"ok": True, "venue": venue.to_dict()}), 201

    @app.post("/api/venues/<venue_id>/rename")
    def rename_venue(venue_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        if repository.get_venue(venue_id) is None:
            return jsonify({"ok": False, "message": "Venue not found"}), 404
        try:
            venue = repository.rename_venue(venue_id, str(payload.get("name", "")), now=clock())
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400
        return jsonify({"ok": True, "venue": venue.to_dict()})

    @app.post("/api/venues/<venue_id>/delete")
    def delete_venue(venue_id: str) -> Any:
        if repository.get_venue(venue_id) is None:
            return jsonify({"ok": False, "message": "Venue not found"}), 404
        venue = repository.delete_venue(venue_id, now=clock())
        return jsonify({"ok": True, "venue": venue.to_dict()})

    @app.get("/api/events")
    def list_events() -> Any:
        venue_id = request.args.get("venue_id")
        status = request.args.get("status")
        organizer_email = request.args.get("organizer_email")
        attendee_email = request.args.get("attendee_email")
        try:
            target_date = parse_date(request.args["date"]) if request.args.get("date") else None
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400

        records = [
            record
            for record in repository.get_events()
            if (venue_id is None or record.venue_id == venue_id)
            and (target_date is None or record.date == target_date)
            and (status is None or record.status == status.upper())
            and (organizer_email is None or record.organizer_email.lower() == organizer_email.strip().lower())
            and (attendee_email is None or _has_attendee(record, attendee_email))
        ]
        records.sort(key=lambda record: (record.date, record.time_range.start))
        return jsonify({"ok": True, "events": [_serialize_event(record) for record in records]})

    @app.get("/api/events/split")
    def split_events() -> Any:
        upcoming, past = repository.split_by_time(clock())
        return jsonify(
            {
                "ok": True,
                "upcoming": [_serialize_event(record) for record in upcoming],
                "past": [_serialize_event(record) for record in past],
            }
        )

    @app.post("/api/events")
    def create_event() -> Any:
        payload = request.get_json(silent=True) or {}
        try:
            event_date = parse_date(str(payload.get("date", "")))
            time_range = TimeRange(parse_time(str(payload.get("start_time", ""))), parse_time(str(payload.get("end_time", ""))))
            result = repository.create_event(
                title=str(payload.get("title", "")),
                venue_id=str(payload.get("venue_id", "")),
                event_date=event_date,
                time_range=time_range,
                organizer_email=str(payload.get("organizer_email", "")),
                is_admin=payload.get("is_admin") is True,
                description=str(payload.get("description", "")),
                department=str(payload.get("department", "")),
                coordinators=str(payload.get("coordinators", "")),
                max_attendees=int(payload.get("max_attendees", DEFAULT_MAX_ATTENDEES)),
                now=clock(),
            )
        except (TypeError, ValueError) as error:
            return jsonify({"ok": False, "message": str(error)}), 400
        except Exception:
            return jsonify({"ok": False, "message": SAVE_FAILED_MESSAGE}), 500

        return _save_response(result, success_status=201)

    @app.post("/api/events/<event_id>/update")
    def update_event(event_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        current = repository.get_event(event_id)
        if current is None:
            return jsonify({"ok": False, "message": "Event not found"}), 404

        try:
            event_date = parse_date(str(payload["date"])) if payload.get("date") else None
            start = parse_time(str(payload["start_time"])) if payload.get("start_time") else current.time_range.start
            end = parse_time(str(payload["end_time"])) if payload.get("end_time") else current.time_range.end
            result = repository.update_event(
                event_id,
                title=_optional_text(payload, "title"),
                venue_id=_optional_text(payload, "venue_id"),
                event_date=event_date,
                time_range=TimeRange(start, end),
                description=_optional_text(payload, "description"),
                department=_optional_text(payload, "department"),
                coordinators=_optional_text(payload, "coordinators"),
                max_attendees=int(payload["max_attendees"]) if payload.get("max_attendees") is not None else None,
                now=clock(),
            )
        except (TypeError, ValueError) as error:
            return jsonify({"ok": False, "message": str(error)}), 400
        except Exception:
            return jsonify({"ok": False, "message": SAVE_FAILED_MESSAGE}), 500

        return _save_response(result)

    @app.post("/api/events/<event_id>/delete")
    def delete_event(event_id: str) -> Any:
        if repository.get_event(event_id) is None:
            return jsonify({"ok": False, "message": "Event not found"}), 404
        deleted = repository.delete_event(event_id, now=clock())
        return jsonify({"ok": True, "event": _serialize_event(deleted)})

    @app.post("/api/events/<event_id>/status")
    def change_status(event_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        if repository.get_event(event_id) is None:
            return jsonify({"ok": False, "message": "Event not found"}), 404

        status = str(payload.get("status", "")).strip().upper()
        try:
            updated = repository.set_status(event_id, status, now=clock())
        except ValidationError as error:
            return jsonify({"ok": False, "message": str(error)}), 400
        except StatusTransitionError as error:
            return jsonify({"ok": False, "message": str(error)}), 409
        return jsonify({"ok": True, "event": _serialize_event(updated)})

    @app.post("/api/events/<event_id>/register")
    def register(event_id: str) -> Any:
        payload = request.get_json(silent=True) or {}
        email = str(payload.get("email", "")).strip()
        name = str(payload.get("name", "")).strip()
        if not email or not name:
            return jsonify({"ok": False, "message": "email and name are required"}), 400

        attendee = Attendee(
            email=email,
            name=name,
            department=str(payload.get("department", "")),
            section=str(payload.get("section", "")),
            year=str(payload.get("year", "")),
        )
        try:
            updated = repository.register_attendee(event_id, attendee, now=clock())
        except RegistrationError as error:
            status_code = 404 if str(error) == "Event not found" else 400
            return jsonify({"ok": False, "message": str(error)}), status_code
        return jsonify({"ok": True, "event": _serialize_event(updated)})

    @app.post("/api/events/parse")
    def parse_request_text() -> Any:
        payload = request.get_json(silent=True) or {}
        text = str(payload.get("text", "")).strip()
        if not text:
            return jsonify({"ok": False, "message": "Please enter a booking request."}), 400

        try:
            parsed = parse_booking_request(text, reference_datetime=clock())
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400

        venue = resolve_venue(parsed.venue or "", repository.get_venues())
        if venue is None:
            return jsonify({"ok": False, "message": f"Could not find venue: {parsed.venue}"}), 400

        pool = repository.list_reservations(venue_id=venue.venue_id, target_date=parsed.date)
        candidate = Reservation("", venue.venue_id, parsed.date, parsed.time_range)
        conflicts = find_conflicts(candidate, pool)
        response_payload: dict[str, Any] = {
            "ok": True,
            "venue_id": venue.venue_id,
            "venue_name": venue.name,
            "date": parsed.date.isoformat(),
            "start_time": format_time(parsed.time_range.start),
            "end_time": format_time(parsed.time_range.end),
            "available": not conflicts,
        }
        if conflicts:
            response_payload["free_slots"] = [
                str(slot) for slot in free_slots(venue.venue_id, parsed.date, pool, min_slot_minutes=min_slot_minutes)
            ]
        return jsonify(response_payload)

    @app.get("/api/availability/slots")
    def availability_slots() -> Any:
        venue_id = str(request.args.get("venue_id", "")).strip()
        if repository.get_venue(venue_id) is None:
            return jsonify({"ok": False, "message": "Venue not found"}), 404
        try:
            target_date = parse_date(str(request.args.get("date", "")))
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400

        slots = find_free_slots(repository, venue_id, target_date, min_slot_minutes=min_slot_minutes)
        response_payload: dict[str, Any] = {
            "ok": True,
            "venue_id": venue_id,
            "date": target_date.isoformat(),
            "slots": [str(slot) for slot in slots],
        }
        if not slots:
            response_payload["message"] = NO_SLOTS_MESSAGE
        return jsonify(response_payload)

    @app.get("/api/availability/dates")
    def availability_dates() -> Any:
        venue_id = str(request.args.get("venue_id", "")).strip()
        if repository.get_venue(venue_id) is None:
            return jsonify({"ok": False, "message": "Venue not found"}), 404
        try:
            time_range = TimeRange(parse_time(str(request.args.get("start", ""))), parse_time(str(request.args.get("end", ""))))
            days = int(request.args.get("horizon_days", horizon_days))
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400
        if time_range.start >= time_range.end:
            return jsonify({"ok": False, "message": "End time must be after start time."}), 400
        if days <= 0:
            return jsonify({"ok": False, "message": "horizon_days must be greater than zero"}), 400

        dates = find_free_dates(repository, venue_id, time_range, horizon_days=days, today=clock().date())
        response_payload: dict[str, Any] = {
            "ok": True,
            "venue_id": venue_id,
            "time_range": str(time_range),
            "horizon_days": days,
            "dates": [value.isoformat() for value in dates],
        }
        if not dates:
            response_payload["message"] = _no_dates_message(days)
        return jsonify(response_payload)

    @app.get("/api/calendar")
    def calendar() -> Any:
        today = clock().date()
        try:
            year = int(request.args.get("year", today.year))
            month = int(request.args.get("month", today.month))
            grouped = repository.approved_events_by_date(year, month)
        except ValueError as error:
            return jsonify({"ok": False, "message": str(error)}), 400

        return jsonify(
            {
                "ok": True,
                "year": year,
                "month": month,
                "days": {
                    day.isoformat(): [_serialize_event(record) for record in records]
                    for day, records in grouped.items()
                },
            }
        )

    return app


def _optional_text(payload: dict[str, Any], key: str) -> str | None:
    value = payload.get(key)
    return None if value is None else str(value)


def _has_attendee(record: EventRecord, email: str) -> bool:
    wanted = email.strip().lower()
    return any(attendee.email.lower() == wanted for attendee in record.attendees)


def _no_dates_message(horizon_days: int) -> str:
    if horizon_days == DEFAULT_HORIZON_DAYS:
        return "No free dates found in next 1 year"
    return f"No free dates found in next {horizon_days} days"


if __name__ == "__main__":
    app = create_app()
    app.run(host="127.0.0.1", port=5000, debug=False)
