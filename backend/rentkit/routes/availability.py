# backend/rentkit/routes/availability.py
"""
Read-only availability routes.

None of these take locks or write anything; they are safe to call for live
form feedback. A successful check is advisory: the write routes repeat it
under row locks.
"""
from flask import Blueprint, current_app, request

from ..validation import (
    coerce_int,
    parse_date_range,
    parse_reservation_lines,
    ValidationError,
    NotFoundError,
)
from rentkit.time_utils import parse_calendar_date, to_ymd

availability_bp = Blueprint("availability", __name__, url_prefix="/api/availability")


def _range_from(source: dict) -> tuple:
    missing = [k for k in ("start_date", "end_date") if source.get(k) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")
    return parse_date_range(
        source["start_date"],
        source["end_date"],
        max_days=current_app.config.get("MAX_RESERVATION_DAYS"),
    )


def _optional_int(source: dict, key: str):
    value = source.get(key)
    if value is None:
        return None
    return coerce_int(key, value)


@availability_bp.post("/check")
def check_item_route():
    """
    Single item check.

    Body: item_id, quantity, start_date, end_date, optional exclude_reservation_id.
    """
    payload = request.get_json(silent=True) or {}

    try:
        start, end = _range_from(payload)
        if "item_id" not in payload or "quantity" not in payload:
            raise ValidationError("item_id and quantity are required")
        item_id = coerce_int("item_id", payload["item_id"])
        quantity = coerce_int("quantity", payload["quantity"])
        if quantity < 1:
            raise ValidationError("quantity must be at least 1")
        exclude_id = _optional_int(payload, "exclude_reservation_id")
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.availability_service import check_availability

    try:
        result = check_availability(item_id, quantity, start, end, exclude_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return result.to_dict(), 200


@availability_bp.post("/validate")
def validate_reservation_route():
    """
    Multi-line check of a proposed reservation.

    Body: start_date, end_date, lines=[{item_id, quantity}], optional
    exclude_reservation_id (pass the reservation id when validating an edit).
    """
    payload = request.get_json(silent=True) or {}

    try:
        start, end = _range_from(payload)
        lines = parse_reservation_lines(payload.get("lines"))
        exclude_id = _optional_int(payload, "exclude_reservation_id")
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.availability_service import validate_reservation

    try:
        result = validate_reservation(lines, start, end, exclude_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return result.to_dict(), 200


@availability_bp.get("/day")
def day_route():
    """
    Per-item total / reserved / remaining for ?date=YYYY-MM-DD, plus the
    active reservations covering that day (earliest start first).
    """
    try:
        day = parse_calendar_date(request.args.get("date"))
    except ValueError:
        day = None
    if day is None:
        return {"error": "date must be a YYYY-MM-DD date"}, 400

    from ..services.availability_service import day_summary
    from ..services.reservation_service import list_reservations

    reservations = sorted(
        list_reservations(start=day, end=day, active_only=True),
        key=lambda r: (r.start_date, r.id),
    )
    return {
        "date": to_ymd(day),
        "items": day_summary(day),
        "reservations": [r.to_dict() for r in reservations],
    }, 200


@availability_bp.get("/summary")
def summary_route():
    """Per-item peak occupancy for ?start=YYYY-MM-DD&end=YYYY-MM-DD."""
    try:
        start, end = _range_from({
            "start_date": request.args.get("start"),
            "end_date": request.args.get("end"),
        })
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.availability_service import range_summary

    return {"start": to_ymd(start), "end": to_ymd(end), "items": range_summary(start, end)}, 200
