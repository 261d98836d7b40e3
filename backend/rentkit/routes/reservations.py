# backend/rentkit/routes/reservations.py
"""
Reservation routes.

Date semantics:
- start_date / end_date are calendar dates "YYYY-MM-DD" (an ISO datetime is
  accepted only when it is exactly UTC midnight). Both ends are inclusive.

Status codes:
- 400: invalid input or date range
- 404: reservation, customer or item not found
- 409: insufficient availability (structured body), concurrent write
  conflict (retryable: true), payment over balance
"""
from flask import Blueprint, current_app, request

from ..models import Payment, Reservation
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    parse_date_range,
    parse_reservation_lines,
    enforce_rules_reservation,
    enforce_rules_payment,
    ValidationError,
    ConflictError,
    NotFoundError,
)
from rentkit.time_utils import parse_calendar_date

RESERVATION_POLICY = ModelValidationPolicy(
    writable_fields={
        "customer_id",
        "start_date",
        "end_date",
        "status",
        "reference",
        "notes",
        "color",
        "total_price_cents",
        "advance_payment_cents",
        "payment_due_date",
        "lines",
        "initial_payments",
    },
    required_on_create={"customer_id", "start_date", "end_date", "lines"},
)

RESERVATION_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields=RESERVATION_POLICY.writable_fields - {"initial_payments"},
    required_on_create={"start_date", "end_date", "lines"},
)

PAYMENT_POLICY = ModelValidationPolicy(
    writable_fields={"amount_cents", "paid_on", "notes"},
    required_on_create={"amount_cents"},
)

DETAIL_FIELDS = (
    "reference",
    "notes",
    "color",
    "total_price_cents",
    "advance_payment_cents",
    "payment_due_date",
)

reservations_bp = Blueprint("reservations", __name__, url_prefix="/api/reservations")


def _write_error_response(e: Exception):
    """Map a reservation write failure to a JSON response."""
    from ..services.availability_service import AvailabilityError
    from ..services.concurrency import ConcurrentWriteConflict

    if isinstance(e, NotFoundError):
        return {"error": str(e)}, 404
    if isinstance(e, AvailabilityError):
        return e.to_dict(), 409
    if isinstance(e, ConcurrentWriteConflict):
        return {"error": str(e), "retryable": True}, 409
    if isinstance(e, ConflictError):
        return {"error": str(e)}, 409
    return {"error": str(e)}, 400


def _parse_write_payload(payload: dict, policy: ModelValidationPolicy) -> dict:
    patch = validate_payload(model=Reservation, payload=payload, policy=policy, partial=False)
    enforce_rules_reservation(patch)

    start, end = parse_date_range(
        patch["start_date"],
        patch["end_date"],
        max_days=current_app.config.get("MAX_RESERVATION_DAYS"),
    )
    patch["start_date"], patch["end_date"] = start, end
    patch["lines"] = parse_reservation_lines(patch["lines"])

    payments = []
    for idx, raw in enumerate(patch.pop("initial_payments", None) or []):
        if not isinstance(raw, dict):
            raise ValidationError(f"initial_payments[{idx}] must be an object")
        p = validate_payload(model=Payment, payload=raw, policy=PAYMENT_POLICY, partial=False)
        enforce_rules_payment(p)
        payments.append(p)
    patch["initial_payments"] = payments
    return patch


@reservations_bp.get("")
def list_reservations_route():
    """
    List reservations.

    Query params:
    - start, end: YYYY-MM-DD (optional) - only reservations intersecting the range
    - active: "1"/"true" to restrict to CONFIRMED/OUT
    - customer_id: int (optional)
    """
    try:
        start = parse_calendar_date(request.args.get("start"))
        end = parse_calendar_date(request.args.get("end"))
    except ValueError:
        return {"error": "start and end must be YYYY-MM-DD dates"}, 400

    active_only = request.args.get("active", "").lower() in ("1", "true", "yes")
    customer_id = request.args.get("customer_id", type=int)

    from ..services.reservation_service import list_reservations

    rows = list_reservations(start=start, end=end, active_only=active_only, customer_id=customer_id)
    return {"items": [r.to_dict() for r in rows], "count": len(rows)}, 200


@reservations_bp.post("")
def create_reservation_route():
    """
    Create a reservation with its lines.

    Body: customer_id, start_date, end_date, lines=[{item_id, quantity}],
    optional status (default CONFIRMED), details and initial_payments.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = _parse_write_payload(payload, RESERVATION_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.reservation_service import create_reservation

    try:
        reservation = create_reservation(
            customer_id=patch["customer_id"],
            start_date=patch["start_date"],
            end_date=patch["end_date"],
            lines=patch["lines"],
            status=patch.get("status") or "CONFIRMED",
            initial_payments=patch["initial_payments"],
            **{k: patch[k] for k in DETAIL_FIELDS if k in patch},
        )
    except (ValueError, LookupError) as e:
        return _write_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create reservation")
        return {"error": "Failed to create reservation"}, 500

    return reservation.to_dict(), 201


@reservations_bp.get("/<int:reservation_id>")
def get_reservation_route(reservation_id: int):
    from ..services.reservation_service import get_reservation

    try:
        return get_reservation(reservation_id).to_dict(), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@reservations_bp.put("/<int:reservation_id>")
def update_reservation_route(reservation_id: int):
    """
    Replace dates, lines and details of a reservation.

    The existing lines are discarded and replaced by the submitted ones. The
    reservation's own current occupancy does not count against it.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = _parse_write_payload(payload, RESERVATION_UPDATE_POLICY)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.reservation_service import update_reservation

    try:
        reservation = update_reservation(
            reservation_id,
            start_date=patch["start_date"],
            end_date=patch["end_date"],
            lines=patch["lines"],
            status=patch.get("status"),
            customer_id=patch.get("customer_id"),
            **{k: patch[k] for k in DETAIL_FIELDS if k in patch},
        )
    except (ValueError, LookupError) as e:
        return _write_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update reservation")
        return {"error": "Failed to update reservation"}, 500

    return reservation.to_dict(), 200


@reservations_bp.patch("/<int:reservation_id>")
def patch_reservation_route(reservation_id: int):
    """Change status and/or color only."""
    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        return {"error": "Invalid JSON payload"}, 400

    unknown = set(payload) - {"status", "color"}
    if unknown:
        return {"error": f"Field not allowed: {', '.join(sorted(unknown))}"}, 400

    from ..services.reservation_service import get_reservation, set_reservation_status

    try:
        status = payload.get("status")
        if status is None:
            status = get_reservation(reservation_id).status
        reservation = set_reservation_status(reservation_id, status, color=payload.get("color"))
    except (ValueError, LookupError) as e:
        return _write_error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update reservation status")
        return {"error": "Failed to update reservation"}, 500

    return reservation.to_dict(), 200


@reservations_bp.delete("/<int:reservation_id>")
def delete_reservation_route(reservation_id: int):
    from ..services.reservation_service import delete_reservation

    try:
        delete_reservation(reservation_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except Exception:
        current_app.logger.exception("Failed to delete reservation")
        return {"error": "Failed to delete reservation"}, 500

    return {"ok": True}, 200


@reservations_bp.get("/<int:reservation_id>/payments")
def list_payments_route(reservation_id: int):
    from ..services.reservation_service import get_reservation

    try:
        reservation = get_reservation(reservation_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return {
        "items": [p.to_dict() for p in reservation.payments],
        "paid_cents": reservation.paid_cents,
        "total_price_cents": reservation.total_price_cents,
    }, 200


@reservations_bp.post("/<int:reservation_id>/payments")
def add_payment_route(reservation_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Payment, payload=payload, policy=PAYMENT_POLICY, partial=False)
        enforce_rules_payment(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.reservation_service import add_payment

    try:
        payment = add_payment(reservation_id, **patch)
    except (ValueError, LookupError) as e:
        return _write_error_response(e)

    return payment.to_dict(), 201
