# Overview: Service-layer reservation writes; the only entry points allowed
# to change what occupies inventory.

# backend/rentkit/services/reservation_service.py
"""
Reservation mutator.

WRITE PROTOCOL (create / update / status change):
Every write that can add occupancy runs as one transaction:

1. Lock the affected item rows (SELECT ... FOR UPDATE, ascending id). On edit
   the affected set is the union of the old and new lines' items.
2. Run the conflict checker against current occupancy, excluding the
   reservation being edited.
3. Write the reservation and its complete set of lines, and bump
   occupancy_seq on every affected item. The bump is a versioned UPDATE, so
   two writers that read the same item version cannot both commit
   (StaleDataError on the loser, including on SQLite where step 1 is a no-op).
4. Flush, then re-check occupancy with the new rows in place. Any day over
   stock at this point means another write slipped in: roll back and raise
   ConcurrentWriteConflict.
5. Commit.

Stale/lock failures re-run steps 1-5 (run_guarded_write); if retries run
out the caller gets ConcurrentWriteConflict, which is safe to retry.
Business failures (availability, not found, bad input) roll back and
propagate immediately, so a failed create or edit leaves nothing behind:
no reservation without lines, no half-replaced line set.

Delete needs no availability check: it can only free capacity.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable, Sequence

from flask import current_app

from ..extensions import db
from ..models import ACTIVE_STATUS_VALUES, Item, Payment, Reservation, ReservationLine, ReservationStatus
from ..validation import (
    ConflictError,
    NotFoundError,
    ValidationError,
    check_date_range,
)
from rentkit.time_utils import to_ymd, utc_today
from .availability_service import (
    AvailabilityError,
    check_availability,
    merge_lines,
    validate_reservation,
)
from .calendar_index import ItemNotFoundError
from .concurrency import ConcurrentWriteConflict, bump_occupancy, lock_items, run_guarded_write
from .customers_service import get_customer

RESERVATION_MUTABLE_FIELDS = {
    "reference",
    "notes",
    "color",
    "total_price_cents",
    "advance_payment_cents",
    "payment_due_date",
}


class ReservationNotFoundError(NotFoundError):
    def __init__(self, reservation_id: int):
        super().__init__(f"Reservation {reservation_id} not found")
        self.reservation_id = reservation_id


class PaymentExceedsBalanceError(ConflictError):
    def __init__(self, total_price_cents: int, paid_cents: int, attempted_cents: int):
        super().__init__(
            f"Payment of {attempted_cents} exceeds remaining balance "
            f"{max(total_price_cents - paid_cents, 0)}"
        )
        self.total_price_cents = total_price_cents
        self.paid_cents = paid_cents
        self.attempted_cents = attempted_cents


def get_reservation(reservation_id: int) -> Reservation:
    reservation = db.session.get(Reservation, reservation_id)
    if reservation is None:
        raise ReservationNotFoundError(reservation_id)
    return reservation


def list_reservations(
    *,
    start: date | None = None,
    end: date | None = None,
    active_only: bool = False,
    customer_id: int | None = None,
) -> list[Reservation]:
    """
    Reservations ordered by start date (newest first).

    start/end restrict to reservations intersecting the inclusive range.
    """
    q = db.session.query(Reservation)
    if start is not None:
        q = q.filter(Reservation.end_date >= start)
    if end is not None:
        q = q.filter(Reservation.start_date <= end)
    if active_only:
        q = q.filter(Reservation.status.in_(ACTIVE_STATUS_VALUES))
    if customer_id is not None:
        q = q.filter(Reservation.customer_id == customer_id)
    return q.order_by(Reservation.start_date.desc(), Reservation.id.desc()).all()


def _normalize_lines(lines: Sequence[tuple[int, int]]) -> list[tuple[int, int]]:
    if not lines:
        raise ValidationError("At least one line is required")
    for item_id, quantity in lines:
        if quantity is None or quantity < 1:
            raise ValidationError(f"quantity for item {item_id} must be at least 1")
    return merge_lines(lines)


def _parse_status(status) -> ReservationStatus:
    try:
        return ReservationStatus.parse(status)
    except ValueError as exc:
        raise ValidationError(str(exc)) from None


def _check_range(start: date, end: date) -> None:
    check_date_range(start, end, max_days=current_app.config.get("MAX_RESERVATION_DAYS"))


def _lock_and_resolve(new_item_ids: Iterable[int], prior_item_ids: Iterable[int] = ()) -> dict[int, Item]:
    new_ids = list(dict.fromkeys(new_item_ids))
    items = lock_items(set(new_ids) | set(prior_item_ids))
    for item_id in new_ids:
        if item_id not in items:
            raise ItemNotFoundError(item_id)
    return items


def _enforce_availability(
    lines: Sequence[tuple[int, int]],
    start: date,
    end: date,
    items: dict[int, Item],
    exclude_reservation_id: int | None = None,
) -> None:
    result = validate_reservation(lines, start, end, exclude_reservation_id, items=items)
    if not result.ok:
        raise AvailabilityError(result.violation)


def _revalidate_after_write(item_ids: Iterable[int], start: date, end: date) -> None:
    """
    Post-write safeguard: with our rows flushed, no affected item may be
    over stock on any day of the range.
    """
    for item_id in sorted(set(item_ids)):
        item = db.session.get(Item, item_id)
        result = check_availability(item, 0, start, end)
        if not result.ok:
            v = result.violation
            current_app.logger.warning(
                "Overbooking detected after write: item=%s day=%s reserved=%s total=%s",
                v.item_id, to_ymd(v.day), v.reserved, v.total,
            )
            raise ConcurrentWriteConflict(
                f"{v.item_name} was reserved concurrently for {to_ymd(v.day)}; retry the request"
            )


def _check_fields(fields: dict) -> None:
    unknown = set(fields) - RESERVATION_MUTABLE_FIELDS
    if unknown:
        raise ValidationError(f"Field not allowed: {', '.join(sorted(unknown))}")


def _stored_lines(reservation: Reservation) -> list[tuple[int, int]]:
    return merge_lines([(line.item_id, line.quantity) for line in reservation.lines])


def _guarded(op):
    """Run op under the retry policy; roll back on any business failure."""
    try:
        return run_guarded_write(op)
    except (ConflictError, NotFoundError, ValidationError):
        db.session.rollback()
        raise


def _validate_money(total_price_cents, advance_payment_cents, initial_payments_cents: int = 0) -> None:
    if total_price_cents is None:
        return
    paid = (advance_payment_cents or 0) + initial_payments_cents
    if paid > total_price_cents:
        raise ValidationError(
            f"Total payments ({paid}) exceed total price ({total_price_cents})"
        )


def create_reservation(
    *,
    customer_id: int,
    start_date: date,
    end_date: date,
    lines: Sequence[tuple[int, int]],
    status=ReservationStatus.CONFIRMED,
    initial_payments: Sequence[dict] | None = None,
    **fields,
) -> Reservation:
    """
    Create a reservation with its lines (and optional initial payments) as
    one atomic unit.

    Availability is enforced only when the reservation will consume
    inventory (CONFIRMED/OUT). DRAFT, RETURNED and CANCELLED reservations are
    stored without a check.

    Raises:
        InvalidRangeError, ValidationError: bad input (nothing written)
        CustomerNotFoundError, ItemNotFoundError
        AvailabilityError: some line cannot be covered; .violation has details
        ConcurrentWriteConflict: lost a race; safe to retry
    """
    _check_range(start_date, end_date)
    merged = _normalize_lines(lines)
    _check_fields(fields)
    status = _parse_status(status)
    payments = list(initial_payments or [])
    _validate_money(
        fields.get("total_price_cents"),
        fields.get("advance_payment_cents"),
        sum(p["amount_cents"] for p in payments),
    )

    def _op():
        get_customer(customer_id)
        items = _lock_and_resolve(item_id for item_id, _ in merged)

        if status.consumes_inventory:
            _enforce_availability(merged, start_date, end_date, items)

        reservation = Reservation(
            customer_id=customer_id,
            start_date=start_date,
            end_date=end_date,
            status=status.value,
        )
        for k, v in fields.items():
            setattr(reservation, k, v)
        reservation.lines = [ReservationLine(item_id=i, quantity=q) for i, q in merged]
        reservation.payments = [
            Payment(amount_cents=p["amount_cents"], paid_on=p.get("paid_on") or utc_today(), notes=p.get("notes"))
            for p in payments
        ]
        db.session.add(reservation)

        if status.consumes_inventory:
            bump_occupancy(items.values())
            db.session.flush()
            _revalidate_after_write(items.keys(), start_date, end_date)

        db.session.commit()
        return reservation

    reservation = _guarded(_op)
    current_app.logger.info(
        "Reservation %s created: %s..%s status=%s lines=%s",
        reservation.id, to_ymd(start_date), to_ymd(end_date), status.value, merged,
    )
    return reservation


def update_reservation(
    reservation_id: int,
    *,
    start_date: date,
    end_date: date,
    lines: Sequence[tuple[int, int]],
    status=None,
    customer_id: int | None = None,
    **fields,
) -> Reservation:
    """
    Replace a reservation's dates, lines and details in one transaction.

    The prior line set is discarded entirely and replaced by `lines`; there
    is no merge. The reservation's own prior occupancy is excluded from the
    availability check, so re-saving an unchanged reservation always
    succeeds. status=None keeps the current status.

    Raises: as create_reservation, plus ReservationNotFoundError.
    """
    _check_range(start_date, end_date)
    merged = _normalize_lines(lines)
    _check_fields(fields)
    new_status = _parse_status(status) if status is not None else None

    def _op():
        reservation = get_reservation(reservation_id)
        if customer_id is not None:
            get_customer(customer_id)

        prior_item_ids = {line.item_id for line in reservation.lines}
        was_active = reservation.is_active
        target_status = new_status or reservation.status_enum

        # An active reservation keeping its dates and lines adds no occupancy;
        # it must save even if stock has since dropped below what it holds.
        occupancy_unchanged = (
            was_active
            and target_status.consumes_inventory
            and reservation.start_date == start_date
            and reservation.end_date == end_date
            and sorted(_stored_lines(reservation)) == sorted(merged)
        )

        items = _lock_and_resolve((item_id for item_id, _ in merged), prior_item_ids)

        if target_status.consumes_inventory and not occupancy_unchanged:
            _enforce_availability(merged, start_date, end_date, items, exclude_reservation_id=reservation.id)

        money = {k: fields[k] if k in fields else getattr(reservation, k)
                 for k in ("total_price_cents", "advance_payment_cents")}
        _validate_money(money["total_price_cents"], money["advance_payment_cents"],
                        sum(p.amount_cents for p in reservation.payments))

        reservation.start_date = start_date
        reservation.end_date = end_date
        reservation.status = target_status.value
        if customer_id is not None:
            reservation.customer_id = customer_id
        for k, v in fields.items():
            setattr(reservation, k, v)
        if not occupancy_unchanged:
            reservation.lines = [ReservationLine(item_id=i, quantity=q) for i, q in merged]

        if (target_status.consumes_inventory or was_active) and not occupancy_unchanged:
            bump_occupancy(items.values())
        db.session.flush()
        if target_status.consumes_inventory and not occupancy_unchanged:
            _revalidate_after_write((i for i, _ in merged), start_date, end_date)

        db.session.commit()
        return reservation

    reservation = _guarded(_op)
    current_app.logger.info(
        "Reservation %s updated: %s..%s status=%s lines=%s",
        reservation.id, to_ymd(start_date), to_ymd(end_date), reservation.status, merged,
    )
    return reservation


def set_reservation_status(reservation_id: int, status, *, color: str | None = None) -> Reservation:
    """
    Change only the status (and optionally the calendar color).

    Any status may follow any other. Moving into CONFIRMED/OUT re-checks the
    reservation's current lines and dates, since a DRAFT or CANCELLED
    reservation may no longer fit.
    """
    new_status = _parse_status(status)

    def _op():
        reservation = get_reservation(reservation_id)
        was_active = reservation.is_active
        current = [(line.item_id, line.quantity) for line in reservation.lines]
        items = _lock_and_resolve(i for i, _ in current)

        if new_status.consumes_inventory and not was_active and current:
            _enforce_availability(
                current, reservation.start_date, reservation.end_date, items,
                exclude_reservation_id=reservation.id,
            )

        reservation.status = new_status.value
        if color is not None:
            reservation.color = color

        if new_status.consumes_inventory != was_active:
            bump_occupancy(items.values())
        db.session.flush()
        if new_status.consumes_inventory and not was_active:
            _revalidate_after_write(items.keys(), reservation.start_date, reservation.end_date)

        db.session.commit()
        return reservation

    reservation = _guarded(_op)
    current_app.logger.info("Reservation %s status set to %s", reservation.id, reservation.status)
    return reservation


def delete_reservation(reservation_id: int) -> None:
    """
    Delete a reservation with its lines and payments. Unconditional: removing
    a reservation can only free capacity.
    """
    reservation = get_reservation(reservation_id)
    db.session.delete(reservation)
    db.session.commit()
    current_app.logger.info("Reservation %s deleted", reservation_id)


def add_payment(
    reservation_id: int,
    *,
    amount_cents: int,
    paid_on: date | None = None,
    notes: str | None = None,
) -> Payment:
    """
    Record a payment. When the reservation has a total price, the running
    total (advance + payments) may not exceed it.
    """
    reservation = get_reservation(reservation_id)
    if amount_cents is None or amount_cents <= 0:
        raise ValidationError("amount_cents must be > 0")

    if reservation.total_price_cents is not None:
        paid = reservation.paid_cents
        if paid + amount_cents > reservation.total_price_cents:
            raise PaymentExceedsBalanceError(reservation.total_price_cents, paid, amount_cents)

    payment = Payment(
        reservation_id=reservation.id,
        amount_cents=amount_cents,
        paid_on=paid_on or utc_today(),
        notes=notes,
    )
    db.session.add(payment)
    db.session.commit()
    return payment
