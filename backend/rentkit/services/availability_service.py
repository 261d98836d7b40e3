# Overview: Service-layer availability engine; day aggregation, per-item
# evaluation and multi-line conflict checks. Read-only.

# backend/rentkit/services/availability_service.py
"""
rentkit Availability Invariants & Date Semantics (authoritative)

Day windows:
- The unit of availability is a calendar day (datetime.date).
- Reservation ranges are inclusive at both ends. A reservation with
  start == end occupies exactly one day; end == start + 1 occupies two.

Occupancy:
- Only CONFIRMED and OUT reservations consume inventory.
- reserved(item, day) = SUM(line.quantity) over active reservations with
  start <= day <= end.
- available(item, day) = item.total_quantity - reserved(item, day).

Evaluation:
- Every day of the requested range is checked; a middle day can be the
  binding constraint even when both endpoints are free.
- Evaluation stops at the first violating day (per item) and at the first
  violating line (per reservation). Callers get one actionable example,
  not an exhaustive list.
- Unknown items are reported before any availability violation.

Everything in this module is side-effect free and safe to call without
holding locks (e.g., for live form feedback). The write path in
reservation_service repeats these checks under row locks.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass
from datetime import date
from typing import Iterable, Optional, Sequence, Union

from flask import current_app

from ..extensions import db
from ..models import Item
from ..validation import ConflictError, check_date_range
from rentkit.time_utils import iter_days, to_ymd, utc_today
from .calendar_index import (
    ItemNotFoundError,
    OccupancyEntry,
    active_reservations_by_item,
    active_reservations_from,
    active_reservations_touching,
    get_item,
)


@dataclass(frozen=True)
class AvailabilityViolation:
    """First day on which an item cannot cover the requested quantity."""
    day: date
    item_id: int
    item_name: str
    requested: int
    available: int
    reserved: int
    total: int

    def to_dict(self) -> dict:
        data = asdict(self)
        data["day"] = to_ymd(self.day)
        return data


@dataclass(frozen=True)
class AvailabilityResult:
    violation: Optional[AvailabilityViolation] = None

    @property
    def ok(self) -> bool:
        return self.violation is None

    def to_dict(self) -> dict:
        if self.ok:
            return {"available": True}
        return {"available": False, "violation": self.violation.to_dict()}


AVAILABLE = AvailabilityResult()


class AvailabilityError(ConflictError):
    """Raised by the write path when a proposed reservation would overbook."""

    def __init__(self, violation: AvailabilityViolation):
        super().__init__(
            f"Insufficient availability for {violation.item_name} on {to_ymd(violation.day)}: "
            f"requested {violation.requested}, available {violation.available}"
        )
        self.violation = violation

    def to_dict(self) -> dict:
        return {"error": "Insufficient availability", **self.violation.to_dict()}


def _max_days() -> int | None:
    return current_app.config.get("MAX_RESERVATION_DAYS")


def reserved_quantity(entries: Iterable[OccupancyEntry], day: date) -> int:
    """
    Total quantity held on `day` by the given entries.

    Inclusive both ends: an entry covers day iff start <= day <= end.
    """
    return sum(e.quantity for e in entries if e.start <= day <= e.end)


def check_availability(
    item: Union[Item, int],
    requested_quantity: int,
    range_start: date,
    range_end: date,
    exclude_reservation_id: int | None = None,
) -> AvailabilityResult:
    """
    Can `item` supply `requested_quantity` on every day of
    [range_start, range_end]?

    Occupancy is fetched once for the whole range, then each day is
    aggregated in turn. Returns at the first day where
    total - reserved < requested.

    Raises:
        ItemNotFoundError: item id does not exist
        InvalidRangeError: end before start, or range longer than allowed
    """
    check_date_range(range_start, range_end, max_days=_max_days())
    if not isinstance(item, Item):
        item = get_item(item)

    entries = active_reservations_touching(item.id, range_start, range_end, exclude_reservation_id)

    for day in iter_days(range_start, range_end):
        reserved = reserved_quantity(entries, day)
        available = item.total_quantity - reserved
        if available < requested_quantity:
            return AvailabilityResult(
                AvailabilityViolation(
                    day=day,
                    item_id=item.id,
                    item_name=item.name,
                    requested=requested_quantity,
                    available=available,
                    reserved=reserved,
                    total=item.total_quantity,
                )
            )
    return AVAILABLE


def merge_lines(lines: Sequence[tuple[int, int]]) -> list[tuple[int, int]]:
    """
    Collapse repeated item ids into one (item_id, quantity) pair, keeping
    first-seen order. Two lines for the same item draw on the same stock.
    """
    merged: dict[int, int] = {}
    for item_id, quantity in lines:
        merged[item_id] = merged.get(item_id, 0) + quantity
    return list(merged.items())


def resolve_items(item_ids: Iterable[int]) -> dict[int, Item]:
    """Load every item or raise ItemNotFoundError for the first missing id."""
    ids = list(dict.fromkeys(item_ids))
    found = {i.id: i for i in db.session.query(Item).filter(Item.id.in_(ids)).all()} if ids else {}
    for item_id in ids:
        if item_id not in found:
            raise ItemNotFoundError(item_id)
    return found


def validate_reservation(
    lines: Sequence[tuple[int, int]],
    range_start: date,
    range_end: date,
    exclude_reservation_id: int | None = None,
    *,
    items: dict[int, Item] | None = None,
) -> AvailabilityResult:
    """
    Check every line of a proposed reservation.

    Lines are independent (stock pools never interact across items), so each
    one is evaluated on its own; the first violation wins. Every item is
    resolved before any availability is computed, so a missing item is
    reported even when another line would also overbook.

    `items` lets the write path pass rows it already holds locks on.
    """
    check_date_range(range_start, range_end, max_days=_max_days())
    merged = merge_lines(lines)

    if items is None:
        items = resolve_items(item_id for item_id, _ in merged)
    else:
        for item_id, _ in merged:
            if item_id not in items:
                raise ItemNotFoundError(item_id)

    for item_id, quantity in merged:
        result = check_availability(items[item_id], quantity, range_start, range_end, exclude_reservation_id)
        if not result.ok:
            return result
    return AVAILABLE


def day_summary(day: date) -> list[dict]:
    """
    Per-item occupancy for a single day: {item_id, name, unit, total,
    reserved, remaining} for every item, ordered by name.
    """
    by_item = active_reservations_by_item(day, day)
    summary = []
    for item in db.session.query(Item).order_by(Item.name.asc(), Item.id.asc()).all():
        reserved = reserved_quantity(by_item.get(item.id, ()), day)
        summary.append({
            "item_id": item.id,
            "name": item.name,
            "unit": item.unit,
            "total": item.total_quantity,
            "reserved": reserved,
            "remaining": item.total_quantity - reserved,
        })
    return summary


def range_summary(range_start: date, range_end: date) -> list[dict]:
    """
    Per-item peak occupancy over [range_start, range_end].

    peak_reserved is the largest single-day reserved total in the range and
    min_remaining the matching lowest remaining quantity; busiest_day is the
    first day that peak is reached (None when nothing is reserved).
    """
    check_date_range(range_start, range_end, max_days=_max_days())
    by_item = active_reservations_by_item(range_start, range_end)

    summary = []
    for item in db.session.query(Item).order_by(Item.name.asc(), Item.id.asc()).all():
        entries = by_item.get(item.id, [])
        peak, busiest = 0, None
        for day in iter_days(range_start, range_end):
            reserved = reserved_quantity(entries, day)
            if reserved > peak:
                peak, busiest = reserved, day
        summary.append({
            "item_id": item.id,
            "name": item.name,
            "unit": item.unit,
            "total": item.total_quantity,
            "peak_reserved": peak,
            "min_remaining": item.total_quantity - peak,
            "busiest_day": to_ymd(busiest),
        })
    return summary


def max_future_reserved(item_id: int, from_day: date | None = None) -> int:
    """
    Largest single-day reserved quantity for the item on or after from_day
    (default: today, UTC).

    Reserved quantity only rises on a day some reservation starts, so the
    peak is found by evaluating from_day and every later start date rather
    than walking each day up to the last reservation.
    """
    if from_day is None:
        from_day = utc_today()

    entries = active_reservations_from(item_id, from_day)
    candidates = {from_day} | {e.start for e in entries if e.start > from_day}
    return max((reserved_quantity(entries, day) for day in candidates), default=0)
