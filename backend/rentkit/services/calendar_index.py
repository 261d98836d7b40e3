# Overview: Read-only occupancy queries over persisted reservation lines.

# backend/rentkit/services/calendar_index.py
"""
Calendar index: which active reservations touch an item in a date range.

Occupancy is never cached. Every call derives it from the reservation and
reservation_lines tables, so a committed write is visible to the next check
without any invalidation step.

Intersection semantics (inclusive both ends):
    reservation.start_date <= range_end AND reservation.end_date >= range_start
"""
from __future__ import annotations

from datetime import date
from typing import NamedTuple

from sqlalchemy import func

from ..extensions import db
from ..models import ACTIVE_STATUS_VALUES, Item, Reservation, ReservationLine
from ..validation import NotFoundError


class ItemNotFoundError(NotFoundError):
    def __init__(self, item_id: int):
        super().__init__(f"Item {item_id} not found")
        self.item_id = item_id


class OccupancyEntry(NamedTuple):
    reservation_id: int
    start: date
    end: date
    quantity: int


def get_item(item_id: int) -> Item:
    item = db.session.get(Item, item_id)
    if item is None:
        raise ItemNotFoundError(item_id)
    return item


def _active_lines_query(item_id: int, exclude_reservation_id: int | None = None):
    q = (
        db.session.query(
            Reservation.id,
            Reservation.start_date,
            Reservation.end_date,
            func.sum(ReservationLine.quantity),
        )
        .join(ReservationLine, ReservationLine.reservation_id == Reservation.id)
        .filter(
            ReservationLine.item_id == item_id,
            Reservation.status.in_(ACTIVE_STATUS_VALUES),
        )
    )
    if exclude_reservation_id is not None:
        q = q.filter(Reservation.id != exclude_reservation_id)
    return q


def active_reservations_touching(
    item_id: int,
    range_start: date,
    range_end: date,
    exclude_reservation_id: int | None = None,
) -> list[OccupancyEntry]:
    """
    CONFIRMED/OUT reservations holding item_id on any day of
    [range_start, range_end], ordered by start date.

    Several lines of one reservation for the same item collapse into a single
    entry with their quantities summed.

    Raises ItemNotFoundError if the item does not exist.
    """
    get_item(item_id)

    rows = (
        _active_lines_query(item_id, exclude_reservation_id)
        .filter(
            Reservation.start_date <= range_end,
            Reservation.end_date >= range_start,
        )
        .group_by(Reservation.id, Reservation.start_date, Reservation.end_date)
        .order_by(Reservation.start_date.asc(), Reservation.id.asc())
        .all()
    )
    return [OccupancyEntry(rid, start, end, int(qty or 0)) for rid, start, end, qty in rows]


def active_reservations_from(item_id: int, from_day: date) -> list[OccupancyEntry]:
    """Active reservations for item_id that end on or after from_day."""
    get_item(item_id)

    rows = (
        _active_lines_query(item_id)
        .filter(Reservation.end_date >= from_day)
        .group_by(Reservation.id, Reservation.start_date, Reservation.end_date)
        .order_by(Reservation.start_date.asc(), Reservation.id.asc())
        .all()
    )
    return [OccupancyEntry(rid, start, end, int(qty or 0)) for rid, start, end, qty in rows]


def active_reservations_by_item(range_start: date, range_end: date) -> dict[int, list[OccupancyEntry]]:
    """
    Same as active_reservations_touching, for every item at once.

    Used by the day and range summaries so they issue one query instead of
    one per item. Items with nothing reserved in the range are absent.
    """
    rows = (
        db.session.query(
            ReservationLine.item_id,
            Reservation.id,
            Reservation.start_date,
            Reservation.end_date,
            func.sum(ReservationLine.quantity),
        )
        .join(Reservation, ReservationLine.reservation_id == Reservation.id)
        .filter(
            Reservation.status.in_(ACTIVE_STATUS_VALUES),
            Reservation.start_date <= range_end,
            Reservation.end_date >= range_start,
        )
        .group_by(ReservationLine.item_id, Reservation.id, Reservation.start_date, Reservation.end_date)
        .order_by(Reservation.start_date.asc(), Reservation.id.asc())
        .all()
    )
    by_item: dict[int, list[OccupancyEntry]] = {}
    for item_id, rid, start, end, qty in rows:
        by_item.setdefault(item_id, []).append(OccupancyEntry(rid, start, end, int(qty or 0)))
    return by_item


def count_lines_for_item(item_id: int) -> int:
    """All reservation lines referencing the item, whatever the status."""
    return db.session.query(ReservationLine).filter(ReservationLine.item_id == item_id).count()
