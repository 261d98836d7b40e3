# backend/rentkit/services/items_service.py
"""
Items Service

Catalog management for rentable items. The only rules with inventory
content live here:
- Names are unique case-insensitively.
- total_quantity can never drop below the peak per-day reserved quantity on
  any current or future day.
- An item can only be deleted when no reservation line references it.
"""
from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import Item
from ..validation import ConflictError
from .availability_service import max_future_reserved
from .calendar_index import count_lines_for_item, get_item
from .concurrency import bump_occupancy, lock_items, run_guarded_write

ITEM_MUTABLE_FIELDS = {"name", "unit", "total_quantity", "price_cents", "notes"}


class DuplicateItemNameError(ConflictError):
    pass


class QuantityBelowReservedError(ConflictError):
    def __init__(self, requested_quantity: int, max_reserved: int):
        super().__init__(
            f"Cannot reduce total quantity to {requested_quantity}. Currently {max_reserved} "
            f"units are reserved in active/future reservations. Cancel or modify those "
            f"reservations first."
        )
        self.requested_quantity = requested_quantity
        self.max_reserved = max_reserved


class ItemInUseError(ConflictError):
    def __init__(self, line_count: int):
        plural = "s" if line_count > 1 else ""
        super().__init__(
            f"Cannot delete item that is used in {line_count} reservation line{plural}. "
            f"Delete or modify the reservations first."
        )
        self.line_count = line_count


def name_key(name: str) -> str:
    return " ".join(name.split()).lower()


def apply_item_patch(item: Item, patch: dict) -> None:
    for k, v in patch.items():
        if k not in ITEM_MUTABLE_FIELDS:
            continue
        setattr(item, k, v)
    if "name" in patch:
        item.name_key = name_key(item.name)


def _ensure_name_free(name: str, *, exclude_item_id: int | None = None) -> None:
    q = db.session.query(Item).filter(Item.name_key == name_key(name))
    if exclude_item_id is not None:
        q = q.filter(Item.id != exclude_item_id)
    if q.first() is not None:
        raise DuplicateItemNameError(f"An item named {name!r} already exists.")


def list_items() -> dict:
    items = db.session.query(Item).order_by(Item.name.asc(), Item.id.asc()).all()
    return {
        "items": [i.to_dict() for i in items],
        "count": len(items),
    }


def create_item(*, patch: dict) -> Item:
    """
    Create an item from a validated patch dict.

    Raises:
        DuplicateItemNameError: name clashes (case-insensitively) with another item
    """
    name = patch.get("name")
    if not name:
        raise ValueError("name is required")
    _ensure_name_free(name)

    item = Item(total_quantity=0, occupancy_seq=0)
    apply_item_patch(item, patch)

    db.session.add(item)
    try:
        db.session.commit()
    except IntegrityError:
        # Another create took the name between the check and the insert
        db.session.rollback()
        raise DuplicateItemNameError(f"An item named {name!r} already exists.") from None
    return item


def update_item(*, item_id: int, patch: dict) -> Item:
    """
    Update an item.

    A quantity reduction is checked against the peak per-day reservation
    total on any current or future day, with the item row locked so no
    reservation for it can be accepted in between.

    Raises:
        ItemNotFoundError
        DuplicateItemNameError
        QuantityBelowReservedError
    """
    def _op():
        get_item(item_id)
        item = lock_items([item_id])[item_id]

        if "name" in patch and patch["name"]:
            _ensure_name_free(patch["name"], exclude_item_id=item.id)

        new_total = patch.get("total_quantity")
        if new_total is not None and new_total < item.total_quantity:
            peak = max_future_reserved(item.id)
            if new_total < peak:
                raise QuantityBelowReservedError(new_total, peak)
            bump_occupancy([item])

        apply_item_patch(item, patch)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            if not patch.get("name"):
                raise
            raise DuplicateItemNameError(f"An item named {patch.get('name')!r} already exists.") from None
        return item

    try:
        return run_guarded_write(_op)
    except ConflictError:
        db.session.rollback()
        raise


def delete_item(*, item_id: int) -> None:
    """
    Hard-delete an item that no reservation line references.

    Raises:
        ItemNotFoundError
        ItemInUseError
    """
    item = get_item(item_id)
    line_count = count_lines_for_item(item_id)
    if line_count > 0:
        raise ItemInUseError(line_count)

    db.session.delete(item)
    db.session.commit()
