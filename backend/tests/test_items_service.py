from datetime import timedelta

import pytest

from rentkit.services import items_service
from rentkit.services.calendar_index import ItemNotFoundError
from rentkit.services.items_service import (
    DuplicateItemNameError,
    ItemInUseError,
    QuantityBelowReservedError,
    create_item,
    delete_item,
    list_items,
    update_item,
)
from rentkit.services.reservation_service import delete_reservation
from rentkit.time_utils import utc_today


def days_from_today(n: int):
    return utc_today() + timedelta(days=n)


class TestItemCatalog:
    def test_create_and_list(self, db_session):
        create_item(patch={"name": "Tables", "unit": "pcs", "total_quantity": 10})
        create_item(patch={"name": "Chairs", "unit": "pcs", "total_quantity": 100})

        listing = list_items()

        assert listing["count"] == 2
        assert [i["name"] for i in listing["items"]] == ["Chairs", "Tables"]

    def test_names_unique_ignoring_case(self, make_item):
        make_item("Chairs", 100)

        with pytest.raises(DuplicateItemNameError):
            create_item(patch={"name": "  chairs ", "unit": "pcs", "total_quantity": 1})

    def test_rename_to_taken_name(self, make_item):
        make_item("Chairs", 100)
        tables = make_item("Tables", 10)

        with pytest.raises(DuplicateItemNameError):
            update_item(item_id=tables.id, patch={"name": "CHAIRS"})

    def test_duplicate_insert_reported_as_name_clash(self, make_item, monkeypatch):
        # Two creates can both pass the lookup; the unique index decides
        monkeypatch.setattr(items_service, "_ensure_name_free", lambda *a, **kw: None)
        make_item("Chairs", 100)

        with pytest.raises(DuplicateItemNameError):
            create_item(patch={"name": "chairs", "unit": "pcs", "total_quantity": 1})

        assert list_items()["count"] == 1

    def test_duplicate_rename_reported_as_name_clash(self, make_item, monkeypatch):
        monkeypatch.setattr(items_service, "_ensure_name_free", lambda *a, **kw: None)
        make_item("Chairs", 100)
        tables = make_item("Tables", 10)

        with pytest.raises(DuplicateItemNameError):
            update_item(item_id=tables.id, patch={"name": "Chairs"})

        assert sorted(i["name"] for i in list_items()["items"]) == ["Chairs", "Tables"]

    def test_update_missing_item(self, db_session):
        with pytest.raises(ItemNotFoundError):
            update_item(item_id=999, patch={"notes": "x"})


class TestQuantityGuard:
    def test_cannot_drop_below_future_peak(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 40)], days_from_today(3), days_from_today(8))
        reserve([(chairs, 30)], days_from_today(6), days_from_today(10))

        with pytest.raises(QuantityBelowReservedError) as exc:
            update_item(item_id=chairs.id, patch={"total_quantity": 69})

        assert exc.value.max_reserved == 70
        assert exc.value.requested_quantity == 69
        assert "Currently 70 units are reserved" in str(exc.value)

    def test_can_drop_to_future_peak(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 40)], days_from_today(3), days_from_today(8))
        reserve([(chairs, 30)], days_from_today(6), days_from_today(10))

        item = update_item(item_id=chairs.id, patch={"total_quantity": 70})

        assert item.total_quantity == 70

    def test_past_reservations_do_not_block(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 100)], days_from_today(-10), days_from_today(-2))

        assert update_item(item_id=chairs.id, patch={"total_quantity": 0}).total_quantity == 0

    def test_inactive_reservations_do_not_block(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 100)], days_from_today(1), days_from_today(2), status="CANCELLED")

        assert update_item(item_id=chairs.id, patch={"total_quantity": 5}).total_quantity == 5

    def test_increase_is_always_allowed(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 100)], days_from_today(1), days_from_today(2))

        assert update_item(item_id=chairs.id, patch={"total_quantity": 150}).total_quantity == 150


class TestDeleteGuard:
    def test_item_in_use_cannot_be_deleted(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        reserve([(chairs, 1)], days_from_today(-30), days_from_today(-29), status="RETURNED")

        with pytest.raises(ItemInUseError) as exc:
            delete_item(item_id=chairs.id)

        assert exc.value.line_count == 1

    def test_delete_after_reservation_removed(self, make_item, reserve):
        chairs = make_item("Chairs", 100)
        r = reserve([(chairs, 1)], days_from_today(1), days_from_today(1))
        delete_reservation(r.id)

        delete_item(item_id=chairs.id)

        assert list_items()["count"] == 0

    def test_delete_missing(self, db_session):
        with pytest.raises(ItemNotFoundError):
            delete_item(item_id=12)
