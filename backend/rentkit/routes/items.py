# backend/rentkit/routes/items.py
"""
Item catalog routes.

Quantity changes are guarded: total_quantity cannot be set below what active
and future reservations already hold (409).
"""
from flask import Blueprint, current_app, request

from ..models import Item
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_item,
    ValidationError,
    ConflictError,
    NotFoundError,
)

ITEM_POLICY = ModelValidationPolicy(
    writable_fields={"name", "unit", "total_quantity", "price_cents", "notes"},
    required_on_create={"name", "unit", "total_quantity"},
)

items_bp = Blueprint("items", __name__, url_prefix="/api/items")


@items_bp.get("")
def list_items_route():
    from ..services.items_service import list_items

    return list_items(), 200


@items_bp.post("")
def create_item_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=False)
        enforce_rules_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.items_service import create_item

    try:
        item = create_item(patch=patch)
    except ConflictError as e:
        return {"error": str(e)}, 409
    except ValueError as e:
        return {"error": str(e)}, 400

    return item.to_dict(), 201


@items_bp.get("/<int:item_id>")
def get_item_route(item_id: int):
    from ..services.calendar_index import get_item

    try:
        return get_item(item_id).to_dict(), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@items_bp.put("/<int:item_id>")
def update_item_route(item_id: int):
    """
    Partial update of an item.

    A total_quantity below the peak reserved quantity on any current or
    future day is rejected with 409 and the blocking figure in max_reserved.
    """
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Item, payload=payload, policy=ITEM_POLICY, partial=True)
        enforce_rules_item(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.items_service import update_item, QuantityBelowReservedError

    try:
        item = update_item(item_id=item_id, patch=patch)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except QuantityBelowReservedError as e:
        return {
            "error": str(e),
            "max_reserved": e.max_reserved,
            "requested_quantity": e.requested_quantity,
        }, 409
    except ConflictError as e:
        return {"error": str(e)}, 409
    except Exception:
        current_app.logger.exception("Failed to update item")
        return {"error": "Failed to update item"}, 500

    return item.to_dict(), 200


@items_bp.delete("/<int:item_id>")
def delete_item_route(item_id: int):
    from ..services.items_service import delete_item

    try:
        delete_item(item_id=item_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"ok": True}, 200
