# backend/rentkit/routes/customers.py
from flask import Blueprint, request

from ..models import Customer
from ..validation import (
    ModelValidationPolicy,
    validate_payload,
    enforce_rules_customer,
    ValidationError,
    ConflictError,
    NotFoundError,
)

CUSTOMER_POLICY = ModelValidationPolicy(
    writable_fields={"first_name", "last_name", "email", "phone", "notes"},
    required_on_create={"first_name"},
)

customers_bp = Blueprint("customers", __name__, url_prefix="/api/customers")


@customers_bp.get("")
def list_customers_route():
    from ..services.customers_service import list_customers

    return list_customers(search=request.args.get("q")), 200


@customers_bp.post("")
def create_customer_route():
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=False)
        enforce_rules_customer(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.customers_service import create_customer

    return create_customer(patch=patch).to_dict(), 201


@customers_bp.get("/<int:customer_id>")
def get_customer_route(customer_id: int):
    from ..services.customers_service import get_customer

    try:
        return get_customer(customer_id).to_dict(), 200
    except NotFoundError as e:
        return {"error": str(e)}, 404


@customers_bp.patch("/<int:customer_id>")
def update_customer_route(customer_id: int):
    payload = request.get_json(silent=True) or {}

    try:
        patch = validate_payload(model=Customer, payload=payload, policy=CUSTOMER_POLICY, partial=True)
        enforce_rules_customer(patch)
    except ValidationError as e:
        return {"error": str(e)}, 400

    from ..services.customers_service import update_customer

    try:
        customer = update_customer(customer_id=customer_id, patch=patch)
    except NotFoundError as e:
        return {"error": str(e)}, 404

    return customer.to_dict(), 200


@customers_bp.delete("/<int:customer_id>")
def delete_customer_route(customer_id: int):
    from ..services.customers_service import delete_customer

    try:
        delete_customer(customer_id=customer_id)
    except NotFoundError as e:
        return {"error": str(e)}, 404
    except ConflictError as e:
        return {"error": str(e)}, 409

    return {"ok": True}, 200
