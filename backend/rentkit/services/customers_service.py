from __future__ import annotations

from ..extensions import db
from ..models import Customer, Reservation
from ..validation import ConflictError, NotFoundError

CUSTOMER_MUTABLE_FIELDS = {"first_name", "last_name", "email", "phone", "notes"}


class CustomerNotFoundError(NotFoundError):
    def __init__(self, customer_id: int):
        super().__init__(f"Customer {customer_id} not found")
        self.customer_id = customer_id


class CustomerInUseError(ConflictError):
    def __init__(self, reservation_count: int):
        plural = "s" if reservation_count > 1 else ""
        super().__init__(
            f"Cannot delete customer with {reservation_count} existing reservation{plural}. "
            f"Delete or reassign the reservations first."
        )
        self.reservation_count = reservation_count


def get_customer(customer_id: int) -> Customer:
    customer = db.session.get(Customer, customer_id)
    if customer is None:
        raise CustomerNotFoundError(customer_id)
    return customer


def list_customers(search: str | None = None) -> dict:
    q = db.session.query(Customer)
    if search:
        like = f"%{search.strip().lower()}%"
        q = q.filter(
            db.or_(
                db.func.lower(Customer.first_name).like(like),
                db.func.lower(Customer.last_name).like(like),
                db.func.lower(Customer.email).like(like),
            )
        )
    customers = q.order_by(Customer.first_name.asc(), Customer.id.asc()).all()
    return {"items": [c.to_dict() for c in customers], "count": len(customers)}


def create_customer(*, patch: dict) -> Customer:
    customer = Customer()
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    db.session.add(customer)
    db.session.commit()
    return customer


def update_customer(*, customer_id: int, patch: dict) -> Customer:
    customer = get_customer(customer_id)
    for k, v in patch.items():
        if k in CUSTOMER_MUTABLE_FIELDS:
            setattr(customer, k, v)
    db.session.commit()
    return customer


def delete_customer(*, customer_id: int) -> None:
    """
    Hard-delete a customer with no reservations.

    Raises:
        CustomerNotFoundError
        CustomerInUseError: reservations (any status) still reference the customer
    """
    customer = get_customer(customer_id)
    count = db.session.query(Reservation).filter(Reservation.customer_id == customer.id).count()
    if count > 0:
        raise CustomerInUseError(count)

    db.session.delete(customer)
    db.session.commit()
