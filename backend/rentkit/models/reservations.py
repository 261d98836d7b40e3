from __future__ import annotations

import enum

from ..extensions import db
from rentkit.time_utils import to_utc_z, to_ymd


class ReservationStatus(str, enum.Enum):
    """
    Closed set of reservation states.

    Only CONFIRMED and OUT consume inventory. DRAFT (tentative), RETURNED and
    CANCELLED reservations are kept for history but never block availability.
    No transition rules are enforced between states.
    """
    DRAFT = "DRAFT"
    CONFIRMED = "CONFIRMED"
    OUT = "OUT"
    RETURNED = "RETURNED"
    CANCELLED = "CANCELLED"

    @classmethod
    def parse(cls, value) -> "ReservationStatus":
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            allowed = ", ".join(s.value for s in cls)
            raise ValueError(f"status must be one of: {allowed}") from None

    @property
    def consumes_inventory(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({ReservationStatus.CONFIRMED, ReservationStatus.OUT})
ACTIVE_STATUS_VALUES = tuple(sorted(s.value for s in ACTIVE_STATUSES))


class Reservation(db.Model):
    """
    A customer's claim on quantities of one or more items over an inclusive
    date range.

    DATE SEMANTICS:
    start_date and end_date are calendar dates (SQL DATE). Both ends are
    inclusive: a reservation with start_date == end_date occupies one day.

    LINES:
    Lines are replaced wholesale on edit (delete-orphan cascade); they are
    never patched individually. Deleting a reservation deletes its lines and
    payments in the same transaction.
    """
    __tablename__ = "reservations"
    __table_args__ = (
        db.CheckConstraint("start_date <= end_date", name="ck_reservations_date_order"),
        db.Index("ix_reservations_status_range", "status", "start_date", "end_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    customer_id = db.Column(db.Integer, db.ForeignKey("customers.id"), nullable=False, index=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

    status = db.Column(db.String(16), nullable=False, default=ReservationStatus.CONFIRMED.value, index=True)

    reference = db.Column(db.String(64), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    color = db.Column(db.String(16), nullable=True)

    total_price_cents = db.Column(db.Integer, nullable=True)
    advance_payment_cents = db.Column(db.Integer, nullable=True)
    payment_due_date = db.Column(db.Date, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    customer = db.relationship("Customer", backref=db.backref("reservations", lazy=True))
    lines = db.relationship(
        "ReservationLine",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="ReservationLine.id",
    )
    payments = db.relationship(
        "Payment",
        back_populates="reservation",
        cascade="all, delete-orphan",
        order_by="Payment.paid_on.desc()",
    )

    @property
    def status_enum(self) -> ReservationStatus:
        return ReservationStatus(self.status)

    @property
    def is_active(self) -> bool:
        return self.status_enum.consumes_inventory

    @property
    def paid_cents(self) -> int:
        return (self.advance_payment_cents or 0) + sum(p.amount_cents for p in self.payments)

    def __repr__(self) -> str:
        return (
            f"<Reservation id={self.id} {to_ymd(self.start_date)}..{to_ymd(self.end_date)} "
            f"status={self.status}>"
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "customer_id": self.customer_id,
            "customer_name": self.customer.display_name if self.customer else None,
            "start_date": to_ymd(self.start_date),
            "end_date": to_ymd(self.end_date),
            "status": self.status,
            "reference": self.reference,
            "notes": self.notes,
            "color": self.color,
            "total_price_cents": self.total_price_cents,
            "advance_payment_cents": self.advance_payment_cents,
            "payment_due_date": to_ymd(self.payment_due_date),
            "paid_cents": self.paid_cents,
            "lines": [line.to_dict() for line in self.lines],
            "payments": [p.to_dict() for p in self.payments],
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ReservationLine(db.Model):
    __tablename__ = "reservation_lines"
    __table_args__ = (
        db.CheckConstraint("quantity > 0", name="ck_reservation_lines_quantity_pos"),
        db.Index("ix_reservation_lines_item_reservation", "item_id", "reservation_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(
        db.Integer,
        db.ForeignKey("reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    item_id = db.Column(db.Integer, db.ForeignKey("items.id"), nullable=False, index=True)
    quantity = db.Column(db.Integer, nullable=False)

    reservation = db.relationship("Reservation", back_populates="lines")
    item = db.relationship("Item")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "item_id": self.item_id,
            "item_name": self.item.name if self.item else None,
            "quantity": self.quantity,
        }


class Payment(db.Model):
    """
    Payment recorded against a reservation.

    Bookkeeping only: no gateway is involved. Payments are dependent records
    and are deleted with their reservation.
    """
    __tablename__ = "reservation_payments"
    __table_args__ = (
        db.CheckConstraint("amount_cents > 0", name="ck_reservation_payments_amount_pos"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    reservation_id = db.Column(
        db.Integer,
        db.ForeignKey("reservations.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount_cents = db.Column(db.Integer, nullable=False)
    paid_on = db.Column(db.Date, nullable=False)
    notes = db.Column(db.String(255), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    reservation = db.relationship("Reservation", back_populates="payments")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "reservation_id": self.reservation_id,
            "amount_cents": self.amount_cents,
            "paid_on": to_ymd(self.paid_on),
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
        }
