from __future__ import annotations

from ..extensions import db
from rentkit.time_utils import to_utc_z


class Item(db.Model):
    """
    Rentable item master data.

    STOCK DESIGN DECISION:
    Item.total_quantity is the only stored quantity. Occupancy (how many units
    are out on a given day) is never stored; it is derived on demand from
    active reservation lines (see services/calendar_index.py).

    NAME UNIQUENESS:
    Names are unique case-insensitively. name_key holds the lower-cased,
    whitespace-stripped name and carries the unique constraint; name keeps
    the display form.

    CONCURRENCY:
    occupancy_seq is bumped by every reservation write that touches the item.
    Combined with version_id_col this makes two concurrent writers on the same
    item collide at flush time (StaleDataError) even on SQLite, which ignores
    SELECT ... FOR UPDATE.
    """
    __tablename__ = "items"
    __table_args__ = (
        db.UniqueConstraint("name_key", name="uq_items_name_key"),
        db.CheckConstraint("total_quantity >= 0", name="ck_items_total_quantity_nonneg"),
        db.CheckConstraint("price_cents IS NULL OR price_cents >= 0", name="ck_items_price_nonneg"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(255), nullable=False)
    name_key = db.Column(db.String(255), nullable=False)
    unit = db.Column(db.String(10), nullable=False, default="pcs")

    total_quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (frontend may only format for display)
    price_cents = db.Column(db.Integer, nullable=True)
    notes = db.Column(db.Text, nullable=True)

    occupancy_seq = db.Column(db.Integer, nullable=False, default=0)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<Item id={self.id} name={self.name!r} total_quantity={self.total_quantity}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "unit": self.unit,
            "total_quantity": self.total_quantity,
            "price_cents": self.price_cents,
            "notes": self.notes,
            "version_id": self.version_id,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Customer(db.Model):
    """Customer a reservation is made for."""
    __tablename__ = "customers"
    __table_args__ = (
        db.Index("ix_customers_name", "last_name", "first_name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    first_name = db.Column(db.String(128), nullable=False)
    last_name = db.Column(db.String(128), nullable=True)
    email = db.Column(db.String(255), nullable=True)
    phone = db.Column(db.String(32), nullable=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name or ''}".strip()

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "display_name": self.display_name,
            "email": self.email,
            "phone": self.phone,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
