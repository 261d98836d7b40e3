from .catalog import Item, Customer
from .reservations import (
    ACTIVE_STATUSES,
    ACTIVE_STATUS_VALUES,
    Payment,
    Reservation,
    ReservationLine,
    ReservationStatus,
)

__all__ = [
    'Item', 'Customer',
    'Reservation', 'ReservationLine', 'ReservationStatus', 'Payment',
    'ACTIVE_STATUSES', 'ACTIVE_STATUS_VALUES',
]
