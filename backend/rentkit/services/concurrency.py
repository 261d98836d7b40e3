# Overview: Service-layer operations for concurrency; row locks, optimistic
# version checks and retry around check-then-write sequences.

from __future__ import annotations

import time
from typing import Iterable

from flask import current_app
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Item
from ..validation import ConflictError


class ConcurrentWriteConflict(ConflictError):
    """
    Another writer changed the occupancy of an affected item between our
    availability check and our write.

    Retryable: re-run the whole validate + write sequence.
    """
    retryable = True


def lock_for_update(query):
    """
    Apply row-level locking for critical operations.

    NOTE: SQLite ignores SELECT ... FOR UPDATE, but other DBs will honor it.
    """
    return query.with_for_update()


def lock_items(item_ids: Iterable[int]) -> dict[int, Item]:
    """
    Load and row-lock the given items for the rest of the transaction.

    Locks are taken in ascending id order so two writers touching the same
    set of items cannot deadlock. Missing ids are simply absent from the
    returned mapping; callers decide whether that is an error.
    """
    ids = sorted(set(item_ids))
    if not ids:
        return {}
    query = db.session.query(Item).filter(Item.id.in_(ids)).order_by(Item.id.asc())
    return {item.id: item for item in lock_for_update(query).all()}


def bump_occupancy(items: Iterable[Item]) -> None:
    """
    Mark each item's occupancy as changed.

    The UPDATE this produces carries the item's version_id, so a concurrent
    writer that loaded the same version fails at flush with StaleDataError.
    """
    for item in items:
        item.occupancy_seq = (item.occupancy_seq or 0) + 1


def run_with_retry(func, *, attempts: int = 3, backoff_base: float = 0.1):
    """
    Execute a DB operation with retry on concurrency-related failures.

    Retries on OperationalError (deadlocks, locks) and StaleDataError
    (optimistic locking conflicts).
    """
    last_exc = None
    for attempt in range(attempts):
        try:
            return func()
        except (OperationalError, StaleDataError) as exc:
            db.session.rollback()
            last_exc = exc
            if attempt >= attempts - 1:
                raise
            current_app.logger.warning(
                "Concurrent write detected (attempt %d/%d): %s", attempt + 1, attempts, exc.__class__.__name__
            )
            time.sleep(backoff_base * (2 ** attempt))
    if last_exc:
        raise last_exc


def run_guarded_write(func):
    """
    Run a check-then-write operation under the configured retry policy.

    Exhausted retries surface as ConcurrentWriteConflict so callers see a
    single retryable error kind instead of driver-specific exceptions.
    """
    attempts = current_app.config.get("RESERVATION_WRITE_ATTEMPTS", 3)
    backoff = current_app.config.get("RESERVATION_RETRY_BACKOFF", 0.05)
    try:
        return run_with_retry(func, attempts=attempts, backoff_base=backoff)
    except StaleDataError as exc:
        raise ConcurrentWriteConflict(
            "reservation data changed concurrently; retry the request"
        ) from exc
    except OperationalError as exc:
        # Lock timeouts/deadlocks are races; anything else (connection loss,
        # schema errors) propagates unchanged.
        if "lock" not in str(exc.orig).lower():
            raise
        raise ConcurrentWriteConflict(
            "affected items are locked by another write; retry the request"
        ) from exc
