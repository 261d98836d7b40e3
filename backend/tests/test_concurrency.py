"""
Concurrent reservation writes against a file-backed SQLite database.

Each worker runs in its own thread with its own app context (and therefore
its own session and connection), the way concurrent requests would.
"""
import os
import tempfile
import threading
import unittest
from datetime import date
from unittest import mock

from rentkit import create_app
from rentkit.extensions import db
from rentkit.models import Customer, Item, Reservation
from rentkit.services import reservation_service
from rentkit.services.availability_service import AvailabilityError, reserved_quantity
from rentkit.services.calendar_index import active_reservations_touching
from rentkit.services.concurrency import ConcurrentWriteConflict
from rentkit.services.reservation_service import create_reservation, update_reservation
from rentkit.time_utils import iter_days

START = date(2025, 11, 4)
END = date(2025, 11, 8)


class ConcurrentReservationTests(unittest.TestCase):
    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        db_path = os.path.join(self.tmpdir.name, "concurrency.db")
        self.app = create_app({
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": f"sqlite:///{db_path}",
            "SQLALCHEMY_ENGINE_OPTIONS": {"connect_args": {"timeout": 30}},
            "RESERVATION_WRITE_ATTEMPTS": 5,
            "RESERVATION_RETRY_BACKOFF": 0.01,
        })

        with self.app.app_context():
            db.drop_all()
            db.create_all()

            customer = Customer(first_name="Race", last_name="Tester")
            db.session.add(customer)
            self.items = []
            for n in range(4):
                item = Item(name=f"Item {n}", name_key=f"item {n}", unit="pcs", total_quantity=10)
                db.session.add(item)
                self.items.append(item)
            db.session.commit()

            self.customer_id = customer.id
            self.item_ids = [i.id for i in self.items]

    def tearDown(self):
        with self.app.app_context():
            db.session.remove()
            db.drop_all()
            db.session.remove()
            db.engine.dispose()
        self.tmpdir.cleanup()

    def _run_workers(self, jobs):
        """Start every job at once; collect (result, error) per job."""
        results = []
        lock = threading.Lock()
        barrier = threading.Barrier(len(jobs))

        def worker(job):
            with self.app.app_context():
                barrier.wait()
                try:
                    value = job()
                    with lock:
                        results.append((value.id, None))
                except Exception as exc:
                    with lock:
                        results.append((None, exc))
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker, args=(job,)) for job in jobs]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        return results

    def _reserved_per_day(self, item_id):
        with self.app.app_context():
            entries = active_reservations_touching(item_id, START, END)
            return [reserved_quantity(entries, day) for day in iter_days(START, END)]

    def test_concurrent_creates_never_exceed_stock(self):
        item_id = self.item_ids[0]

        def job():
            return create_reservation(
                customer_id=self.customer_id,
                start_date=START,
                end_date=END,
                lines=[(item_id, 3)],
            )

        results = self._run_workers([job] * 8)

        accepted = [rid for rid, err in results if err is None]
        errors = [err for _, err in results if err is not None]

        self.assertTrue(accepted)
        self.assertLessEqual(len(accepted) * 3, 10)
        for err in errors:
            self.assertIsInstance(err, (AvailabilityError, ConcurrentWriteConflict))
        self.assertTrue(all(r <= 10 for r in self._reserved_per_day(item_id)))

    def test_concurrent_edits_never_exceed_stock(self):
        item_id = self.item_ids[0]
        with self.app.app_context():
            ids = [
                create_reservation(
                    customer_id=self.customer_id,
                    start_date=START,
                    end_date=END,
                    lines=[(item_id, 2)],
                ).id
                for _ in range(4)
            ]

        def grow(reservation_id):
            return lambda: update_reservation(
                reservation_id, start_date=START, end_date=END, lines=[(item_id, 4)],
            )

        results = self._run_workers([grow(rid) for rid in ids])

        for _, err in results:
            if err is not None:
                self.assertIsInstance(err, (AvailabilityError, ConcurrentWriteConflict))
        self.assertTrue(all(r <= 10 for r in self._reserved_per_day(item_id)))

    def test_unrelated_items_all_accepted(self):
        def job_for(item_id):
            return lambda: create_reservation(
                customer_id=self.customer_id,
                start_date=START,
                end_date=END,
                lines=[(item_id, 10)],
            )

        results = self._run_workers([job_for(i) for i in self.item_ids])

        self.assertEqual([err for _, err in results if err is not None], [])
        for item_id in self.item_ids:
            self.assertEqual(self._reserved_per_day(item_id), [10] * 5)

    def test_stock_reduction_committed_between_check_and_write(self):
        item_id = self.item_ids[0]
        real_lock = reservation_service.lock_items
        calls = []
        table = Item.__table__

        def lock_then_reduce_elsewhere(item_ids):
            items = real_lock(item_ids)
            calls.append(1)
            if len(calls) == 1:
                # A quantity update commits on another connection after our read
                with db.engine.begin() as conn:
                    conn.execute(
                        table.update()
                        .where(table.c.id == item_id)
                        .values(total_quantity=2, version_id=table.c.version_id + 1)
                    )
            return items

        with self.app.app_context():
            with mock.patch.object(reservation_service, "lock_items", lock_then_reduce_elsewhere):
                with self.assertRaises(AvailabilityError) as ctx:
                    create_reservation(
                        customer_id=self.customer_id,
                        start_date=START,
                        end_date=END,
                        lines=[(item_id, 5)],
                    )

            self.assertEqual(len(calls), 2)
            self.assertEqual(ctx.exception.violation.total, 2)
            self.assertEqual(db.session.query(Reservation).count(), 0)


if __name__ == "__main__":
    unittest.main()
