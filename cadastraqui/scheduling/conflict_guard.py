"""Serialization of bookings per social worker.

Two layers keep the check-then-insert atomic: an in-process lock per worker
(handlers run on a thread pool) and a row lock on the worker's user record,
which serializes writers across processes on databases that honour
``SELECT ... FOR UPDATE``. The overlap check is repeated inside the critical
section, so a slot that looked free when availability was read is re-validated
at commit time.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from threading import Lock

from sqlalchemy.orm import Session

from cadastraqui.core import config
from cadastraqui.core.errors import ConflictError
from cadastraqui.models.user import User
from cadastraqui.scheduling.availability import scheduled_overlapping

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Reservation:
    """Proof that ``[start_time, end_time)`` was free for ``worker_id`` inside the critical section."""
    worker_id: int
    start_time: datetime
    end_time: datetime


class ConflictGuard:
    def __init__(self, lock_timeout_seconds: float | None = None):
        self.lock_timeout_seconds = (
            config.BOOKING_LOCK_TIMEOUT_SECONDS if lock_timeout_seconds is None else lock_timeout_seconds
        )
        self._locks: dict[int, Lock] = {}
        self._registry_lock = Lock()

    def _lock_for(self, worker_id: int) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(worker_id)
            if lock is None:
                lock = self._locks[worker_id] = Lock()
            return lock

    @contextmanager
    def serialize(self, db: Session, worker_id: int) -> Iterator[None]:
        """Hold the worker's critical section; the caller commits before leaving it."""
        lock = self._lock_for(worker_id)
        if not lock.acquire(timeout=self.lock_timeout_seconds):
            logger.warning('Timed out waiting for the schedule lock of worker %s', worker_id)
            raise ConflictError('The schedule is busy. Please try again.')
        try:
            db.query(User.id).filter(User.id == worker_id).with_for_update().first()
            yield
        finally:
            lock.release()

    @contextmanager
    def reserve(
        self,
        db: Session,
        worker_id: int,
        start_time: datetime,
        duration_minutes: int,
        exclude_appointment_id: int | None = None,
    ) -> Iterator[Reservation]:
        end_time = start_time + timedelta(minutes=duration_minutes)
        with self.serialize(db, worker_id):
            overlapping = scheduled_overlapping(db, worker_id, start_time, end_time, exclude_appointment_id).first()
            if overlapping is not None:
                logger.info(
                    'Rejected booking for worker %s at %s: overlaps appointment %s',
                    worker_id,
                    start_time.isoformat(),
                    overlapping.id,
                )
                raise ConflictError('This time is already booked.')
            yield Reservation(worker_id=worker_id, start_time=start_time, end_time=end_time)
