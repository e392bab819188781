from threading import Lock

from fastapi import Depends, HTTPException, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cadastraqui.database import SessionLocal, ensure_appointment_schema
from cadastraqui.notifications.dispatcher import NotificationDispatcher
from cadastraqui.notifications.inbox import InboxNotificationSink
from cadastraqui.scheduling.availability import AvailabilityCalculator
from cadastraqui.scheduling.conflict_guard import ConflictGuard
from cadastraqui.scheduling.store import AppointmentStore
from cadastraqui.scheduling.working_hours import WorkingHoursService

conflict_guard = ConflictGuard()

_dispatcher: NotificationDispatcher | None = None
_dispatcher_lock = Lock()


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail='Database unavailable. Verify DATABASE_URL and database credentials.',
        ) from exc


def get_db():
    ensure_database_ready()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_dispatcher() -> NotificationDispatcher:
    global _dispatcher

    if _dispatcher is None:
        with _dispatcher_lock:
            if _dispatcher is None:
                _dispatcher = NotificationDispatcher(InboxNotificationSink(SessionLocal))
    return _dispatcher


def shutdown_dispatcher() -> None:
    global _dispatcher

    with _dispatcher_lock:
        if _dispatcher is not None:
            _dispatcher.shutdown(wait_for_pending=True)
            _dispatcher = None


def get_appointment_store(db: Session = Depends(get_db)) -> AppointmentStore:
    return AppointmentStore(db, get_dispatcher(), conflict_guard)


def get_availability_calculator(db: Session = Depends(get_db)) -> AvailabilityCalculator:
    return AvailabilityCalculator(db)


def get_working_hours_service(db: Session = Depends(get_db)) -> WorkingHoursService:
    return WorkingHoursService(db)
