import os
import threading
from datetime import date, datetime, time

import pytest
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from cadastraqui.database import Base, build_engine  # noqa: E402
from cadastraqui.models import application, appointment, notification, user, working_hours  # noqa: E402,F401
from cadastraqui.models.application import Application  # noqa: E402
from cadastraqui.models.user import User  # noqa: E402
from cadastraqui.models.working_hours import WorkerScheduleSettings, WorkingHoursWindow  # noqa: E402
from cadastraqui.notifications.dispatcher import NotificationDispatcher  # noqa: E402
from cadastraqui.scheduling.access_policy import Principal, Role  # noqa: E402
from cadastraqui.scheduling.conflict_guard import ConflictGuard  # noqa: E402
from cadastraqui.scheduling.store import AppointmentStore  # noqa: E402

MONDAY = date(2026, 1, 5)
TENANT = 'instituicao-1'

WORKER_ID = 1
OTHER_WORKER_ID = 2
CANDIDATE_ID = 3
OTHER_CANDIDATE_ID = 4
ADMIN_ID = 5
LAWYER_ID = 6

APPLICATION_ID = 10
OTHER_APPLICATION_ID = 11
SECOND_APPLICATION_ID = 12


def at(hour: int, minute: int = 0, day: date = MONDAY) -> datetime:
    return datetime.combine(day, time(hour, minute))


class FakeClock:
    def __init__(self, current: datetime):
        self.current = current

    def __call__(self) -> datetime:
        return self.current


class RecordingSink:
    def __init__(self):
        self.events = []
        self._lock = threading.Lock()

    def deliver(self, event) -> None:
        with self._lock:
            self.events.append(event)

    def for_recipient(self, recipient_id: int) -> list:
        return [event for event in self.events if event.recipient_id == recipient_id]


@pytest.fixture
def session_factory(tmp_path):
    engine = build_engine(f'sqlite:///{tmp_path / "scheduling.db"}')
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    db = factory()
    try:
        db.add_all([
            User(id=WORKER_ID, email='ana@instituicao.org', name='Ana', role='ASSISTENTE_SOCIAL', tenant_id=TENANT),
            User(id=OTHER_WORKER_ID, email='bia@instituicao.org', name='Bia', role='ASSISTENTE_SOCIAL', tenant_id=TENANT),
            User(id=CANDIDATE_ID, email='carlos@example.com', name='Carlos', role='CANDIDATO', tenant_id=TENANT),
            User(id=OTHER_CANDIDATE_ID, email='dora@example.com', name='Dora', role='CANDIDATO', tenant_id=TENANT),
            User(id=ADMIN_ID, email='admin@cadastraqui.org', name='Admin', role='ADMIN'),
            User(id=LAWYER_ID, email='edu@instituicao.org', name='Edu', role='ADVOGADO', tenant_id=TENANT),
        ])
        db.flush()
        db.add_all([
            Application(id=APPLICATION_ID, candidate_id=CANDIDATE_ID, tenant_id=TENANT, edital_title='Bolsa 2026'),
            Application(id=OTHER_APPLICATION_ID, candidate_id=OTHER_CANDIDATE_ID, tenant_id=TENANT, edital_title='Bolsa 2026'),
            Application(id=SECOND_APPLICATION_ID, candidate_id=CANDIDATE_ID, tenant_id=TENANT, edital_title='Auxílio 2026'),
        ])
        for worker_id in (WORKER_ID, OTHER_WORKER_ID):
            db.add(WorkerScheduleSettings(worker_id=worker_id, slot_minutes=30, lead_time_minutes=60))
            db.add(WorkingHoursWindow(worker_id=worker_id, weekday=0, start_time=time(9, 0), end_time=time(12, 0)))
        db.commit()
    finally:
        db.close()

    yield factory

    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(at(8, 0))


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def dispatcher(sink):
    dispatcher = NotificationDispatcher(sink, max_workers=1, max_attempts=3, backoff_seconds=0, sleep=lambda _: None)
    yield dispatcher
    dispatcher.shutdown()


@pytest.fixture
def guard() -> ConflictGuard:
    return ConflictGuard(lock_timeout_seconds=5)


@pytest.fixture
def make_store(dispatcher, guard, clock):
    def factory(session, **kwargs) -> AppointmentStore:
        return AppointmentStore(session, dispatcher, guard, now=clock, **kwargs)

    return factory


@pytest.fixture
def store(make_store, db) -> AppointmentStore:
    return make_store(db)


@pytest.fixture
def principals() -> dict[str, Principal]:
    return {
        'worker': Principal(user_id=WORKER_ID, role=Role.SOCIAL_WORKER, tenant_id=TENANT),
        'other_worker': Principal(user_id=OTHER_WORKER_ID, role=Role.SOCIAL_WORKER, tenant_id=TENANT),
        'candidate': Principal(user_id=CANDIDATE_ID, role=Role.CANDIDATE, tenant_id=TENANT),
        'other_candidate': Principal(user_id=OTHER_CANDIDATE_ID, role=Role.CANDIDATE, tenant_id=TENANT),
        'admin': Principal(user_id=ADMIN_ID, role=Role.ADMIN),
        'lawyer': Principal(user_id=LAWYER_ID, role=Role.OTHER, tenant_id=TENANT),
    }
