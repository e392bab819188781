"""Lookups for the records the scheduling core hangs off: workers and applications."""

from sqlalchemy.orm import Session

from cadastraqui.core.errors import NotFoundError
from cadastraqui.models.application import Application
from cadastraqui.models.user import User
from cadastraqui.scheduling.access_policy import Role


def get_worker(db: Session, worker_id: int) -> User:
    worker = db.query(User).filter(User.id == worker_id).first()
    if worker is None or Role.from_claim(worker.role) is not Role.SOCIAL_WORKER:
        raise NotFoundError.for_resource('Social worker')
    return worker


def get_application(db: Session, application_id: int) -> Application:
    application = db.query(Application).filter(Application.id == application_id).first()
    if application is None:
        raise NotFoundError.for_resource('Application')
    return application
