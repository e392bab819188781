import logging
from itertools import groupby

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cadastraqui.core import config
from cadastraqui.core.errors import InternalError, ValidationError
from cadastraqui.models.working_hours import WorkerScheduleSettings, WorkingHoursWindow
from cadastraqui.scheduling import directory
from cadastraqui.scheduling.access_policy import AccessPolicy, Action, Principal
from cadastraqui.scheduling.availability import WeeklyWindow, WorkingHours, load_working_hours

logger = logging.getLogger(__name__)


def validate_working_hours(windows: list[WeeklyWindow], slot_minutes: int, lead_time_minutes: int) -> None:
    if not config.MIN_SLOT_MINUTES <= slot_minutes <= config.MAX_SLOT_MINUTES:
        raise ValidationError(
            f'Slot length must be between {config.MIN_SLOT_MINUTES} and {config.MAX_SLOT_MINUTES} minutes.'
        )
    if lead_time_minutes < 0:
        raise ValidationError('Lead time cannot be negative.')

    for window in windows:
        if not 0 <= window.weekday <= 6:
            raise ValidationError('Weekday must be between 0 (Monday) and 6 (Sunday).')
        if window.start >= window.end:
            raise ValidationError('Working hours must end after they start.')

    ordered = sorted(windows, key=lambda window: (window.weekday, window.start))
    for weekday, day_windows in groupby(ordered, key=lambda window: window.weekday):
        previous = None
        for window in day_windows:
            if previous is not None and window.start < previous.end:
                raise ValidationError(f'Working hours overlap on weekday {weekday}.')
            previous = window


class WorkingHoursService:
    def __init__(self, db: Session, policy: AccessPolicy | None = None):
        self.db = db
        self.policy = policy or AccessPolicy()

    def get_config(self, principal: Principal, worker_id: int) -> WorkingHours | None:
        self.policy.authorize(principal, Action.QUERY_SLOTS)
        directory.get_worker(self.db, worker_id)
        return load_working_hours(self.db, worker_id)

    def replace_config(
        self,
        principal: Principal,
        worker_id: int,
        windows: list[WeeklyWindow],
        slot_minutes: int,
        lead_time_minutes: int,
    ) -> WorkingHours:
        self.policy.authorize_worker(principal, Action.MANAGE_WORKING_HOURS, worker_id)
        validate_working_hours(windows, slot_minutes, lead_time_minutes)

        try:
            directory.get_worker(self.db, worker_id)

            settings = self.db.query(WorkerScheduleSettings).filter(
                WorkerScheduleSettings.worker_id == worker_id,
            ).first()
            if settings is None:
                settings = WorkerScheduleSettings(worker_id=worker_id)
                self.db.add(settings)
            settings.slot_minutes = slot_minutes
            settings.lead_time_minutes = lead_time_minutes

            self.db.query(WorkingHoursWindow).filter(WorkingHoursWindow.worker_id == worker_id).delete()
            for window in windows:
                self.db.add(
                    WorkingHoursWindow(
                        worker_id=worker_id,
                        weekday=window.weekday,
                        start_time=window.start,
                        end_time=window.end,
                    )
                )
            self.db.commit()
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Database error while saving working hours of worker %s', worker_id)
            raise InternalError() from exc
        except Exception:
            self.db.rollback()
            raise

        logger.info('Working hours of worker %s replaced by user %s (%s windows)', worker_id, principal.user_id, len(windows))
        return WorkingHours(
            slot_minutes=slot_minutes,
            lead_time_minutes=lead_time_minutes,
            windows=tuple(sorted(windows, key=lambda window: (window.weekday, window.start))),
        )
