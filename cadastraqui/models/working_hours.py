"""Working-hours configuration for social workers."""

from sqlalchemy import Column, Integer, ForeignKey, Time
from cadastraqui.database import Base


class WorkerScheduleSettings(Base):
    """Slot granularity and booking lead time of one worker."""
    __tablename__ = "worker_schedule_settings"

    worker_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    slot_minutes = Column(Integer, nullable=False)
    lead_time_minutes = Column(Integer, nullable=False, default=0)


class WorkingHoursWindow(Base):
    """A recurring weekly window in which a worker takes appointments."""
    __tablename__ = "working_hours_windows"

    id = Column(Integer, primary_key=True)
    worker_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    weekday = Column(Integer, nullable=False)  # 0 = Monday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
