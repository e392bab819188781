"""Appointment model definitions."""

import enum

from sqlalchemy import Column, Integer, DateTime, ForeignKey, Index, String, text
from cadastraqui.database import Base


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class Appointment(Base):
    """Represents a meeting between a social worker and an application."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_worker_start", "worker_id", "start_time"),
        Index("idx_appointments_worker_status", "worker_id", "status"),
        # One open appointment per application.
        Index(
            "uq_appointments_open_application",
            "application_id",
            unique=True,
            sqlite_where=text("status = 'SCHEDULED'"),
            postgresql_where=text("status = 'SCHEDULED'"),
        ),
    )

    id = Column(Integer, primary_key=True)
    tenant_id = Column(String, index=True)
    worker_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    application_id = Column(Integer, ForeignKey("applications.id"), nullable=False)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    title = Column(String)
    description = Column(String)
    location = Column(String)
    online_link = Column(String)
    notes = Column(String)
    created_by = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    cancelled_by = Column(Integer, ForeignKey("users.id"))
    cancelled_at = Column(DateTime)
    completed_at = Column(DateTime)
