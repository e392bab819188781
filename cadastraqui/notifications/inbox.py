"""Notification inbox: the default delivery sink and the recipient's read paths."""

from collections.abc import Callable

from sqlalchemy.orm import Session

from cadastraqui.core.errors import NotFoundError
from cadastraqui.models.notification import Notification
from cadastraqui.notifications.dispatcher import NotificationEvent


class InboxNotificationSink:
    """Persists events as inbox rows, each delivery in its own session."""

    def __init__(self, session_factory: Callable[[], Session]):
        self.session_factory = session_factory

    def deliver(self, event: NotificationEvent) -> None:
        db = self.session_factory()
        try:
            db.add(
                Notification(
                    recipient_id=event.recipient_id,
                    kind=event.kind,
                    title=event.title,
                    message=event.message,
                    link=event.link,
                    is_read=False,
                    created_at=event.created_at,
                )
            )
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()


def list_notifications(
    db: Session,
    recipient_id: int,
    page: int = 1,
    limit: int = 20,
    unread_only: bool = False,
) -> tuple[list[Notification], int]:
    query = db.query(Notification).filter(Notification.recipient_id == recipient_id)
    if unread_only:
        query = query.filter(Notification.is_read.is_(False))

    total = query.count()
    notifications = query.order_by(Notification.created_at.desc(), Notification.id.desc()).offset(
        (page - 1) * limit
    ).limit(limit).all()
    return notifications, total


def count_unread(db: Session, recipient_id: int) -> int:
    return db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.is_read.is_(False),
    ).count()


def mark_read(db: Session, recipient_id: int, notification_id: int) -> Notification:
    notification = db.query(Notification).filter(
        Notification.id == notification_id,
        Notification.recipient_id == recipient_id,
    ).first()
    if notification is None:
        raise NotFoundError.for_resource('Notification')

    notification.is_read = True
    db.commit()
    db.refresh(notification)
    return notification


def mark_all_read(db: Session, recipient_id: int) -> int:
    updated = db.query(Notification).filter(
        Notification.recipient_id == recipient_id,
        Notification.is_read.is_(False),
    ).update({Notification.is_read: True}, synchronize_session=False)
    db.commit()
    return updated
