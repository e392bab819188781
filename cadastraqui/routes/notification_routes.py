from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from cadastraqui.auth.dependencies import get_current_principal
from cadastraqui.notifications import inbox
from cadastraqui.routes.dependencies import get_db
from cadastraqui.scheduling.access_policy import Principal

router = APIRouter(tags=['notifications'])

MAX_NOTIFICATIONS_PAGE_SIZE = 50


class NotificationResponse(BaseModel):
    id: int
    kind: str
    title: str
    message: str
    link: str | None = None
    is_read: bool
    created_at: datetime

    class Config:
        from_attributes = True


class NotificationListResponse(BaseModel):
    items: list[NotificationResponse]
    total: int
    unread: int
    page: int
    limit: int
    total_pages: int


class UnreadCountResponse(BaseModel):
    unread: int


class MarkAllReadResponse(BaseModel):
    updated: int


def _database_unavailable() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail='Database unavailable. Verify DATABASE_URL and database credentials.',
    )


@router.get('', response_model=NotificationListResponse)
def list_notifications(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=MAX_NOTIFICATIONS_PAGE_SIZE),
    unread_only: bool = Query(default=False, alias='apenas_nao_lidas'),
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        notifications, total = inbox.list_notifications(db, principal.user_id, page, limit, unread_only)
        unread = inbox.count_unread(db, principal.user_id)
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc

    return NotificationListResponse(
        items=[NotificationResponse.model_validate(notification) for notification in notifications],
        total=total,
        unread=unread,
        page=page,
        limit=limit,
        total_pages=(total + limit - 1) // limit,
    )


@router.get('/count', response_model=UnreadCountResponse)
def count_unread_notifications(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        return UnreadCountResponse(unread=inbox.count_unread(db, principal.user_id))
    except SQLAlchemyError as exc:
        raise _database_unavailable() from exc


@router.put('/marcar-todas-lidas', response_model=MarkAllReadResponse)
def mark_all_notifications_read(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        return MarkAllReadResponse(updated=inbox.mark_all_read(db, principal.user_id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise _database_unavailable() from exc


@router.put('/{notification_id}/lida', response_model=NotificationResponse)
def mark_notification_read(
    notification_id: int,
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
):
    try:
        return inbox.mark_read(db, principal.user_id, notification_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise _database_unavailable() from exc
