"""
services/notification/router.py
In-app notifications: admin broadcasts (or user-targeted messages) and
per-user read markers.

Booking emails do not go through here; see services/notification/dispatcher.py.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from shared.middleware.auth import Principal, get_current_user, require_admin
from shared.models.models import LogAction, Notification, NotificationReadStatus, User
from shared.schemas.schemas import (
    MessageResponse,
    NotificationCreateRequest,
    NotificationResponse,
)
from shared.utils.audit import AuditTrail

router = APIRouter(prefix="/notifications", tags=["Notifications"])


def _visible_to(user: User):
    """Active broadcasts plus active messages addressed to this user."""
    return and_(
        Notification.is_active == True,  # noqa: E712
        or_(Notification.user_id.is_(None), Notification.user_id == user.id),
    )


def _response(notification: Notification, is_read: bool = False) -> NotificationResponse:
    response = NotificationResponse.model_validate(notification)
    response.is_read = is_read
    return response


# ── Admin ─────────────────────────────────────────────────────

@router.post("", response_model=NotificationResponse, status_code=status.HTTP_201_CREATED)
async def create_notification(
    data: NotificationCreateRequest,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    """user_id omitted → broadcast to every user."""
    if data.user_id and not await db.get(User, data.user_id):
        raise HTTPException(status_code=404, detail="User not found")

    notification = Notification(
        title=data.title,
        message=data.message,
        type=data.type,
        user_id=data.user_id,
        created_by_id=principal.id,
        is_active=True,
    )
    db.add(notification)
    await db.commit()

    target = str(data.user_id) if data.user_id else "all users"
    await AuditTrail(db).record(
        principal.id,
        LogAction.NOTIFICATION_CREATE,
        f"Notification '{data.title}' sent to {target}",
    )
    return _response(notification)


@router.get("", response_model=list[NotificationResponse])
async def list_notifications(
    include_inactive: bool = Query(True),
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    query = select(Notification).order_by(Notification.created_at.desc())
    if not include_inactive:
        query = query.where(Notification.is_active == True)  # noqa: E712
    result = await db.execute(query)
    return [_response(n) for n in result.scalars()]


@router.post("/{notification_id}/toggle-status", response_model=NotificationResponse)
async def toggle_notification(
    notification_id: UUID,
    principal: Principal = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
):
    notification = await db.get(Notification, notification_id)
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")
    notification.is_active = not notification.is_active
    await db.commit()
    return _response(notification)


# ── User ──────────────────────────────────────────────────────

@router.get("/user", response_model=list[NotificationResponse])
async def my_notifications(
    unread_only: bool = Query(False),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    read_ids = set(
        (
            await db.execute(
                select(NotificationReadStatus.notification_id).where(
                    NotificationReadStatus.user_id == current_user.id
                )
            )
        ).scalars()
    )

    query = select(Notification).where(_visible_to(current_user))
    if unread_only and read_ids:
        query = query.where(Notification.id.not_in(read_ids))
    query = (
        query.order_by(Notification.created_at.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(query)
    return [_response(n, n.id in read_ids) for n in result.scalars()]


@router.get("/unread-count")
async def unread_count(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    read = select(NotificationReadStatus.notification_id).where(
        NotificationReadStatus.user_id == current_user.id
    )
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            _visible_to(current_user), Notification.id.not_in(read)
        )
    )
    return {"unread_count": count or 0}


async def _mark_read(db: AsyncSession, notification_id: UUID, user_id: UUID) -> bool:
    """Insert a read marker unless one exists. Returns True when a row was added."""
    exists = await db.scalar(
        select(NotificationReadStatus.id).where(
            NotificationReadStatus.notification_id == notification_id,
            NotificationReadStatus.user_id == user_id,
        )
    )
    if exists:
        return False
    db.add(NotificationReadStatus(notification_id=notification_id, user_id=user_id))
    return True


@router.post("/mark-all-read", response_model=MessageResponse)
async def mark_all_read(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    ids = (await db.execute(select(Notification.id).where(_visible_to(current_user)))).scalars().all()
    marked = 0
    for notification_id in ids:
        marked += await _mark_read(db, notification_id, current_user.id)
    await db.commit()
    return MessageResponse(message=f"{marked} notifications marked as read")


@router.post("/{notification_id}/read", response_model=MessageResponse)
async def mark_read(
    notification_id: UUID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    notification: Optional[Notification] = await db.scalar(
        select(Notification).where(Notification.id == notification_id, _visible_to(current_user))
    )
    if not notification:
        raise HTTPException(status_code=404, detail="Notification not found")

    await _mark_read(db, notification_id, current_user.id)
    try:
        await db.commit()
    except IntegrityError:
        # Concurrent request already stored the marker
        await db.rollback()
    return MessageResponse(message="Marked as read")
