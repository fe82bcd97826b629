"""通知 API."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.api.deps import get_current_user_id
from neureed.core import notifications
from neureed.models.database import get_session
from neureed.models.notification import Notification

router = APIRouter(prefix="/api/notifications", tags=["notifications"])


def _notification_to_dict(notification: Notification) -> dict:
    return {
        "id": notification.id,
        "type": notification.type,
        "title": notification.title,
        "message": notification.message,
        "details": notification.details,
        "read": notification.read,
        "created_at": notification.created_at.isoformat(),
    }


@router.get("")
async def list_notifications(
    unread_only: bool = Query(False, description="只看未读"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取通知列表."""
    items, total = await notifications.list_notifications(
        session, user_id, unread_only=unread_only, limit=limit, offset=offset
    )
    unread = await notifications.get_unread_count(session, user_id)
    return {
        "total": total,
        "unread": unread,
        "items": [_notification_to_dict(n) for n in items],
    }


@router.get("/unread-count")
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """未读通知数."""
    return {"unread": await notifications.get_unread_count(session, user_id)}


@router.post("/read-all")
async def mark_all_read(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """全部标记已读."""
    return {"updated": await notifications.mark_all_read(session, user_id)}


@router.delete("/read")
async def delete_read(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """删除所有已读通知."""
    return {"deleted": await notifications.delete_read_notifications(session, user_id)}


@router.put("/{notification_id}/read")
async def mark_read(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """标记单条通知已读."""
    notification = await notifications.mark_read(session, user_id, notification_id)
    return _notification_to_dict(notification)


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """删除单条通知."""
    await notifications.delete_notification(session, user_id, notification_id)
    return {"id": notification_id, "deleted": True}
