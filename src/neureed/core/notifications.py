"""站内通知：刷新结果汇总与通知管理."""

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import timedelta
from typing import Any

from sqlalchemy import delete, func, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from neureed.config import get_effective_setting
from neureed.errors import NotFoundError, ValidationError
from neureed.models.notification import Notification, NotificationType
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

# 正在执行的清理任务，防止被垃圾回收
_background_tasks: set[asyncio.Task] = set()


@dataclass
class RefreshSummary:
    """一批刷新的汇总数据."""

    total_feeds: int = 0
    successful: int = 0
    failed: int = 0
    new_articles: int = 0
    updated_articles: int = 0
    articles_cleaned_up: int = 0
    embeddings_generated: int = 0
    total_tokens: int = 0
    duration: float = 0.0


def format_refresh_message(summary: RefreshSummary) -> str:
    """生成刷新通知正文."""
    feeds = f"{summary.total_feeds} 个订阅源"
    if summary.new_articles and summary.updated_articles:
        return f"{feeds}有 {summary.new_articles} 篇新文章，{summary.updated_articles} 篇更新"
    if summary.new_articles:
        return f"{feeds}有 {summary.new_articles} 篇新文章"
    return f"{feeds}有 {summary.updated_articles} 篇文章更新"


async def create_notification(
    session: AsyncSession,
    user_id: str,
    type: str,
    title: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> Notification:
    """创建通知."""
    if type not in NotificationType.ALL:
        msg = f"未知通知类型: {type}"
        raise ValidationError(msg)

    notification = Notification(
        user_id=user_id,
        type=type,
        title=title,
        message=message,
        details=details,
    )
    session.add(notification)
    await session.commit()
    await session.refresh(notification)
    return notification


async def notify_refresh(
    session: AsyncSession,
    user_id: str,
    summary: RefreshSummary,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
) -> Notification | None:
    """
    为一批刷新结果创建一条通知.

    没有新文章也没有更新时不创建通知，返回 None。
    创建后在后台清理该用户的过期通知，清理失败只记录日志。
    """
    if summary.new_articles <= 0 and summary.updated_articles <= 0:
        return None

    title = "订阅已刷新"
    if summary.failed:
        title = f"订阅已刷新（{summary.failed} 个失败）"

    notification = await create_notification(
        session,
        user_id,
        NotificationType.FEED_REFRESH,
        title,
        format_refresh_message(summary),
        details=asdict(summary),
    )

    if session_factory is not None:
        schedule_prune(session_factory, user_id)
    return notification


def schedule_prune(session_factory: async_sessionmaker[AsyncSession], user_id: str) -> None:
    """在后台清理通知，不等待结果."""
    task = asyncio.create_task(_prune_in_background(session_factory, user_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


async def _prune_in_background(
    session_factory: async_sessionmaker[AsyncSession], user_id: str
) -> None:
    try:
        async with session_factory() as session:
            await prune_notifications(session, user_id)
    except Exception:
        logger.exception(f"清理用户 {user_id} 的通知失败")


async def prune_notifications(
    session: AsyncSession,
    user_id: str,
    keep: int | None = None,
    max_age_days: int | None = None,
) -> int:
    """
    按保留策略删除旧通知.

    保留最新的 keep 条，且删除早于 max_age_days 天的通知。

    Returns:
        删除的通知数量
    """
    if keep is None:
        keep = int(get_effective_setting("notification_retention_count") or 100)
    if max_age_days is None:
        max_age_days = int(get_effective_setting("notification_retention_days") or 30)

    keep_stmt = (
        select(Notification.id)
        .where(Notification.user_id == user_id)
        .order_by(Notification.created_at.desc(), Notification.id.desc())  # type: ignore[attr-defined]
        .limit(keep)
    )
    keep_ids = set((await session.execute(keep_stmt)).scalars().all())
    cutoff = utcnow() - timedelta(days=max_age_days)

    all_stmt = select(Notification.id, Notification.created_at).where(
        Notification.user_id == user_id
    )
    stale_ids = [
        notification_id
        for notification_id, created_at in (await session.execute(all_stmt)).all()
        if notification_id not in keep_ids or created_at < cutoff
    ]
    if not stale_ids:
        return 0

    await session.execute(
        delete(Notification).where(Notification.id.in_(stale_ids))  # type: ignore[attr-defined]
    )
    await session.commit()
    logger.info(f"已清理用户 {user_id} 的 {len(stale_ids)} 条旧通知")
    return len(stale_ids)


async def list_notifications(
    session: AsyncSession,
    user_id: str,
    unread_only: bool = False,
    limit: int = 50,
    offset: int = 0,
) -> tuple[list[Notification], int]:
    """分页获取通知，返回 (通知列表, 总数)."""
    conditions = [Notification.user_id == user_id]
    if unread_only:
        conditions.append(Notification.read == False)  # noqa: E712

    total = (
        await session.execute(
            select(func.count()).select_from(Notification).where(*conditions)
        )
    ).scalar_one()

    stmt = (
        select(Notification)
        .where(*conditions)
        .order_by(Notification.created_at.desc(), Notification.id.desc())  # type: ignore[attr-defined]
        .offset(offset)
        .limit(limit)
    )
    items = list((await session.execute(stmt)).scalars().all())
    return items, total


async def get_unread_count(session: AsyncSession, user_id: str) -> int:
    """未读通知数."""
    stmt = (
        select(func.count())
        .select_from(Notification)
        .where(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
    )
    return (await session.execute(stmt)).scalar_one()


async def _get_owned(session: AsyncSession, user_id: str, notification_id: str) -> Notification:
    notification = await session.get(Notification, notification_id)
    if notification is None or notification.user_id != user_id:
        raise NotFoundError("通知不存在")
    return notification


async def mark_read(session: AsyncSession, user_id: str, notification_id: str) -> Notification:
    """标记单条通知已读."""
    notification = await _get_owned(session, user_id, notification_id)
    notification.read = True
    await session.commit()
    return notification


async def mark_all_read(session: AsyncSession, user_id: str) -> int:
    """标记全部通知已读，返回更新条数."""
    result = await session.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read == False)  # noqa: E712
        .values(read=True)
    )
    await session.commit()
    return result.rowcount or 0


async def delete_notification(session: AsyncSession, user_id: str, notification_id: str) -> None:
    """删除单条通知."""
    notification = await _get_owned(session, user_id, notification_id)
    await session.delete(notification)
    await session.commit()


async def delete_read_notifications(session: AsyncSession, user_id: str) -> int:
    """删除全部已读通知，返回删除条数."""
    result = await session.execute(
        delete(Notification).where(
            Notification.user_id == user_id,
            Notification.read == True,  # noqa: E712
        )
    )
    await session.commit()
    return result.rowcount or 0
