"""订阅管理."""

import logging
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.config import get_effective_setting
from neureed.core.cleanup import delete_articles
from neureed.core.settings_cascade import apply_settings_update, parse_settings, to_storage
from neureed.errors import ConflictError, NotFoundError, ValidationError
from neureed.models.article import Article
from neureed.models.feed import Feed, UserFeed, UserFeedCategory
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

FETCH_MODES = ("auto", "always", "never")


def normalize_url(url: str) -> str:
    """校验并规范化订阅 URL."""
    url = url.strip()
    if not url.startswith(("http://", "https://")):
        msg = "订阅地址必须以 http:// 或 https:// 开头"
        raise ValidationError(msg)
    return url


async def get_or_create_feed(session: AsyncSession, url: str) -> Feed:
    """按 URL 获取共享 Feed，不存在时创建（不提交）."""
    result = await session.execute(select(Feed).where(Feed.url == url))
    feed = result.scalar_one_or_none()
    if feed is None:
        feed = Feed(url=url, title=url)
        session.add(feed)
        await session.flush()
        logger.info(f"新建 Feed: {url}")
    return feed


async def get_subscription(session: AsyncSession, user_id: str, feed_id: str) -> UserFeed:
    """获取用户对 Feed 的订阅."""
    stmt = select(UserFeed).where(UserFeed.user_id == user_id, UserFeed.feed_id == feed_id)
    user_feed = (await session.execute(stmt)).scalar_one_or_none()
    if user_feed is None:
        raise NotFoundError("未订阅该 Feed")
    return user_feed


async def subscribe(
    session: AsyncSession,
    user_id: str,
    url: str,
    custom_name: str | None = None,
    settings: dict[str, Any] | None = None,
) -> tuple[UserFeed, Feed]:
    """
    订阅 Feed.

    同一 URL 的 Feed 在用户之间共享；重复订阅抛出 ConflictError，非法设置抛出 ValidationError。
    """
    url = normalize_url(url)
    overrides = apply_settings_update(None, settings or {})

    feed = await get_or_create_feed(session, url)
    stmt = select(UserFeed).where(UserFeed.user_id == user_id, UserFeed.feed_id == feed.id)
    if (await session.execute(stmt)).scalar_one_or_none() is not None:
        await session.rollback()
        raise ConflictError("已订阅该 Feed")

    user_feed = UserFeed(
        user_id=user_id,
        feed_id=feed.id,
        custom_name=custom_name,
        settings=to_storage(overrides),
    )
    session.add(user_feed)
    await session.commit()
    logger.info(f"用户 {user_id} 订阅了 {url}")
    return user_feed, feed


async def unsubscribe(
    session: AsyncSession,
    user_id: str,
    feed_id: str,
    delete_orphaned: bool | None = None,
) -> bool:
    """
    取消订阅.

    最后一个订阅者离开后是否删除 Feed 及其文章由 delete_orphaned 决定，
    未指定时使用 delete_orphaned_feeds 配置。

    Returns:
        是否删除了 Feed
    """
    user_feed = await get_subscription(session, user_id, feed_id)
    await session.execute(
        delete(UserFeedCategory).where(UserFeedCategory.user_feed_id == user_feed.id)
    )
    await session.delete(user_feed)
    await session.flush()

    if delete_orphaned is None:
        delete_orphaned = bool(get_effective_setting("delete_orphaned_feeds"))

    remaining = (
        await session.execute(
            select(func.count()).select_from(UserFeed).where(UserFeed.feed_id == feed_id)
        )
    ).scalar_one()

    feed_deleted = False
    if remaining == 0 and delete_orphaned:
        article_ids = list(
            (await session.execute(select(Article.id).where(Article.feed_id == feed_id)))
            .scalars()
            .all()
        )
        await delete_articles(session, article_ids)
        await session.execute(delete(Feed).where(Feed.id == feed_id))
        feed_deleted = True
        logger.info(f"Feed {feed_id} 已无订阅者，删除 Feed 及 {len(article_ids)} 篇文章")

    await session.commit()
    return feed_deleted


async def list_subscriptions(session: AsyncSession, user_id: str) -> list[tuple[UserFeed, Feed]]:
    """列出用户订阅."""
    stmt = (
        select(UserFeed, Feed)
        .join(Feed, Feed.id == UserFeed.feed_id)
        .where(UserFeed.user_id == user_id)
        .order_by(func.lower(func.coalesce(UserFeed.custom_name, Feed.title)))
    )
    return [(user_feed, feed) for user_feed, feed in (await session.execute(stmt)).all()]


async def update_subscription(
    session: AsyncSession,
    user_id: str,
    feed_id: str,
    changes: dict[str, Any],
) -> UserFeed:
    """
    更新订阅的显示名和覆盖设置.

    changes 只包含调用方显式提交的字段；settings 按 PATCH 语义合并，值为 None 的项清除覆盖。
    """
    user_feed = await get_subscription(session, user_id, feed_id)

    if "custom_name" in changes:
        user_feed.custom_name = changes["custom_name"] or None
    if "settings" in changes:
        current = parse_settings(user_feed.settings)
        user_feed.settings = to_storage(apply_settings_update(current, changes["settings"] or {}))

    await session.commit()
    return user_feed


async def update_feed(session: AsyncSession, feed_id: str, changes: dict[str, Any]) -> Feed:
    """更新 Feed 级默认设置和全文抓取策略（管理员）."""
    feed = await session.get(Feed, feed_id)
    if feed is None:
        raise NotFoundError("Feed 不存在")

    if "fetch_full_text" in changes:
        mode = changes["fetch_full_text"]
        if mode not in FETCH_MODES:
            msg = f"全文抓取模式必须是 {'/'.join(FETCH_MODES)} 之一"
            raise ValidationError(msg)
        feed.fetch_full_text = mode
    if "title" in changes and changes["title"]:
        feed.title = changes["title"]
    if "settings" in changes:
        current = parse_settings(feed.settings)
        feed.settings = to_storage(apply_settings_update(current, changes["settings"] or {}))
    if changes.get("reset_errors"):
        feed.error_count = 0
        feed.last_error = None

    feed.updated_at = utcnow()
    await session.commit()
    return feed
