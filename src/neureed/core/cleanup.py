"""
文章保留策略.

删除候选 = 超过最长保留天数的文章 ∪ 排在最新 N 篇之后的文章（按发布时间倒序）。
preserve_starred 为真时，被任意用户收藏或给过正向显式反馈的文章整体排除在候选之外。
试运行与实际删除共用 select_cleanup_candidates，保证试运行数量与实际删除数量一致。
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.core.settings_cascade import (
    SYSTEM_DEFAULTS,
    get_effective_settings,
)
from neureed.errors import NotFoundError
from neureed.models.article import Article, ReadArticle, StarredArticle
from neureed.models.feed import Feed, UserFeed
from neureed.models.feedback import ArticleFeedback, FeedbackType
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

# SQLite 单条语句的参数个数有限，IN 子句分批执行
_ID_CHUNK = 500


@dataclass
class CleanupOptions:
    """清理参数."""

    max_age_days: int = SYSTEM_DEFAULTS["max_article_age"]
    max_articles_per_feed: int = SYSTEM_DEFAULTS["max_articles_per_feed"]
    preserve_starred: bool = True
    dry_run: bool = False


@dataclass
class CleanupCandidate:
    """一篇待删除文章及命中的规则."""

    article_id: str
    title: str
    published_at: datetime | None
    reasons: list[str]


@dataclass
class CleanupResult:
    """单个 Feed 的清理结果."""

    feed_id: str
    deleted: int = 0
    preserved: int = 0
    dry_run: bool = False
    by_age: int = 0
    by_count: int = 0
    details: list[CleanupCandidate] = field(default_factory=list)


@dataclass
class CleanupSummary:
    """全部 Feed 的清理汇总."""

    feeds_processed: int = 0
    deleted: int = 0
    preserved: int = 0
    dry_run: bool = False
    results: list[CleanupResult] = field(default_factory=list)


def _chunks(ids: list[str]) -> list[list[str]]:
    return [ids[i : i + _ID_CHUNK] for i in range(0, len(ids), _ID_CHUNK)]


async def get_protected_article_ids(session: AsyncSession, article_ids: list[str]) -> set[str]:
    """返回被收藏或带有正向显式反馈的文章 ID."""
    protected: set[str] = set()
    for chunk in _chunks(article_ids):
        starred = await session.execute(
            select(StarredArticle.article_id).where(
                StarredArticle.article_id.in_(chunk)  # type: ignore[attr-defined]
            )
        )
        protected.update(starred.scalars().all())

        liked = await session.execute(
            select(ArticleFeedback.article_id).where(
                ArticleFeedback.article_id.in_(chunk),  # type: ignore[attr-defined]
                ArticleFeedback.feedback_type == FeedbackType.EXPLICIT,
                ArticleFeedback.feedback_value > 0,
            )
        )
        protected.update(liked.scalars().all())
    return protected


async def select_cleanup_candidates(
    session: AsyncSession,
    feed_id: str,
    options: CleanupOptions,
    now: datetime | None = None,
) -> tuple[list[CleanupCandidate], int]:
    """
    计算删除候选.

    Args:
        session: 数据库会话
        feed_id: Feed ID
        options: 清理参数
        now: 计算年龄的基准时间，默认当前 UTC

    Returns:
        (候选列表, 因收藏/反馈被保留的文章数)
    """
    cutoff = (now or utcnow()) - timedelta(days=options.max_age_days)

    stmt = (
        select(Article.id, Article.title, Article.published_at, Article.created_at)
        .where(Article.feed_id == feed_id)
        .order_by(
            Article.published_at.desc().nulls_last(),  # type: ignore[union-attr]
            Article.created_at.desc(),  # type: ignore[attr-defined]
            Article.id.desc(),  # type: ignore[attr-defined]
        )
    )
    rows = (await session.execute(stmt)).all()

    matched: list[CleanupCandidate] = []
    for rank, (article_id, title, published_at, created_at) in enumerate(rows):
        reasons: list[str] = []
        if (published_at or created_at) < cutoff:
            reasons.append("age")
        if rank >= options.max_articles_per_feed:
            reasons.append("count")
        if reasons:
            matched.append(CleanupCandidate(article_id, title, published_at, reasons))

    if not options.preserve_starred or not matched:
        return matched, 0

    protected = await get_protected_article_ids(session, [c.article_id for c in matched])
    candidates = [c for c in matched if c.article_id not in protected]
    return candidates, len(matched) - len(candidates)


async def delete_articles(session: AsyncSession, article_ids: list[str]) -> None:
    """删除文章及其阅读、收藏、反馈记录（不提交）."""
    for chunk in _chunks(article_ids):
        for model in (ReadArticle, StarredArticle, ArticleFeedback):
            await session.execute(
                delete(model).where(model.article_id.in_(chunk))  # type: ignore[attr-defined]
            )
        await session.execute(
            delete(Article).where(Article.id.in_(chunk))  # type: ignore[attr-defined]
        )


async def cleanup_feed(
    session: AsyncSession,
    feed_id: str,
    options: CleanupOptions,
    now: datetime | None = None,
) -> CleanupResult:
    """按保留策略清理单个 Feed 的文章."""
    feed = await session.get(Feed, feed_id)
    if feed is None:
        raise NotFoundError("Feed 不存在")

    candidates, preserved = await select_cleanup_candidates(session, feed_id, options, now)
    result = CleanupResult(
        feed_id=feed_id,
        deleted=len(candidates),
        preserved=preserved,
        dry_run=options.dry_run,
        by_age=sum(1 for c in candidates if "age" in c.reasons),
        by_count=sum(1 for c in candidates if "count" in c.reasons),
        details=candidates,
    )

    if options.dry_run or not candidates:
        return result

    await delete_articles(session, [c.article_id for c in candidates])
    await session.commit()
    logger.info(
        f"Feed {feed_id} 清理完成: 删除={result.deleted} "
        f"(过期={result.by_age}, 超量={result.by_count}), 保留={preserved}"
    )
    return result


async def resolve_retention(session: AsyncSession, feed_id: str) -> tuple[int, int]:
    """
    取 Feed 的保留参数 (max_age_days, max_articles_per_feed).

    共享 Feed 取所有订阅者中最宽松的设置，无人订阅时使用 Feed 默认设置和系统默认值。
    """
    stmt = select(UserFeed.user_id).where(UserFeed.feed_id == feed_id)
    user_ids = list((await session.execute(stmt)).scalars().all())

    if not user_ids:
        effective = await get_effective_settings(session, None, feed_id)
        return effective.max_article_age, effective.max_articles_per_feed

    max_age = 0
    max_count = 0
    for user_id in user_ids:
        effective = await get_effective_settings(session, user_id, feed_id)
        max_age = max(max_age, effective.max_article_age)
        max_count = max(max_count, effective.max_articles_per_feed)
    return max_age, max_count


async def cleanup_feed_with_settings(
    session: AsyncSession,
    feed_id: str,
    preserve_starred: bool = True,
    dry_run: bool = False,
) -> CleanupResult:
    """按解析出的保留设置清理单个 Feed."""
    max_age, max_count = await resolve_retention(session, feed_id)
    options = CleanupOptions(
        max_age_days=max_age,
        max_articles_per_feed=max_count,
        preserve_starred=preserve_starred,
        dry_run=dry_run,
    )
    return await cleanup_feed(session, feed_id, options)


async def cleanup_all_feeds(
    session: AsyncSession,
    preserve_starred: bool = True,
    dry_run: bool = False,
) -> CleanupSummary:
    """清理所有 Feed，单个 Feed 失败不影响其余 Feed."""
    feed_ids = list((await session.execute(select(Feed.id))).scalars().all())
    summary = CleanupSummary(dry_run=dry_run)

    for feed_id in feed_ids:
        try:
            result = await cleanup_feed_with_settings(
                session, feed_id, preserve_starred=preserve_starred, dry_run=dry_run
            )
        except Exception:
            logger.exception(f"Feed {feed_id} 清理失败")
            await session.rollback()
            continue

        summary.feeds_processed += 1
        summary.deleted += result.deleted
        summary.preserved += result.preserved
        if result.deleted or result.preserved:
            summary.results.append(result)

    logger.info(
        f"全部 Feed 清理完成: feeds={summary.feeds_processed}, "
        f"删除={summary.deleted}, 保留={summary.preserved}, dry_run={dry_run}"
    )
    return summary


async def get_cleanup_stats(session: AsyncSession) -> dict:
    """文章存量统计."""
    total = (await session.execute(select(func.count()).select_from(Article))).scalar_one()
    starred = (
        await session.execute(
            select(func.count(func.distinct(StarredArticle.article_id)))
        )
    ).scalar_one()
    oldest = (await session.execute(select(func.min(Article.published_at)))).scalar_one()

    per_feed_stmt = (
        select(Feed.id, Feed.title, func.count(Article.id))  # type: ignore[arg-type]
        .join(Article, Article.feed_id == Feed.id, isouter=True)
        .group_by(Feed.id, Feed.title)
        .order_by(func.count(Article.id).desc())  # type: ignore[arg-type]
    )
    per_feed = [
        {"feed_id": feed_id, "title": title, "articles": count}
        for feed_id, title, count in (await session.execute(per_feed_stmt)).all()
    ]

    return {
        "total_articles": total,
        "starred_articles": starred,
        "oldest_article": oldest.isoformat() if oldest else None,
        "feeds": per_feed,
    }
