"""文章列表、已读与收藏状态."""

from dataclasses import dataclass

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.errors import NotFoundError
from neureed.models.article import Article, ReadArticle, StarredArticle
from neureed.models.feed import UserFeed


@dataclass
class ArticleView:
    """带用户状态的文章."""

    article: Article
    is_read: bool
    is_starred: bool


def _subscribed_feed_ids(user_id: str):
    return select(UserFeed.feed_id).where(UserFeed.user_id == user_id)


async def get_article_for_user(session: AsyncSession, user_id: str, article_id: str) -> Article:
    """获取用户已订阅 Feed 中的文章."""
    article = await session.get(Article, article_id)
    if article is None:
        raise NotFoundError("文章不存在")

    stmt = select(UserFeed.id).where(
        UserFeed.user_id == user_id, UserFeed.feed_id == article.feed_id
    )
    if (await session.execute(stmt)).first() is None:
        raise NotFoundError("文章不存在")
    return article


async def _state_sets(
    session: AsyncSession, user_id: str, article_ids: list[str]
) -> tuple[set[str], set[str]]:
    if not article_ids:
        return set(), set()
    read_stmt = select(ReadArticle.article_id).where(
        ReadArticle.user_id == user_id,
        ReadArticle.article_id.in_(article_ids),  # type: ignore[attr-defined]
    )
    star_stmt = select(StarredArticle.article_id).where(
        StarredArticle.user_id == user_id,
        StarredArticle.article_id.in_(article_ids),  # type: ignore[attr-defined]
    )
    read_ids = set((await session.execute(read_stmt)).scalars().all())
    starred_ids = set((await session.execute(star_stmt)).scalars().all())
    return read_ids, starred_ids


async def list_articles(
    session: AsyncSession,
    user_id: str,
    feed_id: str | None = None,
    unread_only: bool = False,
    starred_only: bool = False,
    limit: int = 20,
    offset: int = 0,
) -> tuple[list[ArticleView], int]:
    """分页列出用户订阅中的文章，按发布时间倒序."""
    conditions = [Article.feed_id.in_(_subscribed_feed_ids(user_id))]  # type: ignore[attr-defined]
    if feed_id is not None:
        conditions.append(Article.feed_id == feed_id)
    if unread_only:
        read_ids = select(ReadArticle.article_id).where(ReadArticle.user_id == user_id)
        conditions.append(Article.id.not_in(read_ids))  # type: ignore[attr-defined]
    if starred_only:
        starred_ids = select(StarredArticle.article_id).where(StarredArticle.user_id == user_id)
        conditions.append(Article.id.in_(starred_ids))  # type: ignore[attr-defined]

    total = (
        await session.execute(select(func.count()).select_from(Article).where(*conditions))
    ).scalar_one()

    stmt = (
        select(Article)
        .where(*conditions)
        .order_by(
            Article.published_at.desc().nulls_last(),  # type: ignore[union-attr]
            Article.created_at.desc(),  # type: ignore[attr-defined]
        )
        .offset(offset)
        .limit(limit)
    )
    articles = list((await session.execute(stmt)).scalars().all())
    read_ids, starred_ids = await _state_sets(session, user_id, [a.id for a in articles])

    views = [
        ArticleView(article=a, is_read=a.id in read_ids, is_starred=a.id in starred_ids)
        for a in articles
    ]
    return views, total


async def get_article_view(session: AsyncSession, user_id: str, article_id: str) -> ArticleView:
    """获取单篇文章及用户状态."""
    article = await get_article_for_user(session, user_id, article_id)
    read_ids, starred_ids = await _state_sets(session, user_id, [article_id])
    return ArticleView(article, article_id in read_ids, article_id in starred_ids)


async def mark_read(session: AsyncSession, user_id: str, article_id: str) -> ReadArticle:
    """标记已读（重复标记返回已有记录）."""
    await get_article_for_user(session, user_id, article_id)
    stmt = select(ReadArticle).where(
        ReadArticle.user_id == user_id, ReadArticle.article_id == article_id
    )
    record = (await session.execute(stmt)).scalar_one_or_none()
    if record is None:
        record = ReadArticle(user_id=user_id, article_id=article_id)
        session.add(record)
        await session.commit()
    return record


async def mark_unread(session: AsyncSession, user_id: str, article_id: str) -> None:
    """标记未读."""
    await get_article_for_user(session, user_id, article_id)
    await session.execute(
        delete(ReadArticle).where(
            ReadArticle.user_id == user_id, ReadArticle.article_id == article_id
        )
    )
    await session.commit()


async def mark_feed_read(session: AsyncSession, user_id: str, feed_id: str | None = None) -> int:
    """把订阅中（或指定 Feed 中）的未读文章全部标记已读，返回数量."""
    conditions = [
        Article.feed_id.in_(_subscribed_feed_ids(user_id)),  # type: ignore[attr-defined]
        Article.id.not_in(  # type: ignore[attr-defined]
            select(ReadArticle.article_id).where(ReadArticle.user_id == user_id)
        ),
    ]
    if feed_id is not None:
        conditions.append(Article.feed_id == feed_id)

    article_ids = list((await session.execute(select(Article.id).where(*conditions))).scalars().all())
    for article_id in article_ids:
        session.add(ReadArticle(user_id=user_id, article_id=article_id))
    await session.commit()
    return len(article_ids)


async def star_article(session: AsyncSession, user_id: str, article_id: str) -> StarredArticle:
    """收藏文章."""
    await get_article_for_user(session, user_id, article_id)
    stmt = select(StarredArticle).where(
        StarredArticle.user_id == user_id, StarredArticle.article_id == article_id
    )
    record = (await session.execute(stmt)).scalar_one_or_none()
    if record is None:
        record = StarredArticle(user_id=user_id, article_id=article_id)
        session.add(record)
        await session.commit()
    return record


async def unstar_article(session: AsyncSession, user_id: str, article_id: str) -> None:
    """取消收藏."""
    await get_article_for_user(session, user_id, article_id)
    await session.execute(
        delete(StarredArticle).where(
            StarredArticle.user_id == user_id, StarredArticle.article_id == article_id
        )
    )
    await session.commit()


async def get_unread_counts(session: AsyncSession, user_id: str) -> dict[str, int]:
    """每个订阅的未读数."""
    stmt = (
        select(Article.feed_id, func.count(Article.id))  # type: ignore[arg-type]
        .where(
            Article.feed_id.in_(_subscribed_feed_ids(user_id)),  # type: ignore[attr-defined]
            Article.id.not_in(  # type: ignore[attr-defined]
                select(ReadArticle.article_id).where(ReadArticle.user_id == user_id)
            ),
        )
        .group_by(Article.feed_id)
    )
    return {feed_id: count for feed_id, count in (await session.execute(stmt)).all()}
