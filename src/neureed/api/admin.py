"""管理 API：用户、Feed 默认设置和文章清理."""

from dataclasses import asdict
from typing import Any, Literal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.api.deps import require_admin
from neureed.core import cleanup, subscriptions, users
from neureed.models.database import get_session
from neureed.models.feed import Feed
from neureed.models.user import User

router = APIRouter(prefix="/api/admin", tags=["admin"])


class RoleUpdateRequest(BaseModel):
    """角色修改请求."""

    role: Literal["user", "admin"]


class FeedUpdateRequest(BaseModel):
    """Feed 级设置更新请求，未提交的字段保持不变."""

    title: str | None = None
    fetch_full_text: str | None = None
    settings: dict[str, Any] | None = None
    reset_errors: bool | None = None


class CleanupRequest(BaseModel):
    """
    清理请求.

    不指定 feed_id 时清理全部 Feed；不指定保留参数时使用各 Feed 解析出的设置。
    """

    feed_id: str | None = None
    dry_run: bool = False
    preserve_starred: bool = True
    max_article_age: int | None = Field(None, ge=1, le=365)
    max_articles_per_feed: int | None = Field(None, ge=1)


def _user_to_dict(user: User) -> dict:
    return {
        "id": user.id,
        "email": user.email,
        "name": user.name,
        "role": user.role,
        "created_at": user.created_at.isoformat(),
    }


def _feed_to_dict(feed: Feed) -> dict:
    return {
        "id": feed.id,
        "url": feed.url,
        "title": feed.title,
        "fetch_full_text": feed.fetch_full_text,
        "settings": feed.settings,
        "error_count": feed.error_count,
        "last_error": feed.last_error,
    }


@router.get("/users")
async def list_users(
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """用户列表."""
    return {"items": [_user_to_dict(u) for u in await users.list_users(session)]}


@router.put("/users/{user_id}/role")
async def set_role(
    user_id: str,
    body: RoleUpdateRequest,
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """修改用户角色."""
    user = await users.set_user_role(session, user_id, body.role)
    return _user_to_dict(user)


@router.patch("/feeds/{feed_id}")
async def update_feed(
    feed_id: str,
    body: FeedUpdateRequest,
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """更新 Feed 默认设置、全文抓取模式或清零错误计数."""
    feed = await subscriptions.update_feed(session, feed_id, body.model_dump(exclude_unset=True))
    return _feed_to_dict(feed)


@router.post("/cleanup")
async def run_cleanup(
    body: CleanupRequest,
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """执行文章清理，dry_run 时只返回将被删除的文章."""
    if body.feed_id is None:
        summary = await cleanup.cleanup_all_feeds(
            session, preserve_starred=body.preserve_starred, dry_run=body.dry_run
        )
        return asdict(summary)

    if body.max_article_age is None and body.max_articles_per_feed is None:
        result = await cleanup.cleanup_feed_with_settings(
            session, body.feed_id, preserve_starred=body.preserve_starred, dry_run=body.dry_run
        )
        return asdict(result)

    max_age, max_count = await cleanup.resolve_retention(session, body.feed_id)
    options = cleanup.CleanupOptions(
        max_age_days=body.max_article_age or max_age,
        max_articles_per_feed=body.max_articles_per_feed or max_count,
        preserve_starred=body.preserve_starred,
        dry_run=body.dry_run,
    )
    return asdict(await cleanup.cleanup_feed(session, body.feed_id, options))


@router.get("/cleanup/stats")
async def cleanup_stats(
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """文章存量统计."""
    return await cleanup.get_cleanup_stats(session)


@router.get("/feeds")
async def list_all_feeds(
    errors_only: bool = Query(False, description="只看有错误的 Feed"),
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """全部 Feed（跨用户）."""
    stmt = select(Feed).order_by(Feed.title.asc())  # type: ignore[attr-defined]
    if errors_only:
        stmt = stmt.where(Feed.error_count > 0)
    feeds = (await session.execute(stmt)).scalars().all()
    return {"total": len(feeds), "items": [_feed_to_dict(f) for f in feeds]}
