"""Feed 订阅 API."""

import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.api.deps import get_current_user_id, get_refresher
from neureed.core import categories, opml, subscriptions
from neureed.core.reading import get_unread_counts
from neureed.core.refresh import FeedRefresher, RefreshResult
from neureed.core.settings_cascade import get_effective_settings, validate_settings
from neureed.errors import UpstreamError
from neureed.models.database import get_session
from neureed.models.feed import Feed, UserFeed

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feeds", tags=["feeds"])


class SubscribeRequest(BaseModel):
    """订阅请求."""

    url: str = Field(..., description="RSS/Atom 地址")
    custom_name: str | None = None
    settings: dict[str, Any] | None = None


class UpdateSubscriptionRequest(BaseModel):
    """更新订阅请求，未提交的字段保持不变."""

    custom_name: str | None = None
    settings: dict[str, Any] | None = None


def _subscription_to_dict(user_feed: UserFeed, feed: Feed, unread: int = 0) -> dict:
    return {
        "id": feed.id,
        "subscription_id": user_feed.id,
        "title": user_feed.custom_name or feed.title,
        "feed_title": feed.title,
        "custom_name": user_feed.custom_name,
        "url": feed.url,
        "site_url": feed.site_url,
        "description": feed.description,
        "fetch_full_text": feed.fetch_full_text,
        "settings": user_feed.settings,
        "unread_count": unread,
        "error_count": feed.error_count,
        "last_error": feed.last_error,
        "last_fetched": feed.last_fetched.isoformat() if feed.last_fetched else None,
        "subscribed_at": user_feed.subscribed_at.isoformat(),
    }


def _result_to_dict(result: RefreshResult) -> dict:
    data = asdict(result)
    data["duration"] = round(result.duration, 3)
    return data


@router.get("")
async def list_feeds(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取订阅列表."""
    items = await subscriptions.list_subscriptions(session, user_id)
    unread = await get_unread_counts(session, user_id)
    return {
        "total": len(items),
        "items": [_subscription_to_dict(uf, feed, unread.get(feed.id, 0)) for uf, feed in items],
    }


@router.post("", status_code=201)
async def subscribe(
    body: SubscribeRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    refresher: FeedRefresher = Depends(get_refresher),
) -> dict:
    """订阅 Feed，并立即尝试刷新一次."""
    user_feed, feed = await subscriptions.subscribe(
        session, user_id, body.url, custom_name=body.custom_name, settings=body.settings
    )

    refresh: dict | None = None
    try:
        result = await refresher.refresh_feed(feed.id, user_id)
        refresh = _result_to_dict(result)
    except Exception as e:
        logger.warning(f"订阅后首次刷新失败 {feed.url}: {e}")

    await session.refresh(feed)
    data = _subscription_to_dict(user_feed, feed)
    data["refresh"] = refresh
    return data


@router.post("/refresh")
async def refresh_all(
    force: bool = Query(False, description="忽略刷新间隔"),
    user_id: str = Depends(get_current_user_id),
    refresher: FeedRefresher = Depends(get_refresher),
) -> dict:
    """刷新当前用户到期的订阅."""
    outcome = await refresher.refresh_user_feeds(user_id, force=force)
    return {
        "summary": asdict(outcome.summary),
        "results": [_result_to_dict(r) for r in outcome.results],
        "notified": user_id in outcome.notified_users,
    }


@router.post("/settings/validate")
async def validate_feed_settings(body: dict[str, Any]) -> dict:
    """校验一组设置覆盖项."""
    validation = validate_settings(body)
    return {"valid": validation.valid, "errors": validation.errors}


@router.get("/opml")
async def export_opml(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> Response:
    """导出订阅为 OPML."""
    content = await opml.export_opml(session, user_id)
    return Response(
        content=content,
        media_type="text/x-opml",
        headers={"Content-Disposition": 'attachment; filename="neureed-subscriptions.opml"'},
    )


@router.post("/opml")
async def import_opml(
    request: Request,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    refresher: FeedRefresher = Depends(get_refresher),
) -> dict:
    """从请求体中的 OPML 文档导入订阅，新订阅在后台刷新."""
    result = await opml.import_opml(session, user_id, await request.body())
    if result.new_feed_ids:
        background_tasks.add_task(refresher.refresh_feeds, result.new_feed_ids, user_id)
    return asdict(result)


@router.get("/{feed_id}")
async def get_feed(
    feed_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取订阅详情."""
    user_feed = await subscriptions.get_subscription(session, user_id, feed_id)
    feed = await session.get(Feed, feed_id)
    unread = await get_unread_counts(session, user_id)
    data = _subscription_to_dict(user_feed, feed, unread.get(feed_id, 0))  # type: ignore[arg-type]
    data["category_ids"] = await categories.get_feed_category_ids(session, user_feed.id)
    return data


@router.patch("/{feed_id}")
async def update_feed(
    feed_id: str,
    body: UpdateSubscriptionRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """更新订阅显示名和覆盖设置（settings 中值为 null 的项清除覆盖）."""
    user_feed = await subscriptions.update_subscription(
        session, user_id, feed_id, body.model_dump(exclude_unset=True)
    )
    return {"id": feed_id, "custom_name": user_feed.custom_name, "settings": user_feed.settings}


@router.delete("/{feed_id}")
async def unsubscribe(
    feed_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """取消订阅."""
    feed_deleted = await subscriptions.unsubscribe(session, user_id, feed_id)
    return {"id": feed_id, "unsubscribed": True, "feed_deleted": feed_deleted}


@router.get("/{feed_id}/settings")
async def get_feed_settings(
    feed_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取订阅的有效设置及每项来源."""
    await subscriptions.get_subscription(session, user_id, feed_id)
    effective = await get_effective_settings(session, user_id, feed_id)
    return effective.model_dump()


@router.post("/{feed_id}/refresh")
async def refresh_feed(
    feed_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    refresher: FeedRefresher = Depends(get_refresher),
) -> dict:
    """立即刷新单个订阅."""
    await subscriptions.get_subscription(session, user_id, feed_id)
    result = await refresher.refresh_feed(feed_id, user_id)
    if not result.success:
        raise UpstreamError(result.error or "刷新失败")
    return _result_to_dict(result)


@router.put("/{feed_id}/categories/{category_id}")
async def assign_category(
    feed_id: str,
    category_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """把订阅加入分类."""
    await categories.assign_feed(session, user_id, feed_id, category_id)
    return {"feed_id": feed_id, "category_id": category_id, "assigned": True}


@router.delete("/{feed_id}/categories/{category_id}")
async def unassign_category(
    feed_id: str,
    category_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """把订阅移出分类."""
    await categories.unassign_feed(session, user_id, feed_id, category_id)
    return {"feed_id": feed_id, "category_id": category_id, "assigned": False}
