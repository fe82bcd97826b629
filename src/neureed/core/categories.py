"""用户分类管理."""

import logging
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.core.settings_cascade import apply_settings_update, parse_settings, to_storage
from neureed.core.subscriptions import get_subscription
from neureed.errors import ConflictError, NotFoundError, ValidationError
from neureed.models.feed import UserCategory, UserFeedCategory
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)


async def get_category(session: AsyncSession, user_id: str, category_id: str) -> UserCategory:
    """获取用户分类."""
    category = await session.get(UserCategory, category_id)
    if category is None or category.user_id != user_id:
        raise NotFoundError("分类不存在")
    return category


async def _ensure_unique_name(
    session: AsyncSession, user_id: str, name: str, exclude_id: str | None = None
) -> None:
    stmt = select(UserCategory.id).where(
        UserCategory.user_id == user_id,
        func.lower(UserCategory.name) == name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(UserCategory.id != exclude_id)
    if (await session.execute(stmt)).first() is not None:
        raise ConflictError("分类名称已存在")


def _clean_name(name: str) -> str:
    name = name.strip()
    if not name:
        msg = "分类名称不能为空"
        raise ValidationError(msg)
    return name


async def list_categories(session: AsyncSession, user_id: str) -> list[tuple[UserCategory, int]]:
    """按排序返回分类及其订阅数."""
    stmt = (
        select(UserCategory, func.count(UserFeedCategory.id))  # type: ignore[arg-type]
        .join(UserFeedCategory, UserFeedCategory.category_id == UserCategory.id, isouter=True)
        .where(UserCategory.user_id == user_id)
        .group_by(UserCategory.id)
        .order_by(UserCategory.sort_order.asc(), UserCategory.id.asc())  # type: ignore[attr-defined]
    )
    return [(category, count) for category, count in (await session.execute(stmt)).all()]


async def create_category(
    session: AsyncSession,
    user_id: str,
    name: str,
    description: str | None = None,
    icon: str | None = None,
    settings: dict[str, Any] | None = None,
) -> UserCategory:
    """创建分类，排在现有分类之后."""
    name = _clean_name(name)
    await _ensure_unique_name(session, user_id, name)
    overrides = apply_settings_update(None, settings or {})

    max_order = (
        await session.execute(
            select(func.max(UserCategory.sort_order)).where(UserCategory.user_id == user_id)
        )
    ).scalar_one()

    category = UserCategory(
        user_id=user_id,
        name=name,
        description=description,
        icon=icon,
        sort_order=0 if max_order is None else max_order + 1,
        settings=to_storage(overrides),
    )
    session.add(category)
    await session.commit()
    return category


async def update_category(
    session: AsyncSession, user_id: str, category_id: str, changes: dict[str, Any]
) -> UserCategory:
    """更新分类；settings 按 PATCH 语义合并."""
    category = await get_category(session, user_id, category_id)

    if "name" in changes:
        name = _clean_name(changes["name"] or "")
        await _ensure_unique_name(session, user_id, name, exclude_id=category_id)
        category.name = name
    if "description" in changes:
        category.description = changes["description"]
    if "icon" in changes:
        category.icon = changes["icon"]
    if "settings" in changes:
        current = parse_settings(category.settings)
        category.settings = to_storage(apply_settings_update(current, changes["settings"] or {}))

    category.updated_at = utcnow()
    await session.commit()
    return category


async def delete_category(session: AsyncSession, user_id: str, category_id: str) -> None:
    """删除分类及其订阅关联（订阅本身保留）."""
    category = await get_category(session, user_id, category_id)
    await session.execute(
        delete(UserFeedCategory).where(UserFeedCategory.category_id == category_id)
    )
    await session.delete(category)
    await session.commit()


async def reorder_categories(
    session: AsyncSession, user_id: str, category_ids: list[str]
) -> list[UserCategory]:
    """按给定顺序重排分类，所有 ID 必须属于该用户."""
    if len(set(category_ids)) != len(category_ids):
        msg = "分类 ID 不能重复"
        raise ValidationError(msg)

    stmt = select(UserCategory).where(
        UserCategory.user_id == user_id,
        UserCategory.id.in_(category_ids),  # type: ignore[attr-defined]
    )
    categories = {c.id: c for c in (await session.execute(stmt)).scalars().all()}
    missing = [cid for cid in category_ids if cid not in categories]
    if missing:
        msg = f"分类不存在: {', '.join(missing)}"
        raise NotFoundError(msg)

    for index, category_id in enumerate(category_ids):
        categories[category_id].sort_order = index
    await session.commit()
    return [categories[cid] for cid in category_ids]


async def assign_feed(
    session: AsyncSession, user_id: str, feed_id: str, category_id: str
) -> UserFeedCategory:
    """把订阅加入分类，已加入时直接返回现有关联."""
    user_feed = await get_subscription(session, user_id, feed_id)
    await get_category(session, user_id, category_id)

    stmt = select(UserFeedCategory).where(
        UserFeedCategory.user_feed_id == user_feed.id,
        UserFeedCategory.category_id == category_id,
    )
    link = (await session.execute(stmt)).scalar_one_or_none()
    if link is not None:
        return link

    link = UserFeedCategory(user_feed_id=user_feed.id, category_id=category_id)
    session.add(link)
    await session.commit()
    return link


async def unassign_feed(session: AsyncSession, user_id: str, feed_id: str, category_id: str) -> None:
    """把订阅移出分类."""
    user_feed = await get_subscription(session, user_id, feed_id)
    result = await session.execute(
        delete(UserFeedCategory).where(
            UserFeedCategory.user_feed_id == user_feed.id,
            UserFeedCategory.category_id == category_id,
        )
    )
    if not result.rowcount:
        raise NotFoundError("订阅不在该分类中")
    await session.commit()


async def get_feed_category_ids(session: AsyncSession, user_feed_id: str) -> list[str]:
    """订阅所属的分类 ID."""
    stmt = select(UserFeedCategory.category_id).where(UserFeedCategory.user_feed_id == user_feed_id)
    return list((await session.execute(stmt)).scalars().all())
