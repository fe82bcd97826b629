"""用户、角色与用户偏好."""

import logging
from typing import Any

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.core.settings_cascade import ensure_valid
from neureed.errors import ConflictError, NotFoundError, ValidationError
from neureed.models.user import User, UserPreferences
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

ROLES = ("user", "admin")

# 偏好字段 -> 对应的设置项
PREFERENCE_SETTING_KEYS = {
    "default_refresh_interval": "refresh_interval",
    "default_max_articles_per_feed": "max_articles_per_feed",
    "default_max_article_age": "max_article_age",
    "default_auto_summarize": "auto_summarize",
}


async def ensure_user(session: AsyncSession, user_id: str) -> User:
    """
    获取用户，不存在时创建.

    系统中的第一个用户自动成为管理员。
    """
    user = await session.get(User, user_id)
    if user is not None:
        return user

    has_users = (await session.execute(select(User.id).limit(1))).first() is not None
    user = User(id=user_id, role="user" if has_users else "admin")
    session.add(user)
    try:
        await session.commit()
    except IntegrityError:
        # 并发请求已创建该用户
        await session.rollback()
        user = await session.get(User, user_id)
        if user is None:
            raise
        return user

    logger.info(f"新用户 {user_id}，角色: {user.role}")
    return user


async def list_users(session: AsyncSession) -> list[User]:
    """列出所有用户."""
    result = await session.execute(select(User).order_by(User.created_at.asc()))  # type: ignore[attr-defined]
    return list(result.scalars().all())


async def set_user_role(session: AsyncSession, user_id: str, role: str) -> User:
    """修改用户角色，不允许移除最后一个管理员."""
    if role not in ROLES:
        msg = f"角色必须是 {'/'.join(ROLES)} 之一"
        raise ValidationError(msg)

    user = await session.get(User, user_id)
    if user is None:
        raise NotFoundError("用户不存在")

    if user.role == "admin" and role != "admin":
        admin_count = (
            await session.execute(
                select(func.count()).select_from(User).where(User.role == "admin")
            )
        ).scalar_one()
        if admin_count <= 1:
            raise ConflictError("不能移除最后一个管理员")

    user.role = role
    await session.commit()
    logger.info(f"用户 {user_id} 角色已改为 {role}")
    return user


async def get_preferences(session: AsyncSession, user_id: str) -> UserPreferences:
    """获取用户偏好，不存在时返回未保存的空偏好."""
    prefs = await session.get(UserPreferences, user_id)
    return prefs or UserPreferences(user_id=user_id)


async def update_preferences(
    session: AsyncSession, user_id: str, changes: dict[str, Any]
) -> UserPreferences:
    """更新用户偏好；默认设置项按设置规则校验，None 表示恢复系统默认."""
    allowed = {*PREFERENCE_SETTING_KEYS, "bounce_threshold"}
    unknown = [key for key in changes if key not in allowed]
    if unknown:
        msg = f"未知偏好项: {', '.join(unknown)}"
        raise ValidationError(msg)

    ensure_valid(
        {
            PREFERENCE_SETTING_KEYS[key]: value
            for key, value in changes.items()
            if key in PREFERENCE_SETTING_KEYS
        }
    )
    threshold = changes.get("bounce_threshold")
    if threshold is not None and not 0 < threshold < 1:
        msg = "跳出阈值必须在 0 到 1 之间"
        raise ValidationError(msg)

    prefs = await session.get(UserPreferences, user_id)
    if prefs is None:
        prefs = UserPreferences(user_id=user_id)
        session.add(prefs)

    for key, value in changes.items():
        setattr(prefs, key, value)
    prefs.updated_at = utcnow()
    await session.commit()
    return prefs
