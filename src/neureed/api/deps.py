"""API 公共依赖."""

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from neureed.core.refresh import FeedRefresher
from neureed.core.users import ensure_user
from neureed.errors import AuthenticationError, ConfigurationError, PermissionDeniedError
from neureed.models.database import async_session_maker, get_session
from neureed.scheduler import JobScheduler


async def get_current_user_id(
    x_user_id: str | None = Header(None, description="当前用户 ID"),
    session: AsyncSession = Depends(get_session),
) -> str:
    """从 X-User-Id 请求头读取用户身份，首次出现的用户自动创建."""
    user_id = (x_user_id or "").strip()
    if not user_id:
        msg = "缺少用户身份（X-User-Id）"
        raise AuthenticationError(msg)
    await ensure_user(session, user_id)
    return user_id


async def require_admin(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> str:
    """要求当前用户是管理员."""
    user = await ensure_user(session, user_id)
    if user.role != "admin":
        msg = "需要管理员权限"
        raise PermissionDeniedError(msg)
    return user_id


def get_refresher(request: Request) -> FeedRefresher:
    """应用共享的刷新器."""
    refresher = getattr(request.app.state, "refresher", None)
    if refresher is None:
        msg = "刷新服务未启动"
        raise ConfigurationError(msg)
    return refresher


def get_scheduler(request: Request) -> JobScheduler:
    """应用持有的任务调度器."""
    scheduler = getattr(request.app.state, "scheduler", None)
    if scheduler is None:
        msg = "定时任务未启用"
        raise ConfigurationError(msg)
    return scheduler


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    """后台任务使用的会话工厂."""
    factory = getattr(request.app.state, "session_factory", None)
    return factory or async_session_maker()
