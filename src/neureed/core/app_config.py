"""管理员可修改的动态配置."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from neureed.config import (
    SettingValue,
    get_effective_settings,
    set_dynamic_settings,
)
from neureed.errors import ValidationError
from neureed.models.app_settings import DYNAMIC_SETTING_KEYS, AppSettings
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

PROVIDERS = ("openai", "ollama")
POSITIVE_INT_KEYS = (
    "refresh_concurrency",
    "max_feed_errors",
    "notification_retention_count",
    "notification_retention_days",
)


async def load_dynamic_settings(session: AsyncSession) -> None:
    """从数据库加载动态配置到缓存."""
    db_settings = await session.get(AppSettings, 1)
    if db_settings is None:
        set_dynamic_settings({})
        return

    settings_dict: dict[str, SettingValue] = {
        key: getattr(db_settings, key) for key in DYNAMIC_SETTING_KEYS
    }
    set_dynamic_settings(settings_dict)


def validate_app_settings(changes: dict[str, Any]) -> None:
    """校验动态配置修改."""
    errors: list[str] = []
    for key, value in changes.items():
        if key not in DYNAMIC_SETTING_KEYS:
            errors.append(f"未知配置项: {key}")
        elif value is None:
            continue
        elif key in ("llm_provider", "embedding_provider") and value not in PROVIDERS:
            errors.append(f"{key} 必须是 {'/'.join(PROVIDERS)} 之一")
        elif key in POSITIVE_INT_KEYS and (not isinstance(value, int) or value < 1):
            errors.append(f"{key} 必须是正整数")

    if errors:
        raise ValidationError("; ".join(errors), errors=errors)


async def update_app_settings(session: AsyncSession, changes: dict[str, Any]) -> AppSettings:
    """保存动态配置并刷新缓存，值为 None 的项恢复为环境变量配置."""
    validate_app_settings(changes)

    db_settings = await session.get(AppSettings, 1)
    if db_settings is None:
        db_settings = AppSettings(id=1)
        session.add(db_settings)

    for key, value in changes.items():
        setattr(db_settings, key, value)
    db_settings.updated_at = utcnow()
    await session.commit()

    await load_dynamic_settings(session)
    logger.info(f"动态配置已更新: {', '.join(sorted(changes))}")
    return db_settings


def describe_settings() -> dict[str, Any]:
    """当前生效的配置（隐藏密钥）."""
    settings = get_effective_settings()
    view: dict[str, Any] = {key: getattr(settings, key, None) for key in DYNAMIC_SETTING_KEYS}
    view["openai_api_key"] = None
    view["openai_configured"] = bool(settings.openai_api_key)
    view["fetch_timeout_seconds"] = settings.fetch_timeout_seconds
    view["enable_scheduler"] = settings.enable_scheduler
    return view
