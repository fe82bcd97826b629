"""应用配置管理."""

from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

SettingValue = str | int | float | bool | None


class Settings(BaseSettings):
    """应用配置（环境变量）."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # 应用配置
    database_url: str = "sqlite+aiosqlite:///./neureed.db"

    # 刷新配置
    fetch_timeout_seconds: int = 20
    refresh_concurrency: int = 5
    max_feed_errors: int = 10
    user_agent: str = "NeuReed/1.0 (RSS/Atom Reader)"

    # 通知保留策略
    notification_retention_count: int = 100
    notification_retention_days: int = 30

    # 最后一个订阅者取消订阅时是否删除 Feed 及其文章
    delete_orphaned_feeds: bool = False

    # 隐式反馈阈值（阅读时长 / 预计时长）
    bounce_threshold: float = 0.25
    completion_threshold: float = 0.9

    # LLM 配置
    summarization_enabled: bool = False
    llm_provider: Literal["openai", "ollama"] = "openai"

    # OpenAI 配置
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_model: str = "gpt-4o-mini"

    # Ollama 配置
    ollama_host: str = "http://localhost:11434"
    ollama_model: str = "llama3.2"

    # Embedding 配置
    embedding_enabled: bool = False
    embedding_provider: Literal["openai", "ollama"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    ollama_embedding_model: str = "nomic-embed-text"
    embedding_auto_generate: bool = True

    # 定时任务配置（cron 表达式）
    enable_scheduler: bool = True
    feed_refresh_cron: str = "*/30 * * * *"
    cleanup_cron: str = "0 3 * * *"
    pattern_decay_cron: str = "0 4 * * *"
    embedding_generation_cron: str = "15 * * * *"


# 动态配置缓存
_dynamic_settings: dict[str, SettingValue] | None = None


def set_dynamic_settings(settings_dict: dict[str, SettingValue]) -> None:
    """设置动态配置缓存."""
    global _dynamic_settings
    _dynamic_settings = settings_dict


def clear_dynamic_settings() -> None:
    """清除动态配置缓存."""
    global _dynamic_settings
    _dynamic_settings = None


@lru_cache
def get_settings() -> Settings:
    """获取应用配置（带缓存）."""
    return Settings()


def get_effective_setting(key: str) -> SettingValue:
    """获取有效配置值（动态配置优先）."""
    if _dynamic_settings and key in _dynamic_settings:
        value = _dynamic_settings.get(key)
        if value is not None:
            return value

    # fallback 到环境变量配置
    settings = get_settings()
    return getattr(settings, key, None)


def get_effective_settings() -> Settings:
    """返回合并动态配置后的 Settings 副本."""
    settings = get_settings()
    if not _dynamic_settings:
        return settings

    overrides = {
        key: value
        for key, value in _dynamic_settings.items()
        if value is not None and key in Settings.model_fields
    }
    return settings.model_copy(update=overrides)
