"""应用动态配置模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from neureed.utils.dates import utcnow


class AppSettings(SQLModel, table=True):
    """应用动态配置表（单行存储，空值表示沿用环境变量）."""

    __tablename__ = "app_settings"  # type: ignore[assignment]

    id: int = Field(default=1, primary_key=True)

    # LLM 配置
    summarization_enabled: bool | None = Field(default=None)
    llm_provider: str | None = Field(default=None)
    openai_api_key: str | None = Field(default=None)
    openai_base_url: str | None = Field(default=None)
    openai_model: str | None = Field(default=None)
    ollama_host: str | None = Field(default=None)
    ollama_model: str | None = Field(default=None)

    # Embedding 配置
    embedding_enabled: bool | None = Field(default=None)
    embedding_provider: str | None = Field(default=None)
    embedding_model: str | None = Field(default=None)
    embedding_auto_generate: bool | None = Field(default=None)

    # 刷新与保留策略
    refresh_concurrency: int | None = Field(default=None)
    max_feed_errors: int | None = Field(default=None)
    notification_retention_count: int | None = Field(default=None)
    notification_retention_days: int | None = Field(default=None)
    delete_orphaned_feeds: bool | None = Field(default=None)

    updated_at: datetime = Field(default_factory=utcnow)


# 可通过管理接口修改的配置项
DYNAMIC_SETTING_KEYS: tuple[str, ...] = tuple(
    name for name in AppSettings.model_fields if name not in ("id", "updated_at")
)
