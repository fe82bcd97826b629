"""用户与用户偏好模型."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from neureed.utils.dates import utcnow


class User(SQLModel, table=True):
    """用户（身份由外部认证提供，这里只保存不透明 ID）."""

    __tablename__ = "users"  # type: ignore[assignment]

    id: str = Field(primary_key=True)
    email: str | None = Field(default=None)
    name: str | None = Field(default=None)
    role: str = Field(default="user", description="角色: user|admin")
    created_at: datetime = Field(default_factory=utcnow)


class UserPreferences(SQLModel, table=True):
    """用户级默认设置，位于系统默认值之上."""

    __tablename__ = "user_preferences"  # type: ignore[assignment]

    user_id: str = Field(primary_key=True, foreign_key="users.id")
    default_refresh_interval: int | None = Field(default=None, description="分钟")
    default_max_articles_per_feed: int | None = Field(default=None)
    default_max_article_age: int | None = Field(default=None, description="天")
    default_auto_summarize: bool | None = Field(default=None)
    bounce_threshold: float | None = Field(default=None, description="跳出阈值 0-1")
    updated_at: datetime = Field(default_factory=utcnow)
