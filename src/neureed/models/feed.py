"""Feed 订阅源、订阅关系与分类模型."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from neureed.utils.dates import utcnow
from neureed.utils.ids import new_id


class Feed(SQLModel, table=True):
    """RSS/Atom 订阅源（多用户共享）."""

    __tablename__ = "feeds"  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    url: str = Field(unique=True, index=True, description="Feed URL")
    title: str = Field(description="Feed 标题")
    site_url: str | None = Field(default=None, description="网站 URL")
    description: str | None = Field(default=None, description="Feed 描述")
    fetch_full_text: str = Field(
        default="never", description="全文抓取策略: auto|always|never"
    )
    settings: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="Feed 级默认设置",
    )
    last_fetched: datetime | None = Field(default=None, description="最近成功刷新时间")
    last_attempted_at: datetime | None = Field(
        default=None, description="最近一次尝试刷新时间"
    )
    error_count: int = Field(default=0, description="连续刷新失败次数")
    last_error: str | None = Field(default=None, description="最近一次错误")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserFeed(SQLModel, table=True):
    """用户订阅关系，携带用户级覆盖设置."""

    __tablename__ = "user_feeds"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "feed_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    feed_id: str = Field(foreign_key="feeds.id", index=True)
    custom_name: str | None = Field(default=None, description="自定义显示名")
    settings: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="订阅级覆盖设置",
    )
    subscribed_at: datetime = Field(default_factory=utcnow)


class UserCategory(SQLModel, table=True):
    """用户分类，可携带分类级覆盖设置."""

    __tablename__ = "user_categories"  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    name: str = Field(description="分类名称")
    description: str | None = Field(default=None)
    icon: str | None = Field(default=None)
    sort_order: int = Field(default=0, description="排序位置")
    settings: dict[str, Any] | None = Field(
        default=None,
        sa_column=Column(JSON),
        description="分类级覆盖设置",
    )
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserFeedCategory(SQLModel, table=True):
    """订阅与分类的多对多关联."""

    __tablename__ = "user_feed_categories"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_feed_id", "category_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_feed_id: str = Field(foreign_key="user_feeds.id", index=True)
    category_id: str = Field(foreign_key="user_categories.id", index=True)
    created_at: datetime = Field(default_factory=utcnow)
