"""用户通知模型."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from neureed.utils.dates import utcnow
from neureed.utils.ids import new_id


class NotificationType:
    """通知类型常量."""

    FEED_REFRESH = "feed_refresh"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    SUCCESS = "success"

    ALL = (FEED_REFRESH, INFO, WARNING, ERROR, SUCCESS)


class Notification(SQLModel, table=True):
    """站内通知."""

    __tablename__ = "notifications"  # type: ignore[assignment]

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    type: str = Field(description="通知类型")
    title: str
    message: str
    details: dict[str, Any] | None = Field(
        default=None, sa_column=Column(JSON)
    )
    read: bool = Field(default=False)
    created_at: datetime = Field(default_factory=utcnow, index=True)
