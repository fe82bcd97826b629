"""文章反馈与关键词偏好模型."""

from datetime import datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel

from neureed.utils.dates import utcnow
from neureed.utils.ids import new_id


class FeedbackType:
    """反馈类型常量."""

    EXPLICIT = "explicit"
    IMPLICIT = "implicit"


class ArticleFeedback(SQLModel, table=True):
    """用户对文章的反馈，每个 (用户, 文章) 只有一条有效记录."""

    __tablename__ = "article_feedback"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "article_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    article_id: str = Field(foreign_key="articles.id", index=True)
    feedback_type: str = Field(description="反馈类型: explicit|implicit")
    feedback_value: float = Field(description="反馈值: -1.0 ~ 1.0")
    time_spent: int | None = Field(default=None, description="实际阅读时长（秒）")
    estimated_time: int | None = Field(default=None, description="预计阅读时长（秒）")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class UserPattern(SQLModel, table=True):
    """用户关键词偏好权重，按反馈增量更新."""

    __tablename__ = "user_patterns"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "keyword"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    keyword: str = Field(description="关键词")
    weight: float = Field(default=0.0, description="权重: -1.0 ~ 1.0")
    feedback_count: int = Field(default=0, description="累计反馈次数")
    updated_at: datetime = Field(default_factory=utcnow)
