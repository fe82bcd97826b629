"""Article 文章及阅读状态模型."""

from datetime import datetime

from sqlalchemy import JSON, Column, UniqueConstraint
from sqlmodel import Field, SQLModel

from neureed.utils.dates import utcnow
from neureed.utils.ids import new_id


class Article(SQLModel, table=True):
    """订阅源中的文章，按 (feed_id, guid) 唯一."""

    __tablename__ = "articles"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("feed_id", "guid"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    feed_id: str = Field(foreign_key="feeds.id", index=True, description="关联 Feed")
    guid: str = Field(description="源 GUID，缺失时回退为链接")
    title: str = Field(description="标题")
    url: str | None = Field(default=None, description="原文链接")
    author: str | None = Field(default=None, description="作者")
    content: str | None = Field(default=None, description="HTML 内容")
    content_text: str | None = Field(default=None, description="纯文本内容")
    excerpt: str | None = Field(default=None, description="摘录")
    content_hash: str = Field(default="", description="内容 SHA-256")
    content_source: str = Field(default="feed", description="内容来源: feed|fetched")
    published_at: datetime | None = Field(default=None, description="发布时间")
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    embedding: list[float] | None = Field(default=None, sa_column=Column(JSON(none_as_null=True)))
    embedding_model: str | None = Field(default=None)

    summary: str | None = Field(default=None, description="AI 摘要")
    key_points: list[str] | None = Field(default=None, sa_column=Column(JSON))
    topics: list[str] | None = Field(default=None, sa_column=Column(JSON))


class ReadArticle(SQLModel, table=True):
    """用户已读记录."""

    __tablename__ = "read_articles"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "article_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    article_id: str = Field(foreign_key="articles.id", index=True)
    read_at: datetime = Field(default_factory=utcnow)


class StarredArticle(SQLModel, table=True):
    """用户收藏记录，收藏的文章不会被清理."""

    __tablename__ = "starred_articles"  # type: ignore[assignment]
    __table_args__ = (UniqueConstraint("user_id", "article_id"),)

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    article_id: str = Field(foreign_key="articles.id", index=True)
    starred_at: datetime = Field(default_factory=utcnow)
