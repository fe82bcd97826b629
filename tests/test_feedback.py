"""测试文章反馈."""

from collections.abc import Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.core.feedback import (
    classify_visit,
    delete_feedback,
    get_feedback_stats,
    record_article_exit,
    record_article_view,
    record_feedback,
)
from neureed.errors import NotFoundError, ValidationError
from neureed.models.article import Article
from neureed.models.feed import Feed
from neureed.models.feedback import ArticleFeedback, FeedbackType
from neureed.models.user import User, UserPreferences

AddArticle = Callable[..., Awaitable[Article]]


class TestClassifyVisit:
    """测试阅读时长判定."""

    @pytest.mark.parametrize(
        ("time_spent", "expected"),
        [(10, -0.5), (50, None), (95, 0.5), (100, 0.5)],
    )
    def test_ratio_thresholds(self, time_spent: int, expected: float | None) -> None:
        assert classify_visit(time_spent, 100, 0.25, 0.9) == expected

    def test_zero_estimate_ignored(self) -> None:
        assert classify_visit(10, 0, 0.25, 0.9) is None


class TestExplicitFeedback:
    """测试显式反馈."""

    async def test_repeated_feedback_keeps_one_row(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        """重复反馈覆盖原记录."""
        article = await add_article(feed.id, "a")
        await record_feedback(async_session, user.id, article.id, 1.0)
        feedback = await record_feedback(async_session, user.id, article.id, -1.0)

        rows = (await async_session.execute(select(ArticleFeedback))).scalars().all()
        assert len(rows) == 1
        assert feedback.feedback_value == -1.0
        assert feedback.feedback_type == FeedbackType.EXPLICIT

    async def test_invalid_value(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        article = await add_article(feed.id, "a")
        with pytest.raises(ValidationError):
            await record_feedback(async_session, user.id, article.id, 0.5)

    async def test_delete_missing_feedback(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        article = await add_article(feed.id, "a")
        with pytest.raises(NotFoundError):
            await delete_feedback(async_session, user.id, article.id)


class TestImplicitFeedback:
    """测试基于阅读时长的隐式反馈."""

    async def test_bounce_recorded(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        """快速离开记为跳出."""
        article = await add_article(feed.id, "a", content_text="word " * 400)
        view = await record_article_view(async_session, user.id, article.id)
        assert view["estimated_time"] > 0

        feedback = await record_article_exit(async_session, user.id, article.id, 5, 120)
        assert feedback is not None
        assert feedback.feedback_type == FeedbackType.IMPLICIT
        assert feedback.feedback_value == -0.5
        assert feedback.time_spent == 5

    async def test_middling_visit_is_not_feedback(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        article = await add_article(feed.id, "a")
        assert await record_article_exit(async_session, user.id, article.id, 60, 120) is None

    async def test_user_threshold_applies(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        """用户自定义跳出阈值优先于全局配置."""
        article = await add_article(feed.id, "a")
        async_session.add(UserPreferences(user_id=user.id, bounce_threshold=0.6))
        await async_session.commit()

        feedback = await record_article_exit(async_session, user.id, article.id, 60, 120)
        assert feedback is not None
        assert feedback.feedback_value == -0.5

    async def test_explicit_not_overridden(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        """已有显式反馈时隐式信号不覆盖."""
        article = await add_article(feed.id, "a")
        await record_feedback(async_session, user.id, article.id, 1.0)

        assert await record_article_exit(async_session, user.id, article.id, 1, 120) is None
        stats = await get_feedback_stats(async_session, user.id)
        assert stats["explicit_positive"] == 1
        assert stats["bounces"] == 0
        assert stats["total"] == 1
