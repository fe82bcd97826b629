"""测试关键词偏好聚合."""

from collections.abc import Awaitable, Callable
from datetime import timedelta

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.core.patterns import (
    apply_pattern_decay,
    article_keywords,
    extract_keywords,
    get_pattern_stats,
    get_user_patterns,
    prune_patterns,
    reset_user_patterns,
    update_patterns,
)
from neureed.errors import NotFoundError, ValidationError
from neureed.models.article import Article
from neureed.models.feed import Feed
from neureed.models.feedback import UserPattern
from neureed.models.user import User
from neureed.utils.dates import utcnow

AddArticle = Callable[..., Awaitable[Article]]


class TestExtractKeywords:
    """测试关键词提取."""

    def test_filters_stop_words_and_short_tokens(self) -> None:
        keywords = [word for word, _ in extract_keywords("The API is fast and the api is 42")]
        assert "api" in keywords
        assert "fast" in keywords
        assert "the" not in keywords
        assert "42" not in keywords
        assert "is" not in keywords

    def test_repeated_words_rank_first(self) -> None:
        """出现多次的词得分更高."""
        keywords = extract_keywords("python rust python golang python")
        assert keywords[0][0] == "python"

    def test_html_is_stripped(self) -> None:
        keywords = [word for word, _ in extract_keywords("<p>kubernetes <b>cluster</b></p>")]
        assert set(keywords) == {"kubernetes", "cluster"}

    def test_empty_text(self) -> None:
        assert extract_keywords("") == []

    def test_topics_preferred(self) -> None:
        """文章有 AI 主题时直接使用主题."""
        article = Article(
            feed_id="f", guid="g", title="Ignored title", topics=["Python", "python", " AI "]
        )
        assert article_keywords(article) == ["python", "ai"]


class TestUpdatePatterns:
    """测试增量权重更新."""

    async def test_running_average(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        """+1, +1, -1 三次反馈后权重为 1/3，次数为 3."""
        article = await add_article(feed.id, "a", topics=["python"])

        for value in (1.0, 1.0, -1.0):
            patterns = await update_patterns(async_session, user.id, article.id, value)

        assert len(patterns) == 1
        assert patterns[0].keyword == "python"
        assert patterns[0].weight == pytest.approx(1 / 3)
        assert patterns[0].feedback_count == 3

    async def test_out_of_range_value(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        article = await add_article(feed.id, "a", topics=["python"])
        with pytest.raises(ValidationError):
            await update_patterns(async_session, user.id, article.id, 2.0)

    async def test_missing_article(self, async_session: AsyncSession, user: User) -> None:
        with pytest.raises(NotFoundError):
            await update_patterns(async_session, user.id, "missing", 1.0)

    async def test_stats_and_reset(
        self, async_session: AsyncSession, user: User, feed: Feed, add_article: AddArticle
    ) -> None:
        """统计正负偏好，重置后清空."""
        liked = await add_article(feed.id, "liked", topics=["rust"])
        disliked = await add_article(feed.id, "disliked", topics=["crypto"])
        await update_patterns(async_session, user.id, liked.id, 1.0)
        await update_patterns(async_session, user.id, disliked.id, -1.0)

        stats = await get_pattern_stats(async_session, user.id)
        assert stats["total_patterns"] == 2
        assert stats["positive_patterns"] == 1
        assert stats["negative_patterns"] == 1
        assert stats["top_negative"][0]["keyword"] == "crypto"

        assert await reset_user_patterns(async_session, user.id) == 2
        assert await get_user_patterns(async_session, user.id) == []


class TestPatternMaintenance:
    """测试衰减和清理."""

    async def test_decay_by_whole_periods(self, async_session: AsyncSession, user: User) -> None:
        """65 天未更新衰减两个周期，余量保留."""
        now = utcnow()
        stale = UserPattern(
            user_id=user.id, keyword="old", weight=1.0, feedback_count=1,
            updated_at=now - timedelta(days=65),
        )
        fresh = UserPattern(
            user_id=user.id, keyword="new", weight=1.0, feedback_count=1,
            updated_at=now - timedelta(days=5),
        )
        async_session.add(stale)
        async_session.add(fresh)
        await async_session.commit()

        assert await apply_pattern_decay(async_session, now=now) == 1
        await async_session.refresh(stale)
        await async_session.refresh(fresh)
        assert stale.weight == pytest.approx(0.81)
        assert stale.updated_at == now - timedelta(days=5)
        assert fresh.weight == 1.0

    async def test_prune_removes_weak(self, async_session: AsyncSession, user: User) -> None:
        async_session.add(UserPattern(user_id=user.id, keyword="weak", weight=0.05))
        async_session.add(UserPattern(user_id=user.id, keyword="strong", weight=-0.6))
        await async_session.commit()

        assert await prune_patterns(async_session, user.id) == 1
        remaining = (await async_session.execute(select(UserPattern.keyword))).scalars().all()
        assert remaining == ["strong"]
