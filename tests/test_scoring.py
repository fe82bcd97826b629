"""测试按阅读偏好为文章打分."""

from collections.abc import Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.core.scoring import (
    NEUTRAL_SCORE,
    compute_score,
    score_article,
    score_articles,
    score_label,
)
from neureed.errors import NotFoundError
from neureed.models.article import Article
from neureed.models.feed import Feed, UserFeed
from neureed.models.feedback import UserPattern
from neureed.models.user import User

AddArticle = Callable[..., Awaitable[Article]]


class TestComputeScore:
    """测试纯打分计算."""

    def test_no_patterns_is_neutral(self) -> None:
        article = Article(id="a", feed_id="f", guid="g", title="Rust news", topics=["rust"])
        result = compute_score(article, {})
        assert result.score == NEUTRAL_SCORE
        assert result.matching_patterns == []
        assert result.explanation == "尚未学习到阅读偏好"

    def test_no_matching_keyword_is_neutral(self) -> None:
        article = Article(id="a", feed_id="f", guid="g", title="Rust news", topics=["rust"])
        result = compute_score(article, {"golang": 1.0})
        assert result.score == pytest.approx(NEUTRAL_SCORE)
        assert result.explanation == "没有匹配的偏好关键词"

    def test_liked_topic_scores_high(self) -> None:
        """喜欢的主题贡献为正，按贡献绝对值排序."""
        article = Article(id="a", feed_id="f", guid="g", title="t", topics=["rust", "python"])
        result = compute_score(article, {"rust": 1.0, "python": -0.2})

        assert result.score > 0.85
        assert result.label == "high"
        assert [m.keyword for m in result.matching_patterns] == ["rust", "python"]
        assert result.matching_patterns[0].contribution == pytest.approx(0.5)
        assert result.matching_patterns[1].contribution == pytest.approx(-0.1)
        assert "rust" in result.explanation

    def test_disliked_topic_scores_low(self) -> None:
        article = Article(id="a", feed_id="f", guid="g", title="t", topics=["crypto"])
        result = compute_score(article, {"crypto": -1.0})

        assert result.score < 0.3
        assert result.label == "very_low"
        assert "crypto" in result.explanation

    def test_keywords_from_text_without_topics(self) -> None:
        """没有 AI 主题时从标题和正文提取关键词."""
        article = Article(
            id="a", feed_id="f", guid="g", title="Kubernetes upgrade", content_text="kubernetes cluster"
        )
        result = compute_score(article, {"kubernetes": 0.8})
        assert result.score > NEUTRAL_SCORE
        assert result.matching_patterns[0].keyword == "kubernetes"

    def test_score_labels(self) -> None:
        assert score_label(0.9) == "high"
        assert score_label(0.5) == "medium"
        assert score_label(0.35) == "low"
        assert score_label(0.1) == "very_low"


class TestScoreArticles:
    """测试带权限检查的打分."""

    async def test_score_article_uses_user_patterns(
        self,
        async_session: AsyncSession,
        user: User,
        feed: Feed,
        subscription: UserFeed,
        add_article: AddArticle,
    ) -> None:
        article = await add_article(feed.id, "a1", topics=["rust"])
        async_session.add(UserPattern(user_id=user.id, keyword="rust", weight=0.9, feedback_count=1))
        async_session.add(UserPattern(user_id="admin-1", keyword="rust", weight=-0.9, feedback_count=1))
        await async_session.commit()

        result = await score_article(async_session, user.id, article.id)

        assert result.article_id == article.id
        assert result.score > 0.9

    async def test_unsubscribed_article_not_found(
        self,
        async_session: AsyncSession,
        user: User,
        feed: Feed,
        add_article: AddArticle,
    ) -> None:
        article = await add_article(feed.id, "a1")
        with pytest.raises(NotFoundError):
            await score_article(async_session, user.id, article.id)

    async def test_batch_skips_inaccessible_articles(
        self,
        async_session: AsyncSession,
        user: User,
        feed: Feed,
        subscription: UserFeed,
        add_article: AddArticle,
    ) -> None:
        """批量打分忽略不存在和未订阅的文章."""
        other = Feed(id="feed-2", url="https://other.example/feed.xml", title="Other")
        async_session.add(other)
        await async_session.commit()
        liked = await add_article(feed.id, "a1", topics=["rust"])
        neutral = await add_article(feed.id, "a2", topics=["cooking"])
        hidden = await add_article(other.id, "b1", topics=["rust"])
        async_session.add(UserPattern(user_id=user.id, keyword="rust", weight=1.0, feedback_count=1))
        await async_session.commit()

        scores = await score_articles(
            async_session, user.id, [liked.id, neutral.id, hidden.id, "missing"]
        )

        assert set(scores) == {liked.id, neutral.id}
        assert scores[liked.id].score > scores[neutral.id].score
        assert scores[neutral.id].score == pytest.approx(NEUTRAL_SCORE)

    async def test_batch_empty(self, async_session: AsyncSession, user: User) -> None:
        assert await score_articles(async_session, user.id, []) == {}
