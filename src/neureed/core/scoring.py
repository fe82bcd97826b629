"""
按用户关键词偏好为文章打分.

文章关键词与偏好权重逐一匹配，贡献值 = 权重 × 关键词相关度，
总贡献经 sigmoid 映射到 0 ~ 1：没有任何匹配时为中性分 0.5。
"""

import math
from dataclasses import dataclass, field

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.core.patterns import extract_keywords
from neureed.core.reading import get_article_for_user
from neureed.models.article import Article
from neureed.models.feed import UserFeed
from neureed.models.feedback import UserPattern

NEUTRAL_SCORE = 0.5
SCORE_KEYWORDS = 30
SIGMOID_STEEPNESS = 5.0
TOP_MATCHES = 5


@dataclass
class PatternMatch:
    keyword: str
    weight: float
    contribution: float


@dataclass
class ArticleScore:
    """文章得分及命中的偏好."""

    article_id: str
    score: float = NEUTRAL_SCORE
    matching_patterns: list[PatternMatch] = field(default_factory=list)
    explanation: str = "尚未学习到阅读偏好"

    @property
    def label(self) -> str:
        return score_label(self.score)

    def to_dict(self) -> dict:
        return {
            "article_id": self.article_id,
            "score": round(self.score, 4),
            "label": self.label,
            "explanation": self.explanation,
            "matching_patterns": [
                {
                    "keyword": m.keyword,
                    "weight": round(m.weight, 4),
                    "contribution": round(m.contribution, 4),
                }
                for m in self.matching_patterns
            ],
        }


def score_label(score: float) -> str:
    if score >= 0.7:
        return "high"
    if score >= 0.5:
        return "medium"
    if score >= 0.3:
        return "low"
    return "very_low"


def scored_keywords(article: Article) -> list[tuple[str, float]]:
    """文章关键词及相关度；有 AI 主题时各主题平分相关度."""
    if article.topics:
        topics = list(dict.fromkeys(t.strip().lower() for t in article.topics if t.strip()))
        return [(topic, 1.0 / len(topics)) for topic in topics]

    text = f"{article.title}\n{article.excerpt or ''}\n{article.content_text or ''}"
    return extract_keywords(text, SCORE_KEYWORDS)


def explain_score(score: float, matches: list[PatternMatch]) -> str:
    """生成可读的打分说明."""
    if not matches:
        return "没有匹配的偏好关键词"

    top = matches[:3]
    positive = ", ".join(m.keyword for m in top if m.contribution > 0)
    negative = ", ".join(m.keyword for m in top if m.contribution < 0)

    if score >= 0.7:
        return f"高度相关，匹配你感兴趣的: {positive}" if positive else "根据你的偏好高度相关"
    if score >= 0.5:
        return "根据你的偏好中等相关"
    if score >= 0.3:
        return f"相关性较低，包含你常跳过的: {negative}" if negative else "根据你的偏好相关性较低"
    return f"不相关，包含你不喜欢的: {negative}" if negative else "根据你的偏好不相关"


def compute_score(article: Article, weights: dict[str, float]) -> ArticleScore:
    """用已加载的偏好权重为一篇文章打分（纯计算，不访问数据库）."""
    if not weights:
        return ArticleScore(article_id=article.id)

    total = 0.0
    matches: list[PatternMatch] = []
    for keyword, relevance in scored_keywords(article):
        weight = weights.get(keyword)
        if weight is None:
            continue
        contribution = weight * relevance
        total += contribution
        matches.append(PatternMatch(keyword=keyword, weight=weight, contribution=contribution))

    score = 1 / (1 + math.exp(-total * SIGMOID_STEEPNESS))
    matches.sort(key=lambda m: -abs(m.contribution))
    return ArticleScore(
        article_id=article.id,
        score=score,
        matching_patterns=matches[:TOP_MATCHES],
        explanation=explain_score(score, matches),
    )


async def load_pattern_weights(session: AsyncSession, user_id: str) -> dict[str, float]:
    stmt = select(UserPattern.keyword, UserPattern.weight).where(UserPattern.user_id == user_id)
    return {keyword: weight for keyword, weight in (await session.execute(stmt)).all()}


async def score_article(session: AsyncSession, user_id: str, article_id: str) -> ArticleScore:
    """
    为用户可见的单篇文章打分.

    Raises:
        NotFoundError: 文章不存在或不在用户订阅中
    """
    article = await get_article_for_user(session, user_id, article_id)
    return compute_score(article, await load_pattern_weights(session, user_id))


async def score_articles(
    session: AsyncSession, user_id: str, article_ids: list[str]
) -> dict[str, ArticleScore]:
    """批量打分，只加载一次偏好；不存在或无权访问的文章被忽略."""
    if not article_ids:
        return {}

    subscribed = select(UserFeed.feed_id).where(UserFeed.user_id == user_id)
    stmt = select(Article).where(
        Article.id.in_(article_ids),  # type: ignore[attr-defined]
        Article.feed_id.in_(subscribed),  # type: ignore[attr-defined]
    )
    articles = (await session.execute(stmt)).scalars().all()
    weights = await load_pattern_weights(session, user_id)
    return {article.id: compute_score(article, weights) for article in articles}
