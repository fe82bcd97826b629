"""基于文章向量的语义搜索."""

import logging
import math

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.config import get_effective_settings
from neureed.core.reading import get_article_for_user
from neureed.embeddings import EmbeddingProvider, create_embedding_provider
from neureed.errors import ConfigurationError, UpstreamError, ValidationError
from neureed.models.article import Article
from neureed.models.feed import UserFeed

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """余弦相似度，维度不一致或零向量时返回 0."""
    if len(a) != len(b) or not a:
        return 0.0
    dot = sum(x * y for x, y in zip(a, b, strict=True))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


async def _candidate_articles(session: AsyncSession, user_id: str) -> list[Article]:
    stmt = select(Article).where(
        Article.feed_id.in_(  # type: ignore[attr-defined]
            select(UserFeed.feed_id).where(UserFeed.user_id == user_id)
        )
    )
    return [a for a in (await session.execute(stmt)).scalars().all() if a.embedding]


def rank_by_similarity(
    query_vector: list[float],
    articles: list[Article],
    limit: int,
    min_score: float,
    exclude_id: str | None = None,
) -> list[tuple[Article, float]]:
    """按相似度降序排列，过滤低于 min_score 的文章."""
    scored = [
        (article, cosine_similarity(query_vector, article.embedding or []))
        for article in articles
        if article.id != exclude_id
    ]
    scored = [item for item in scored if item[1] >= min_score]
    scored.sort(key=lambda item: (-item[1], item[0].id))
    return scored[:limit]


async def search_similar_articles(
    session: AsyncSession,
    user_id: str,
    query: str,
    limit: int = 10,
    min_score: float = 0.3,
    provider: EmbeddingProvider | None = None,
) -> list[tuple[Article, float]]:
    """
    在用户订阅的文章中做语义搜索.

    Embedding 未启用时抛出 ConfigurationError。
    """
    query = query.strip()
    if not query:
        msg = "搜索内容不能为空"
        raise ValidationError(msg)

    if provider is None:
        provider = create_embedding_provider(get_effective_settings())
    if provider is None:
        msg = "语义搜索需要启用 Embedding"
        raise ConfigurationError(msg)

    try:
        batch = await provider.embed([query])
    except Exception as e:
        msg = f"生成查询向量失败: {e}"
        raise UpstreamError(msg) from e

    articles = await _candidate_articles(session, user_id)
    results = rank_by_similarity(batch.vectors[0], articles, limit, min_score)
    logger.info(f"语义搜索 '{query[:30]}' 命中 {len(results)} 篇")
    return results


async def find_related_articles(
    session: AsyncSession,
    user_id: str,
    article_id: str,
    limit: int = 5,
    min_score: float = 0.5,
) -> list[tuple[Article, float]]:
    """查找与指定文章相似的文章，文章尚无向量时返回空列表."""
    article = await get_article_for_user(session, user_id, article_id)
    if not article.embedding:
        return []

    articles = await _candidate_articles(session, user_id)
    return rank_by_similarity(article.embedding, articles, limit, min_score, exclude_id=article_id)
