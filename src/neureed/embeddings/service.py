"""文章向量生成."""

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.config import get_effective_settings
from neureed.embeddings.base import EmbeddingProvider
from neureed.embeddings.factory import create_embedding_provider
from neureed.errors import UpstreamError
from neureed.models.article import Article
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

MAX_EMBEDDING_CHARS = 8000
EMBEDDING_BATCH_SIZE = 32
BACKFILL_BATCH_SIZE = 50
BACKFILL_MAX_BATCHES = 10


@dataclass
class EmbeddingRunResult:
    """向量生成统计."""

    generated: int = 0
    tokens: int = 0
    batches: int = 0
    skipped: bool = False


def build_embedding_text(article: Article) -> str:
    """拼接标题和正文，限制长度."""
    body = article.content_text or article.excerpt or ""
    text = f"{article.title}\n\n{body}".strip()
    return text[:MAX_EMBEDDING_CHARS]


async def generate_article_embeddings(
    session: AsyncSession,
    article_ids: list[str],
    provider: EmbeddingProvider | None = None,
    force: bool = False,
) -> EmbeddingRunResult:
    """
    为指定文章生成向量并保存.

    Provider 未启用时视为正常跳过（skipped=True）；Provider 调用失败抛出 UpstreamError。
    """
    if provider is None:
        provider = create_embedding_provider(get_effective_settings())
    if provider is None:
        return EmbeddingRunResult(skipped=True)
    if not article_ids:
        return EmbeddingRunResult()

    stmt = select(Article).where(Article.id.in_(article_ids))  # type: ignore[attr-defined]
    result = await session.execute(stmt)
    articles = [a for a in result.scalars().all() if force or a.embedding is None]

    run = EmbeddingRunResult()
    for start in range(0, len(articles), EMBEDDING_BATCH_SIZE):
        batch = articles[start : start + EMBEDDING_BATCH_SIZE]
        try:
            embeddings = await provider.embed([build_embedding_text(a) for a in batch])
        except Exception as e:
            msg = f"生成向量失败: {e}"
            raise UpstreamError(msg) from e

        for article, vector in zip(batch, embeddings.vectors, strict=False):
            article.embedding = vector
            article.embedding_model = embeddings.model
            article.updated_at = utcnow()
            run.generated += 1
        run.tokens += embeddings.total_tokens
        await session.commit()

    logger.info(f"生成向量 {run.generated} 条，消耗 tokens={run.tokens}")
    return run


async def backfill_article_embeddings(
    session: AsyncSession,
    provider: EmbeddingProvider | None = None,
    batch_size: int = BACKFILL_BATCH_SIZE,
    max_batches: int = BACKFILL_MAX_BATCHES,
) -> EmbeddingRunResult:
    """
    为缺少向量的文章补齐向量，新文章优先.

    每批单独提交，单次最多处理 max_batches 批，剩余的留给下次执行。
    """
    if provider is None:
        provider = create_embedding_provider(get_effective_settings())
    if provider is None:
        return EmbeddingRunResult(skipped=True)

    total = EmbeddingRunResult()
    for _ in range(max_batches):
        stmt = (
            select(Article.id)
            .where(Article.embedding.is_(None))  # type: ignore[union-attr]
            .order_by(Article.created_at.desc(), Article.id)  # type: ignore[attr-defined]
            .limit(batch_size)
        )
        article_ids = list((await session.execute(stmt)).scalars().all())
        if not article_ids:
            break

        run = await generate_article_embeddings(session, article_ids, provider=provider)
        total.generated += run.generated
        total.tokens += run.tokens
        total.batches += 1
        if run.generated == 0 or len(article_ids) < batch_size:
            break

    logger.info(f"补齐向量 {total.generated} 条，共 {total.batches} 批")
    return total
