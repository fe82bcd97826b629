"""文章 AI 摘要."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from neureed.config import get_effective_settings
from neureed.errors import NotFoundError, UpstreamError
from neureed.llm import ArticleSummarizer, LLMProvider, create_llm_provider
from neureed.models.article import Article
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)


async def summarize_article(
    session: AsyncSession,
    article_id: str,
    force: bool = False,
    provider: LLMProvider | None = None,
) -> Article:
    """
    为文章生成摘要、关键要点和主题.

    已有摘要且未指定 force 时直接返回。
    功能未启用时抛出 ConfigurationError，LLM 调用失败时抛出 UpstreamError。
    """
    article = await session.get(Article, article_id)
    if article is None:
        raise NotFoundError("文章不存在")
    if article.summary and not force:
        return article

    if provider is None:
        provider = create_llm_provider(get_effective_settings())

    content = article.content_text or article.excerpt or ""
    try:
        result = await ArticleSummarizer(provider).summarize(article.title, content)
    except Exception as e:
        msg = f"生成摘要失败: {e}"
        raise UpstreamError(msg) from e

    article.summary = result.summary
    article.key_points = result.key_points
    article.topics = result.topics
    article.updated_at = utcnow()
    await session.commit()

    logger.info(f"文章 {article_id} 摘要已生成 (tokens={result.total_tokens})，主题: {', '.join(result.topics)}")
    return article
