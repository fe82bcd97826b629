"""Embedding Provider 工厂."""

import logging

from neureed.config import Settings
from neureed.embeddings.base import EmbeddingProvider
from neureed.embeddings.ollama import OllamaEmbeddingProvider
from neureed.embeddings.openai import OpenAIEmbeddingProvider

logger = logging.getLogger(__name__)


def create_embedding_provider(settings: Settings) -> EmbeddingProvider | None:
    """根据配置创建 Embedding Provider，未启用时返回 None."""
    if not settings.embedding_enabled:
        return None

    if settings.embedding_provider == "ollama":
        return OllamaEmbeddingProvider(
            model=settings.ollama_embedding_model,
            host=settings.ollama_host,
        )

    if not settings.openai_api_key:
        logger.warning("Embedding 已启用但未配置 OpenAI API Key，跳过")
        return None

    return OpenAIEmbeddingProvider(
        model=settings.embedding_model,
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
    )
