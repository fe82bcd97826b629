"""文章向量（Embedding）模块."""

from neureed.embeddings.base import EmbeddingBatch, EmbeddingProvider
from neureed.embeddings.factory import create_embedding_provider
from neureed.embeddings.ollama import OllamaEmbeddingProvider
from neureed.embeddings.openai import OpenAIEmbeddingProvider
from neureed.embeddings.service import (
    EmbeddingRunResult,
    backfill_article_embeddings,
    generate_article_embeddings,
)

__all__ = [
    "EmbeddingBatch",
    "EmbeddingProvider",
    "EmbeddingRunResult",
    "OllamaEmbeddingProvider",
    "OpenAIEmbeddingProvider",
    "backfill_article_embeddings",
    "create_embedding_provider",
    "generate_article_embeddings",
]
