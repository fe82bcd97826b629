"""Embedding 抽象基类."""

from abc import ABC, abstractmethod

from pydantic import BaseModel


class EmbeddingBatch(BaseModel):
    """一批文本的向量结果."""

    vectors: list[list[float]]
    total_tokens: int = 0
    model: str


class EmbeddingProvider(ABC):
    """Embedding 服务提供者抽象基类."""

    def __init__(self, model: str) -> None:
        self.model = model

    @abstractmethod
    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        """为多段文本生成向量，顺序与输入一致."""
        ...
