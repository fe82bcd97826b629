"""Ollama 本地 Embedding Provider."""

import httpx

from neureed.embeddings.base import EmbeddingBatch, EmbeddingProvider


class OllamaEmbeddingProvider(EmbeddingProvider):
    """调用 Ollama /api/embed 接口."""

    def __init__(self, model: str, host: str = "http://localhost:11434") -> None:
        super().__init__(model)
        self.host = host.rstrip("/")

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        payload = {"model": self.model, "input": texts}
        async with httpx.AsyncClient(timeout=120.0) as client:
            response = await client.post(f"{self.host}/api/embed", json=payload)
            response.raise_for_status()

        data = response.json()
        return EmbeddingBatch(
            vectors=data.get("embeddings", []),
            total_tokens=data.get("prompt_eval_count", 0),
            model=self.model,
        )
