"""OpenAI Embedding Provider."""

from openai import AsyncOpenAI

from neureed.embeddings.base import EmbeddingBatch, EmbeddingProvider


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI Embedding API（支持 OpenAI 兼容接口）."""

    def __init__(
        self,
        model: str,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        super().__init__(model)
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url)

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        response = await self.client.embeddings.create(model=self.model, input=texts)
        ordered = sorted(response.data, key=lambda item: item.index)
        return EmbeddingBatch(
            vectors=[item.embedding for item in ordered],
            total_tokens=response.usage.total_tokens if response.usage else 0,
            model=self.model,
        )
