"""OpenAI 及兼容接口."""

from typing import Any

from openai import AsyncOpenAI

from neureed.llm.base import ChatResponse, LLMConfig, LLMProvider, Message


class OpenAIProvider(LLMProvider):
    """OpenAI Chat Completions，base_url 可指向任意兼容服务."""

    name = "openai"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
    ) -> None:
        super().__init__(config)
        self.client = AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=config.timeout)

    async def chat(self, messages: list[Message], json_mode: bool = False) -> ChatResponse:
        kwargs: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.model_dump() for m in messages],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        # json_object 模式要求提示词中出现 "JSON"
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        response = await self.client.chat.completions.create(**kwargs)
        usage = response.usage
        return ChatResponse(
            content=response.choices[0].message.content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )
