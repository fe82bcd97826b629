"""Ollama 本地模型."""

from typing import Any

import httpx

from neureed.llm.base import ChatResponse, LLMConfig, LLMProvider, Message


class OllamaProvider(LLMProvider):
    """调用 Ollama /api/chat（非流式）."""

    name = "ollama"

    def __init__(self, config: LLMConfig, host: str = "http://localhost:11434") -> None:
        super().__init__(config)
        self.host = host.rstrip("/")

    async def chat(self, messages: list[Message], json_mode: bool = False) -> ChatResponse:
        payload: dict[str, Any] = {
            "model": self.config.model,
            "messages": [m.model_dump() for m in messages],
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "num_predict": self.config.max_tokens,
            },
        }
        if json_mode:
            payload["format"] = "json"

        async with httpx.AsyncClient(timeout=self.config.timeout) as client:
            response = await client.post(f"{self.host}/api/chat", json=payload)
            response.raise_for_status()
        data = response.json()

        return ChatResponse(
            content=data.get("message", {}).get("content", ""),
            prompt_tokens=data.get("prompt_eval_count", 0),
            completion_tokens=data.get("eval_count", 0),
        )
