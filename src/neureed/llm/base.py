"""LLM Provider 抽象."""

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel


class Message(BaseModel):
    """对话消息."""

    role: Literal["system", "user", "assistant"]
    content: str


class LLMConfig(BaseModel):
    """LLM 调用参数（摘要场景默认低温度）."""

    model: str
    temperature: float = 0.2
    max_tokens: int = 800
    timeout: float = 120.0


class ChatResponse(BaseModel):
    """一次对话的返回文本和 token 用量."""

    content: str
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class LLMProvider(ABC):
    """LLM 服务提供者."""

    name: str = "llm"

    def __init__(self, config: LLMConfig) -> None:
        self.config = config

    @abstractmethod
    async def chat(self, messages: list[Message], json_mode: bool = False) -> ChatResponse:
        """
        发送对话，返回完整响应.

        json_mode 为真时要求模型只输出 JSON 对象。
        """
        ...
