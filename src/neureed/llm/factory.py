"""LLM Provider 工厂."""

from neureed.config import Settings
from neureed.errors import ConfigurationError
from neureed.llm.base import LLMConfig, LLMProvider
from neureed.llm.ollama import OllamaProvider
from neureed.llm.openai import OpenAIProvider


def create_llm_provider(settings: Settings) -> LLMProvider:
    """根据配置创建 LLM Provider，未启用或缺少凭据时抛出 ConfigurationError."""
    if not settings.summarization_enabled:
        msg = "AI 摘要功能未启用"
        raise ConfigurationError(msg)

    if settings.llm_provider == "ollama":
        return OllamaProvider(
            config=LLMConfig(model=settings.ollama_model),
            host=settings.ollama_host,
        )

    if not settings.openai_api_key:
        msg = "未配置 OpenAI API Key"
        raise ConfigurationError(msg)

    return OpenAIProvider(
        config=LLMConfig(model=settings.openai_model),
        api_key=settings.openai_api_key,
        base_url=settings.openai_base_url,
    )
