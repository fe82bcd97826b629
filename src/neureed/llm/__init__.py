"""LLM 抽象层."""

from neureed.llm.base import ChatResponse, LLMConfig, LLMProvider, Message
from neureed.llm.factory import create_llm_provider
from neureed.llm.ollama import OllamaProvider
from neureed.llm.openai import OpenAIProvider
from neureed.llm.summarizer import ArticleSummarizer, SummaryParseError, SummaryResult

__all__ = [
    "ArticleSummarizer",
    "ChatResponse",
    "LLMConfig",
    "LLMProvider",
    "Message",
    "OllamaProvider",
    "OpenAIProvider",
    "SummaryParseError",
    "SummaryResult",
    "create_llm_provider",
]
