"""测试文章 AI 摘要."""

import json
from collections.abc import Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.config import set_dynamic_settings
from neureed.core.summarization import summarize_article
from neureed.errors import ConfigurationError, NotFoundError, UpstreamError
from neureed.llm import ArticleSummarizer
from neureed.llm.base import ChatResponse, LLMConfig, LLMProvider, Message
from neureed.llm.summarizer import SummaryParseError
from neureed.models.article import Article
from neureed.models.feed import Feed

SUMMARY_JSON = json.dumps(
    {
        "summary": "Rust 2024 版本发布。",
        "key_points": ["新版本", " ", "更好的异步支持"],
        "topics": ["Rust", "Async"],
    },
    ensure_ascii=False,
)


class FakeLLMProvider(LLMProvider):
    """返回预设内容的 LLM，可配置为失败."""

    name = "fake"

    def __init__(self, content: str = SUMMARY_JSON, error: Exception | None = None) -> None:
        super().__init__(LLMConfig(model="fake-model"))
        self.content = content
        self.error = error
        self.calls: list[list[Message]] = []

    async def chat(self, messages: list[Message], json_mode: bool = False) -> ChatResponse:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error
        return ChatResponse(content=self.content, prompt_tokens=40, completion_tokens=12)


class TestArticleSummarizer:
    """测试 LLM 响应解析."""

    async def test_parses_fenced_json(self) -> None:
        """去掉 markdown 代码块，主题转小写，空要点被丢弃."""
        provider = FakeLLMProvider(content=f"```json\n{SUMMARY_JSON}\n```")

        result = await ArticleSummarizer(provider).summarize("Rust 2024", "正文")

        assert result.summary == "Rust 2024 版本发布。"
        assert result.key_points == ["新版本", "更好的异步支持"]
        assert result.topics == ["rust", "async"]
        assert result.total_tokens == 52

    async def test_long_content_truncated(self) -> None:
        """超长正文截断后再发送."""
        provider = FakeLLMProvider()

        await ArticleSummarizer(provider).summarize("Long", "x" * 20000)

        user_message = provider.calls[0][1].content
        assert "[内容已截断...]" in user_message
        assert len(user_message) < 9000

    async def test_missing_summary_rejected(self) -> None:
        """缺少 summary 字段视为解析失败."""
        provider = FakeLLMProvider(content='{"topics": ["rust"]}')

        with pytest.raises(SummaryParseError):
            await ArticleSummarizer(provider).summarize("t", "c")


class TestSummarizeArticle:
    """测试文章摘要的保存和缓存."""

    async def test_summary_saved_and_cached(
        self,
        async_session: AsyncSession,
        feed: Feed,
        add_article: Callable[..., Awaitable[Article]],
    ) -> None:
        """生成后写入文章，再次调用直接返回缓存结果."""
        article = await add_article(feed.id, "a1", content_text="Rust 2024 正文")
        provider = FakeLLMProvider()

        updated = await summarize_article(async_session, article.id, provider=provider)
        assert updated.summary == "Rust 2024 版本发布。"
        assert updated.topics == ["rust", "async"]

        again = await summarize_article(async_session, article.id, provider=provider)
        assert again.summary == updated.summary
        assert len(provider.calls) == 1

    async def test_force_regenerates(
        self,
        async_session: AsyncSession,
        feed: Feed,
        add_article: Callable[..., Awaitable[Article]],
    ) -> None:
        """force=True 时忽略已有摘要重新生成."""
        article = await add_article(feed.id, "a1", summary="旧摘要")
        provider = FakeLLMProvider()

        cached = await summarize_article(async_session, article.id, provider=provider)
        assert cached.summary == "旧摘要"
        assert provider.calls == []

        regenerated = await summarize_article(async_session, article.id, force=True, provider=provider)
        assert regenerated.summary == "Rust 2024 版本发布。"
        assert len(provider.calls) == 1

    async def test_provider_failure_raises_upstream_error(
        self,
        async_session: AsyncSession,
        feed: Feed,
        add_article: Callable[..., Awaitable[Article]],
    ) -> None:
        """LLM 调用失败转为 UpstreamError，文章不被修改."""
        article = await add_article(feed.id, "a1")
        provider = FakeLLMProvider(error=RuntimeError("connection reset"))

        with pytest.raises(UpstreamError, match="connection reset"):
            await summarize_article(async_session, article.id, provider=provider)

        await async_session.refresh(article)
        assert article.summary is None

    async def test_disabled_raises_configuration_error(
        self,
        async_session: AsyncSession,
        feed: Feed,
        add_article: Callable[..., Awaitable[Article]],
    ) -> None:
        """摘要功能未启用时抛出 ConfigurationError."""
        set_dynamic_settings({"summarization_enabled": False})
        article = await add_article(feed.id, "a1")

        with pytest.raises(ConfigurationError):
            await summarize_article(async_session, article.id)

    async def test_missing_openai_key_raises_configuration_error(
        self,
        async_session: AsyncSession,
        feed: Feed,
        add_article: Callable[..., Awaitable[Article]],
    ) -> None:
        """启用 OpenAI 但未配置密钥时抛出 ConfigurationError."""
        set_dynamic_settings({"summarization_enabled": True, "llm_provider": "openai", "openai_api_key": ""})
        article = await add_article(feed.id, "a1")

        with pytest.raises(ConfigurationError):
            await summarize_article(async_session, article.id)

    async def test_missing_article(self, async_session: AsyncSession) -> None:
        with pytest.raises(NotFoundError):
            await summarize_article(async_session, "missing", provider=FakeLLMProvider())
