"""测试配置和 fixtures."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from neureed.config import clear_dynamic_settings
from neureed.core.refresh import FeedRefresher
from neureed.embeddings import EmbeddingBatch, EmbeddingProvider
from neureed.errors import UpstreamError
from neureed.fetcher import ParsedEntry, ParsedFeed
from neureed.main import app
from neureed.models.article import Article
from neureed.models.database import create_engine, create_tables, get_session
from neureed.models.feed import Feed, UserFeed
from neureed.models.user import User
from neureed.scheduler import JobScheduler


class FakeFetcher:
    """按 URL 返回预设解析结果的订阅源抓取器."""

    def __init__(self) -> None:
        self.responses: dict[str, ParsedFeed | Exception] = {}
        self.calls: list[str] = []
        self.before_return: Callable[[], Awaitable[None]] | None = None

    def set_entries(self, url: str, entries: list[ParsedEntry], title: str = "Test Feed") -> None:
        self.responses[url] = ParsedFeed(url=url, title=title, entries=entries)

    def set_error(self, url: str, message: str = "HTTP 500") -> None:
        self.responses[url] = UpstreamError(message)

    async def fetch(self, url: str) -> ParsedFeed:
        self.calls.append(url)
        if self.before_return is not None:
            await self.before_return()
        response = self.responses.get(url)
        if response is None:
            msg = f"未知订阅源: {url}"
            raise UpstreamError(msg)
        if isinstance(response, Exception):
            raise response
        return response


class StaticEmbeddingProvider(EmbeddingProvider):
    """返回固定向量的 Embedding Provider，可配置为失败."""

    def __init__(self) -> None:
        super().__init__("static-embed")
        self.fail = False
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> EmbeddingBatch:
        self.calls.append(texts)
        if self.fail:
            msg = "embedding service unavailable"
            raise RuntimeError(msg)
        return EmbeddingBatch(
            vectors=[[0.1, 0.2, 0.3] for _ in texts],
            total_tokens=3 * len(texts),
            model=self.model,
        )


@pytest.fixture(autouse=True)
def reset_dynamic_settings() -> Any:
    """每个测试前后清空动态配置缓存."""
    clear_dynamic_settings()
    yield
    clear_dynamic_settings()


@pytest_asyncio.fixture
async def test_engine(tmp_path: Path) -> AsyncGenerator[Any, None]:
    """创建测试数据库引擎（临时文件，支持多会话并发）."""
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(test_engine: Any) -> async_sessionmaker[AsyncSession]:
    """创建测试会话工厂."""
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """创建测试会话."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def embedding_provider() -> StaticEmbeddingProvider:
    return StaticEmbeddingProvider()


@pytest.fixture
def refresher(
    session_factory: async_sessionmaker[AsyncSession], fake_fetcher: FakeFetcher
) -> FeedRefresher:
    """使用假抓取器的刷新器."""
    return FeedRefresher(
        session_factory,
        fetcher=fake_fetcher,  # type: ignore[arg-type]
        extractor=MagicMock(),
        concurrency=2,
    )


@pytest_asyncio.fixture
async def user(async_session: AsyncSession) -> User:
    """普通用户（同时存在一个管理员）."""
    async_session.add(User(id="admin-1", role="admin"))
    reader = User(id="user-1", role="user")
    async_session.add(reader)
    await async_session.commit()
    return reader


@pytest_asyncio.fixture
async def feed(async_session: AsyncSession) -> Feed:
    feed = Feed(id="feed-1", url="https://example.com/feed.xml", title="Example")
    async_session.add(feed)
    await async_session.commit()
    return feed


@pytest_asyncio.fixture
async def subscription(async_session: AsyncSession, user: User, feed: Feed) -> UserFeed:
    user_feed = UserFeed(user_id=user.id, feed_id=feed.id)
    async_session.add(user_feed)
    await async_session.commit()
    return user_feed


@pytest_asyncio.fixture
async def add_article(
    async_session: AsyncSession,
) -> Callable[..., Awaitable[Article]]:
    """创建文章的工厂."""

    async def _add(feed_id: str, guid: str, **kwargs: Any) -> Article:
        kwargs.setdefault("title", f"Article {guid}")
        article = Article(feed_id=feed_id, guid=guid, **kwargs)
        async_session.add(article)
        await async_session.commit()
        return article

    return _add


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession], refresher: FeedRefresher
) -> AsyncGenerator[AsyncClient, None]:
    """创建测试客户端."""

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.state.session_factory = session_factory
    app.state.refresher = refresher
    app.state.scheduler = JobScheduler(session_factory, refresher)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    app.state.session_factory = None
    app.state.refresher = None
    app.state.scheduler = None
