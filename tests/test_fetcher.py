"""测试订阅源抓取与解析."""

import threading

import httpx
import pytest

from neureed.errors import UpstreamError
from neureed.fetcher import source
from neureed.fetcher.source import SourceFetcher, parse_feed

RSS = b"""<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0">
  <channel>
    <title>Example Blog</title>
    <link>https://blog.example/</link>
    <description>Notes</description>
    <item>
      <title>First</title>
      <link>https://blog.example/1</link>
      <guid>post-1</guid>
      <description>&lt;p&gt;Hello&lt;/p&gt;</description>
    </item>
    <item>
      <title>No guid</title>
      <link>https://blog.example/2</link>
    </item>
    <item>
      <title>Neither guid nor link</title>
    </item>
  </channel>
</rss>
"""


def _patch_transport(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    real_client = httpx.AsyncClient

    def client_factory(**kwargs) -> httpx.AsyncClient:
        return real_client(transport=httpx.MockTransport(handler), **kwargs)

    monkeypatch.setattr(source.httpx, "AsyncClient", client_factory)


class TestParseFeed:
    """测试解析规则."""

    def test_guid_falls_back_to_link(self) -> None:
        """GUID 缺失时使用链接，两者都缺失的条目被丢弃."""
        parsed = parse_feed("https://blog.example/rss", RSS)

        assert parsed.title == "Example Blog"
        assert parsed.site_url == "https://blog.example/"
        assert [e.guid for e in parsed.entries] == ["post-1", "https://blog.example/2"]
        assert parsed.entries[0].content == "<p>Hello</p>"


class TestSourceFetcher:
    """测试 HTTP 抓取."""

    async def test_parses_off_event_loop(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """解析在线程池中执行，不占用事件循环线程."""
        _patch_transport(monkeypatch, lambda request: httpx.Response(200, content=RSS))
        parse_threads: list[int] = []
        real_parse = source.parse_feed

        def recording_parse(url: str, content: bytes | str):
            parse_threads.append(threading.get_ident())
            return real_parse(url, content)

        monkeypatch.setattr(source, "parse_feed", recording_parse)

        parsed = await SourceFetcher().fetch("https://blog.example/rss")

        assert len(parsed.entries) == 2
        assert parse_threads
        assert parse_threads[0] != threading.get_ident()

    async def test_http_error_becomes_upstream_error(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """非 2xx 响应转为 UpstreamError."""
        _patch_transport(monkeypatch, lambda request: httpx.Response(503))

        with pytest.raises(UpstreamError, match="HTTP 503"):
            await SourceFetcher().fetch("https://blog.example/rss")
