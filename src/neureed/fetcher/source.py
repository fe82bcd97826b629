"""RSS/Atom 订阅源抓取与解析."""

import asyncio
import hashlib
import logging
from dataclasses import dataclass, field
from datetime import datetime

import feedparser
import httpx

from neureed.errors import UpstreamError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "NeuReed/1.0 (RSS/Atom Reader)"


@dataclass
class ParsedEntry:
    """规范化后的候选文章."""

    guid: str
    title: str
    url: str | None
    content: str
    author: str | None = None
    published_at: datetime | None = None

    @property
    def content_hash(self) -> str:
        """正文 SHA-256，用于判断源是否改写了内容."""
        return hashlib.sha256(self.content.encode("utf-8")).hexdigest()


@dataclass
class ParsedFeed:
    """解析后的订阅源."""

    url: str
    title: str
    site_url: str | None = None
    description: str | None = None
    entries: list[ParsedEntry] = field(default_factory=list)


def _entry_datetime(entry: feedparser.FeedParserDict) -> datetime | None:
    """取发布时间，缺失时回退到更新时间（feedparser 已转换为 UTC）."""
    for key in ("published_parsed", "updated_parsed"):
        value = entry.get(key)
        if value:
            try:
                return datetime(*value[:6])
            except (TypeError, ValueError):
                continue
    return None


def _entry_content(entry: feedparser.FeedParserDict) -> str:
    """正文优先取 content，其次 summary."""
    if entry.get("content"):
        return entry.content[0].get("value", "") or ""
    return entry.get("summary") or entry.get("description") or ""


def parse_feed(url: str, content: bytes | str) -> ParsedFeed:
    """
    解析订阅源内容.

    GUID 缺失时回退为链接，两者都缺失的条目被丢弃。
    无法解析（且没有任何条目）时抛出 UpstreamError。
    """
    parsed = feedparser.parse(content)

    if parsed.bozo and not parsed.entries and not parsed.feed.get("title"):
        msg = f"订阅源解析失败: {parsed.get('bozo_exception')}"
        raise UpstreamError(msg)

    entries: list[ParsedEntry] = []
    for entry in parsed.entries:
        link = entry.get("link") or None
        guid = entry.get("id") or link
        if not guid:
            logger.debug(f"跳过无 GUID 和链接的条目: {entry.get('title')}")
            continue

        entries.append(
            ParsedEntry(
                guid=guid,
                title=entry.get("title") or "Untitled",
                url=link,
                content=_entry_content(entry),
                author=entry.get("author"),
                published_at=_entry_datetime(entry),
            )
        )

    return ParsedFeed(
        url=url,
        title=parsed.feed.get("title") or url,
        site_url=parsed.feed.get("link"),
        description=parsed.feed.get("subtitle") or parsed.feed.get("description"),
        entries=entries,
    )


class SourceFetcher:
    """通过 HTTP 抓取订阅源，网络、状态码和解析错误统一转为 UpstreamError."""

    def __init__(
        self,
        timeout: float = 20.0,
        user_agent: str = DEFAULT_USER_AGENT,
    ) -> None:
        self.timeout = timeout
        self.user_agent = user_agent

    async def fetch(self, url: str) -> ParsedFeed:
        """抓取并解析订阅源."""
        headers = {
            "User-Agent": self.user_agent,
            "Accept": "application/rss+xml, application/atom+xml, application/xml, text/xml, */*",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=True
            ) as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            msg = f"抓取超时（{self.timeout:g} 秒）"
            raise UpstreamError(msg) from e
        except httpx.HTTPStatusError as e:
            msg = f"订阅源返回 HTTP {e.response.status_code}"
            raise UpstreamError(msg) from e
        except httpx.HTTPError as e:
            msg = f"网络错误: {e}"
            raise UpstreamError(msg) from e

        # feedparser 是同步解析，大文档会阻塞事件循环
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, parse_feed, url, response.content)
