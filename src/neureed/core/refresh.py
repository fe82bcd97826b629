"""
订阅源刷新引擎.

单个 Feed 的刷新流程：抓取 → 与已存文章按 GUID 比对 → 单事务写入新增/更新
→ 尽力生成向量 → 文章集合有变化时执行保留策略清理。
同一 Feed 的并发刷新通过每个 Feed 一把 asyncio.Lock 串行化，排队期间已有其他
刷新开始的请求直接折叠为一次去重结果。
"""

import asyncio
import logging
import time
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from neureed.config import get_effective_setting
from neureed.core.cleanup import cleanup_feed_with_settings
from neureed.core.notifications import RefreshSummary, notify_refresh
from neureed.core.settings_cascade import get_all_user_feed_settings, get_effective_settings
from neureed.core.summarization import summarize_article
from neureed.embeddings import EmbeddingProvider, generate_article_embeddings
from neureed.errors import NotFoundError, UpstreamError
from neureed.fetcher import ContentDetector, FullTextExtractor, ParsedEntry, ParsedFeed, SourceFetcher
from neureed.models.article import Article
from neureed.models.feed import Feed, UserFeed
from neureed.utils.dates import utcnow
from neureed.utils.html_parser import html_to_text, make_excerpt

logger = logging.getLogger(__name__)

FULL_TEXT_CONCURRENCY = 3
AUTO_SUMMARIZE_LIMIT = 10


@dataclass
class RefreshResult:
    """单个 Feed 的刷新结果."""

    feed_id: str
    success: bool
    new_articles: int = 0
    updated_articles: int = 0
    skipped_articles: int = 0
    duration: float = 0.0
    error: str | None = None
    embeddings_generated: int = 0
    embedding_tokens: int = 0
    articles_cleaned_up: int = 0
    deduplicated: bool = False

    @property
    def changed(self) -> bool:
        """文章集合是否发生变化."""
        return self.new_articles > 0 or self.updated_articles > 0


@dataclass
class BatchRefreshOutcome:
    """一批刷新的结果及发出的通知."""

    results: list[RefreshResult]
    summary: RefreshSummary
    notified_users: list[str] = field(default_factory=list)


@dataclass
class _IngestStats:
    new_articles: int = 0
    updated_articles: int = 0
    skipped_articles: int = 0
    inserted_ids: list[str] = field(default_factory=list)


def summarize_results(results: list[RefreshResult], duration: float = 0.0) -> RefreshSummary:
    """汇总多个 Feed 的刷新结果."""
    return RefreshSummary(
        total_feeds=len(results),
        successful=sum(1 for r in results if r.success),
        failed=sum(1 for r in results if not r.success),
        new_articles=sum(r.new_articles for r in results),
        updated_articles=sum(r.updated_articles for r in results),
        articles_cleaned_up=sum(r.articles_cleaned_up for r in results),
        embeddings_generated=sum(r.embeddings_generated for r in results),
        total_tokens=sum(r.embedding_tokens for r in results),
        duration=round(duration, 3),
    )


def dedupe_entries(entries: list[ParsedEntry]) -> list[ParsedEntry]:
    """同一批次内按 GUID 去重，保留首次出现的条目."""
    seen: set[str] = set()
    unique: list[ParsedEntry] = []
    for entry in entries:
        if entry.guid in seen:
            continue
        seen.add(entry.guid)
        unique.append(entry)
    return unique


def is_feed_due(feed: Feed, refresh_interval: int, now: datetime) -> bool:
    """按刷新间隔判断 Feed 是否需要刷新."""
    if feed.last_fetched is None:
        return True
    return now - feed.last_fetched >= timedelta(minutes=refresh_interval)


class FeedRefresher:
    """订阅源刷新器，由应用生命周期创建并共享."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        fetcher: SourceFetcher | None = None,
        extractor: FullTextExtractor | None = None,
        embedding_provider: EmbeddingProvider | None = None,
        concurrency: int | None = None,
    ) -> None:
        timeout = float(get_effective_setting("fetch_timeout_seconds") or 20)
        self.session_factory = session_factory
        self.fetcher = fetcher or SourceFetcher(
            timeout=timeout,
            user_agent=str(get_effective_setting("user_agent")),
        )
        self.extractor = extractor or FullTextExtractor(timeout=int(timeout))
        self.detector = ContentDetector()
        self.embedding_provider = embedding_provider
        self._concurrency = concurrency
        self._locks: dict[str, asyncio.Lock] = {}
        # 持有或等待各 Feed 锁的请求数，归零后释放锁对象
        self._lock_holders: dict[str, int] = {}

    @property
    def concurrency(self) -> int:
        if self._concurrency is not None:
            return self._concurrency
        return int(get_effective_setting("refresh_concurrency") or 5)

    @asynccontextmanager
    async def _feed_lock(self, feed_id: str) -> AsyncIterator[bool]:
        """获取 Feed 级锁，产出进入时是否已有同一 Feed 的刷新在进行."""
        lock = self._locks.setdefault(feed_id, asyncio.Lock())
        already_running = lock.locked()
        self._lock_holders[feed_id] = self._lock_holders.get(feed_id, 0) + 1
        try:
            async with lock:
                yield already_running
        finally:
            self._lock_holders[feed_id] -= 1
            if self._lock_holders[feed_id] == 0:
                del self._lock_holders[feed_id]
                del self._locks[feed_id]

    async def refresh_feed(self, feed_id: str, user_id: str | None = None) -> RefreshResult:
        """
        刷新单个 Feed.

        Args:
            feed_id: Feed ID
            user_id: 发起刷新的用户，用于解析自动摘要等用户级设置

        Returns:
            RefreshResult: 抓取或解析失败时 success=False，不抛出异常

        Raises:
            NotFoundError: Feed 不存在
        """
        requested_at = utcnow()
        started = time.monotonic()

        async with self._feed_lock(feed_id) as already_running, self.session_factory() as session:
            feed = await session.get(Feed, feed_id)
            if feed is None:
                raise NotFoundError("Feed 不存在")

            # 进入时已有刷新在进行，或等锁期间已有其他刷新开始，直接复用其结果
            superseded = feed.last_attempted_at is not None and feed.last_attempted_at > requested_at
            if already_running or superseded:
                logger.info(f"Feed {feed_id} 已被并发刷新，跳过重复请求")
                return RefreshResult(
                    feed_id=feed_id,
                    success=feed.last_error is None,
                    error=feed.last_error,
                    deduplicated=True,
                    duration=time.monotonic() - started,
                )

            feed.last_attempted_at = utcnow()
            await session.commit()

            try:
                parsed = await self.fetcher.fetch(feed.url)
            except UpstreamError as e:
                await self._record_failure(session, feed_id, e.message)
                return RefreshResult(
                    feed_id=feed_id,
                    success=False,
                    error=e.message,
                    duration=time.monotonic() - started,
                )

            try:
                stats = await self._ingest(session, feed, parsed)
            except Exception as e:
                logger.exception(f"Feed {feed_id} 写入文章失败，已回滚")
                await session.rollback()
                error = f"保存文章失败: {e}"
                await self._record_failure(session, feed_id, error)
                return RefreshResult(
                    feed_id=feed_id,
                    success=False,
                    error=error,
                    duration=time.monotonic() - started,
                )

            result = RefreshResult(
                feed_id=feed_id,
                success=True,
                new_articles=stats.new_articles,
                updated_articles=stats.updated_articles,
                skipped_articles=stats.skipped_articles,
            )
            await self._after_ingest(session, feed_id, user_id, stats, result)

        result.duration = time.monotonic() - started
        logger.info(
            f"Feed {feed_id} 刷新完成: 新增={result.new_articles}, "
            f"更新={result.updated_articles}, 跳过={result.skipped_articles}, "
            f"清理={result.articles_cleaned_up}"
        )
        return result

    async def _record_failure(self, session: AsyncSession, feed_id: str, error: str) -> None:
        """累加错误计数并记录最近错误."""
        feed = await session.get(Feed, feed_id)
        if feed is None:
            return
        feed.error_count += 1
        feed.last_error = error[:500]
        feed.updated_at = utcnow()
        await session.commit()
        logger.warning(f"Feed {feed_id} 刷新失败（第 {feed.error_count} 次）: {error}")

    async def _ingest(self, session: AsyncSession, feed: Feed, parsed: ParsedFeed) -> _IngestStats:
        """按 GUID 比对并在一个事务内写入新增和更新的文章."""
        entries = dedupe_entries(parsed.entries)
        stats = _IngestStats()
        guids = [entry.guid for entry in entries]

        existing: dict[str, Article] = {}
        if guids:
            stmt = select(Article).where(
                Article.feed_id == feed.id,
                Article.guid.in_(guids),  # type: ignore[attr-defined]
            )
            existing = {a.guid: a for a in (await session.execute(stmt)).scalars().all()}

        new_entries = [entry for entry in entries if entry.guid not in existing]
        full_texts = await self._extract_full_texts(feed.fetch_full_text, new_entries)

        now = utcnow()
        for entry in entries:
            article = existing.get(entry.guid)
            if article is None:
                article = self._build_article(feed.id, entry, full_texts.get(entry.guid))
                session.add(article)
                stats.new_articles += 1
                stats.inserted_ids.append(article.id)
            elif article.content_hash != entry.content_hash or article.title != entry.title:
                content_text = html_to_text(entry.content)
                article.title = entry.title
                article.url = entry.url
                article.author = entry.author
                article.content = entry.content
                article.content_text = content_text
                article.excerpt = make_excerpt(content_text)
                article.content_source = "feed"
                article.content_hash = entry.content_hash
                article.published_at = entry.published_at or article.published_at
                article.updated_at = now
                stats.updated_articles += 1
            else:
                stats.skipped_articles += 1

        if parsed.title and feed.title in ("", feed.url):
            feed.title = parsed.title
        feed.site_url = feed.site_url or parsed.site_url
        feed.description = feed.description or parsed.description
        feed.last_fetched = now
        feed.error_count = 0
        feed.last_error = None
        feed.updated_at = now

        await session.commit()
        return stats

    def _build_article(self, feed_id: str, entry: ParsedEntry, full_text: tuple[str, str] | None) -> Article:
        content = entry.content
        content_text = html_to_text(entry.content)
        content_source = "feed"
        if full_text is not None:
            content, content_text = full_text
            content_source = "fetched"

        return Article(
            feed_id=feed_id,
            guid=entry.guid,
            title=entry.title,
            url=entry.url,
            author=entry.author,
            content=content,
            content_text=content_text,
            excerpt=make_excerpt(content_text),
            content_hash=entry.content_hash,
            content_source=content_source,
            published_at=entry.published_at,
        )

    async def _extract_full_texts(
        self, mode: str, entries: list[ParsedEntry]
    ) -> dict[str, tuple[str, str]]:
        """为新文章抓取原文全文，失败时保留订阅源正文."""
        targets = [
            entry
            for entry in entries
            if self.detector.should_fetch(mode, entry.title, html_to_text(entry.content), entry.url)
        ]
        if not targets:
            return {}

        semaphore = asyncio.Semaphore(FULL_TEXT_CONCURRENCY)
        extracted: dict[str, tuple[str, str]] = {}

        async def extract_one(entry: ParsedEntry) -> None:
            async with semaphore:
                try:
                    result = await self.extractor.fetch(entry.url or "")
                except Exception as e:
                    logger.warning(f"全文抓取失败 {entry.url}: {e}")
                    return
            if result.success and result.content_text:
                extracted[entry.guid] = (
                    result.content_html or entry.content,
                    result.content_text,
                )

        await asyncio.gather(*(extract_one(entry) for entry in targets))
        return extracted

    async def _after_ingest(
        self,
        session: AsyncSession,
        feed_id: str,
        user_id: str | None,
        stats: _IngestStats,
        result: RefreshResult,
    ) -> None:
        """写入后的附带操作，全部尽力而为，失败不影响刷新结果."""
        if stats.inserted_ids and get_effective_setting("embedding_auto_generate"):
            try:
                run = await generate_article_embeddings(
                    session, stats.inserted_ids, provider=self.embedding_provider
                )
                result.embeddings_generated = run.generated
                result.embedding_tokens = run.tokens
            except Exception as e:
                await session.rollback()
                logger.warning(f"Feed {feed_id} 生成向量失败: {e}")

        if stats.inserted_ids and user_id is not None:
            await self._auto_summarize(session, feed_id, user_id, stats.inserted_ids)

        if not result.changed:
            return

        try:
            cleanup = await cleanup_feed_with_settings(session, feed_id)
            result.articles_cleaned_up = cleanup.deleted
        except Exception:
            await session.rollback()
            logger.exception(f"Feed {feed_id} 清理失败")

    async def _auto_summarize(
        self, session: AsyncSession, feed_id: str, user_id: str, article_ids: list[str]
    ) -> None:
        if not get_effective_setting("summarization_enabled"):
            return
        try:
            effective = await get_effective_settings(session, user_id, feed_id)
        except NotFoundError:
            return
        if not effective.auto_summarize:
            return

        for article_id in article_ids[:AUTO_SUMMARIZE_LIMIT]:
            try:
                await summarize_article(session, article_id)
            except Exception as e:
                await session.rollback()
                logger.warning(f"文章 {article_id} 自动摘要失败: {e}")

    async def refresh_feeds(
        self, feed_ids: list[str], user_id: str | None = None
    ) -> list[RefreshResult]:
        """
        并发刷新多个 Feed.

        单个 Feed 的任何异常都转为失败结果，不影响其他 Feed。
        """
        semaphore = asyncio.Semaphore(self.concurrency)

        async def run_one(feed_id: str) -> RefreshResult:
            async with semaphore:
                try:
                    return await self.refresh_feed(feed_id, user_id)
                except Exception as e:
                    logger.exception(f"Feed {feed_id} 刷新异常")
                    message = e.message if isinstance(e, NotFoundError) else str(e)
                    return RefreshResult(feed_id=feed_id, success=False, error=message)

        return list(await asyncio.gather(*(run_one(feed_id) for feed_id in feed_ids)))

    async def select_due_feeds(
        self, session: AsyncSession, user_id: str, force: bool = False
    ) -> list[str]:
        """选出用户需要刷新的订阅（按有效刷新间隔，跳过连续失败过多的 Feed）."""
        settings_by_feed = await get_all_user_feed_settings(session, user_id)
        if not settings_by_feed:
            return []

        max_errors = int(get_effective_setting("max_feed_errors") or 10)
        stmt = select(Feed).where(Feed.id.in_(list(settings_by_feed)))  # type: ignore[attr-defined]
        feeds = (await session.execute(stmt)).scalars().all()

        now = utcnow()
        due: list[str] = []
        for feed in feeds:
            if force:
                due.append(feed.id)
                continue
            if feed.error_count >= max_errors:
                continue
            if is_feed_due(feed, settings_by_feed[feed.id].refresh_interval, now):
                due.append(feed.id)
        return due

    async def refresh_user_feeds(self, user_id: str, force: bool = False) -> BatchRefreshOutcome:
        """刷新用户到期的订阅，全部结果收集完后发出一条通知."""
        started = time.monotonic()
        async with self.session_factory() as session:
            feed_ids = await self.select_due_feeds(session, user_id, force=force)

        results = await self.refresh_feeds(feed_ids, user_id)
        summary = summarize_results(results, time.monotonic() - started)
        outcome = BatchRefreshOutcome(results=results, summary=summary)

        async with self.session_factory() as session:
            notification = await notify_refresh(session, user_id, summary, self.session_factory)
        if notification is not None:
            outcome.notified_users.append(user_id)
        return outcome

    async def refresh_all_due_feeds(self) -> BatchRefreshOutcome:
        """
        定时刷新所有用户到期的订阅.

        每个 Feed 只抓取一次，结果收集完毕后为每个受影响的用户各发一条通知。
        """
        started = time.monotonic()
        users_by_feed: dict[str, list[str]] = defaultdict(list)

        async with self.session_factory() as session:
            user_ids = (await session.execute(select(UserFeed.user_id).distinct())).scalars().all()
            for user_id in user_ids:
                for feed_id in await self.select_due_feeds(session, user_id):
                    users_by_feed[feed_id].append(user_id)

        results = await self.refresh_feeds(list(users_by_feed))
        summary = summarize_results(results, time.monotonic() - started)
        outcome = BatchRefreshOutcome(results=results, summary=summary)

        results_by_user: dict[str, list[RefreshResult]] = defaultdict(list)
        for result in results:
            for user_id in users_by_feed[result.feed_id]:
                results_by_user[user_id].append(result)

        async with self.session_factory() as session:
            for user_id, user_results in results_by_user.items():
                user_summary = summarize_results(user_results, summary.duration)
                notification = await notify_refresh(
                    session, user_id, user_summary, self.session_factory
                )
                if notification is not None:
                    outcome.notified_users.append(user_id)

        logger.info(
            f"定时刷新完成: feeds={summary.total_feeds}, 成功={summary.successful}, "
            f"失败={summary.failed}, 新增={summary.new_articles}, 更新={summary.updated_articles}"
        )
        return outcome
