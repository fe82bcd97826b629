"""原文全文提取."""

import asyncio
import logging
import re
from concurrent.futures import ThreadPoolExecutor

from pydantic import BaseModel
from trafilatura import extract, fetch_url
from trafilatura.settings import use_config

from neureed.fetcher.source import DEFAULT_USER_AGENT

logger = logging.getLogger(__name__)


class FullTextResult(BaseModel):
    """全文抓取结果."""

    success: bool
    content_html: str | None = None
    content_text: str | None = None
    error: str | None = None


class FullTextExtractor:
    """使用 trafilatura 提取网页正文."""

    def __init__(self, timeout: int = 20, max_workers: int = 4) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._config = use_config()
        self._config.set("DEFAULT", "USER_AGENT", DEFAULT_USER_AGENT)
        self._config.set("DEFAULT", "DOWNLOAD_TIMEOUT", str(timeout))

    async def fetch(self, url: str) -> FullTextResult:
        """
        抓取指定 URL 的正文.

        trafilatura 是同步库，这里放到线程池中执行。
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._fetch_sync, url)

    def _fetch_sync(self, url: str) -> FullTextResult:
        downloaded = fetch_url(url, config=self._config)
        if not downloaded:
            return FullTextResult(success=False, error="下载页面失败")

        html_content = extract(
            downloaded,
            include_comments=False,
            include_tables=True,
            include_images=True,
            include_links=True,
            output_format="html",
        )
        text_content = extract(
            downloaded,
            include_comments=False,
            include_tables=True,
            output_format="txt",
        )
        if not html_content and not text_content:
            return FullTextResult(success=False, error="无法从页面中提取正文")

        if text_content:
            text_content = re.sub(r"\n{3,}", "\n\n", text_content).strip()

        return FullTextResult(
            success=True,
            content_html=html_content,
            content_text=text_content,
        )

    def close(self) -> None:
        """关闭线程池."""
        self._executor.shutdown(wait=False)
