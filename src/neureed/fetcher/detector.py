"""判断订阅源正文是否完整."""

from typing import ClassVar


class ContentDetector:
    """按 Feed 的全文抓取策略和正文完整度决定是否抓取原文."""

    # 常见的截断标记
    TRUNCATION_MARKERS: ClassVar[tuple[str, ...]] = (
        "...",
        "…",
        "[...]",
        "[…]",
        "read more",
        "continue reading",
        "read the full article",
        "阅读更多",
        "查看全文",
        "继续阅读",
        "展开全文",
    )

    MIN_CONTENT_LENGTH = 500

    def should_fetch(self, mode: str, title: str, text: str, url: str | None) -> bool:
        """
        根据策略判断是否抓取全文.

        Args:
            mode: 全文抓取策略 auto|always|never
            title: 文章标题
            text: 订阅源提供的纯文本正文
            url: 原文链接，缺失时不抓取

        Returns:
            True 表示需要抓取全文
        """
        if not url or mode == "never":
            return False
        if mode == "always":
            return True
        return self.looks_truncated(title, text)

    def looks_truncated(self, title: str, text: str) -> bool:
        """启发式判断正文是否被截断."""
        text = (text or "").strip()
        if len(text) < self.MIN_CONTENT_LENGTH:
            return True

        tail = text[-100:].lower()
        if any(marker in tail for marker in self.TRUNCATION_MARKERS):
            return True

        # 标题很长但正文很短
        if len(title) > 50 and len(text) < 300:
            return True

        paragraphs = [p for p in text.split("\n\n") if p.strip()]
        return len(paragraphs) <= 2 and len(text) < 800
