"""HTML 文本处理工具."""

import re

from bs4 import BeautifulSoup

_CJK_PATTERN = re.compile(r"[\u4e00-\u9fff]")


def html_to_text(html: str | None) -> str:
    """
    将 HTML 转换为纯文本.

    Args:
        html: HTML 内容，可为空

    Returns:
        去除脚本、样式和导航后的纯文本
    """
    if not html:
        return ""

    soup = BeautifulSoup(html, "lxml")
    for element in soup(["script", "style", "nav", "footer", "header"]):
        element.decompose()

    lines = [line.strip() for line in soup.get_text(separator="\n").split("\n")]
    text = "\n".join(line for line in lines if line)
    return re.sub(r"\n{3,}", "\n\n", text).strip()


def make_excerpt(text: str, length: int = 200) -> str:
    """截取摘录，按单词边界截断."""
    text = " ".join(text.split())
    if len(text) <= length:
        return text
    cut = text[:length].rsplit(" ", 1)[0]
    return f"{cut}..."


def count_words(text: str) -> int:
    """
    统计文本字数.

    中文按字符计数，其他语言按空白分隔的单词计数。
    """
    if not text:
        return 0

    chinese_chars = len(_CJK_PATTERN.findall(text))
    other_words = len(_CJK_PATTERN.sub(" ", text).split())
    return chinese_chars + other_words


def estimate_reading_time(text: str, wpm: int = 200) -> int:
    """
    估算阅读时间（秒）.

    Args:
        text: 纯文本内容
        wpm: 每分钟阅读字数，默认 200

    Returns:
        阅读时间（秒），最小 1
    """
    word_count = count_words(text)
    return max(1, round(word_count * 60 / wpm))
