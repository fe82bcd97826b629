"""订阅源抓取模块."""

from neureed.fetcher.detector import ContentDetector
from neureed.fetcher.extractor import FullTextExtractor, FullTextResult
from neureed.fetcher.source import ParsedEntry, ParsedFeed, SourceFetcher, parse_feed

__all__ = [
    "ContentDetector",
    "FullTextExtractor",
    "FullTextResult",
    "ParsedEntry",
    "ParsedFeed",
    "SourceFetcher",
    "parse_feed",
]
