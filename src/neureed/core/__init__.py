"""核心业务逻辑."""

from neureed.core.cleanup import CleanupOptions, CleanupResult, cleanup_feed
from neureed.core.notifications import RefreshSummary, notify_refresh
from neureed.core.refresh import FeedRefresher, RefreshResult
from neureed.core.settings_cascade import EffectiveSettings, FeedSettings, resolve_settings

__all__ = [
    "CleanupOptions",
    "CleanupResult",
    "EffectiveSettings",
    "FeedRefresher",
    "FeedSettings",
    "RefreshResult",
    "RefreshSummary",
    "cleanup_feed",
    "notify_refresh",
    "resolve_settings",
]
