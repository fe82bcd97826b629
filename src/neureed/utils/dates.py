"""时间工具."""

from datetime import UTC, datetime


def utcnow() -> datetime:
    """当前 UTC 时间（不带时区信息，与 SQLite 读回的值保持一致）."""
    return datetime.now(UTC).replace(tzinfo=None)
