"""通用工具函数."""

from neureed.utils.dates import utcnow
from neureed.utils.html_parser import estimate_reading_time, html_to_text
from neureed.utils.ids import new_id

__all__ = [
    "estimate_reading_time",
    "html_to_text",
    "new_id",
    "utcnow",
]
