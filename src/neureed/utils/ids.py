"""标识符生成."""

import uuid


def new_id() -> str:
    """生成不透明的字符串 ID."""
    return uuid.uuid4().hex
