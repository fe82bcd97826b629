"""
订阅设置层级解析.

有效设置由四层合并而来，优先级从高到低：
    feed（Feed 默认设置叠加用户订阅覆盖）> category（分类覆盖）> user（用户默认）> system

某层某项为 None 表示继承下一层，系统默认值保证结果总是完整的。
一个订阅属于多个设置了覆盖项的分类时，取 sort_order 最小的分类（相同则取 id 最小）。
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.errors import NotFoundError, ValidationError
from neureed.models.feed import Feed, UserCategory, UserFeed, UserFeedCategory
from neureed.models.user import UserPreferences

SettingsSource = Literal["feed", "category", "user", "system"]


class FeedSettings(BaseModel):
    """单层设置，所有字段可选."""

    model_config = ConfigDict(extra="ignore")

    refresh_interval: int | None = None  # 分钟
    max_articles_per_feed: int | None = None
    max_article_age: int | None = None  # 天
    auto_summarize: bool | None = None

    def is_empty(self) -> bool:
        """是否没有任何覆盖项."""
        return all(value is None for value in self.model_dump().values())


class EffectiveSettings(BaseModel):
    """合并后的有效设置，附带每项的来源层."""

    refresh_interval: int
    max_articles_per_feed: int
    max_article_age: int
    auto_summarize: bool
    source: dict[str, SettingsSource]


SETTING_KEYS: tuple[str, ...] = tuple(FeedSettings.model_fields)

SYSTEM_DEFAULTS: dict[str, Any] = {
    "refresh_interval": 60,
    "max_articles_per_feed": 500,
    "max_article_age": 90,
    "auto_summarize": False,
}

# 数值项的取值范围及错误提示
NUMERIC_RULES: dict[str, tuple[int, int, str]] = {
    "refresh_interval": (15, 1440, "刷新间隔必须在 15 到 1440 分钟之间"),
    "max_articles_per_feed": (50, 5000, "每个 Feed 最多保留文章数必须在 50 到 5000 之间"),
    "max_article_age": (1, 365, "文章最长保留天数必须在 1 到 365 之间"),
}

BOOLEAN_KEYS: frozenset[str] = frozenset({"auto_summarize"})


@dataclass
class SettingsLayers:
    """参与合并的各层设置."""

    feed: FeedSettings | None = None
    category: FeedSettings | None = None
    user: FeedSettings | None = None


@dataclass
class SettingsValidation:
    """设置校验结果."""

    valid: bool
    errors: list[str] = field(default_factory=list)


def parse_settings(raw: Mapping[str, Any] | None) -> FeedSettings:
    """从 JSON 列读取设置，忽略未知键."""
    if not raw:
        return FeedSettings()
    return FeedSettings.model_validate(dict(raw))


def to_storage(settings: FeedSettings | None) -> dict[str, Any] | None:
    """转换为 JSON 列存储格式，没有覆盖项时返回 None."""
    if settings is None:
        return None
    data = settings.model_dump(exclude_none=True)
    return data or None


def merge_settings(base: FeedSettings | None, override: FeedSettings | None) -> FeedSettings:
    """合并两层设置：override 中非 None 的项覆盖 base."""
    merged = (base or FeedSettings()).model_dump()
    if override is not None:
        for key, value in override.model_dump().items():
            if value is not None:
                merged[key] = value
    return FeedSettings(**merged)


def validate_settings(partial: Mapping[str, Any] | FeedSettings) -> SettingsValidation:
    """
    校验部分设置.

    每项独立按其取值范围校验，与所在层级无关；None 表示清除覆盖，总是合法。
    """
    values = partial.model_dump() if isinstance(partial, FeedSettings) else dict(partial)
    errors: list[str] = []

    for key, value in values.items():
        if key not in SETTING_KEYS:
            errors.append(f"未知设置项: {key}")
            continue
        if value is None:
            continue

        if key in BOOLEAN_KEYS:
            if not isinstance(value, bool):
                errors.append(f"{key} 必须是布尔值")
            continue

        minimum, maximum, message = NUMERIC_RULES[key]
        if isinstance(value, bool) or not isinstance(value, int):
            errors.append(f"{key} 必须是整数")
        elif not minimum <= value <= maximum:
            errors.append(message)

    return SettingsValidation(valid=not errors, errors=errors)


def ensure_valid(partial: Mapping[str, Any] | FeedSettings) -> None:
    """校验失败时抛出 ValidationError."""
    result = validate_settings(partial)
    if not result.valid:
        raise ValidationError("; ".join(result.errors), errors=result.errors)


def apply_settings_update(
    current: FeedSettings | None, update: Mapping[str, Any]
) -> FeedSettings | None:
    """
    按 PATCH 语义更新一层设置.

    update 中显式为 None 的项删除该覆盖，未出现的项保持不变。
    更新前先整体校验，非法值直接拒绝，不做截断。没有剩余覆盖项时返回 None。
    """
    ensure_valid(update)

    data = (current or FeedSettings()).model_dump()
    for key, value in update.items():
        data[key] = value

    updated = FeedSettings(**data)
    return None if updated.is_empty() else updated


def resolve_settings(layers: SettingsLayers) -> EffectiveSettings:
    """按 feed > category > user > system 的顺序解析有效设置."""
    ordered: list[tuple[SettingsSource, FeedSettings | None]] = [
        ("feed", layers.feed),
        ("category", layers.category),
        ("user", layers.user),
    ]

    values: dict[str, Any] = {}
    source: dict[str, SettingsSource] = {}
    for key in SETTING_KEYS:
        values[key] = SYSTEM_DEFAULTS[key]
        source[key] = "system"
        for layer_name, layer in ordered:
            value = getattr(layer, key) if layer is not None else None
            if value is not None:
                values[key] = value
                source[key] = layer_name
                break

    return EffectiveSettings(**values, source=source)


async def load_user_defaults(session: AsyncSession, user_id: str) -> FeedSettings:
    """读取用户级默认设置."""
    prefs = await session.get(UserPreferences, user_id)
    if prefs is None:
        return FeedSettings()
    return FeedSettings(
        refresh_interval=prefs.default_refresh_interval,
        max_articles_per_feed=prefs.default_max_articles_per_feed,
        max_article_age=prefs.default_max_article_age,
        auto_summarize=prefs.default_auto_summarize,
    )


async def load_category_override(
    session: AsyncSession, user_feed_id: str
) -> FeedSettings | None:
    """取订阅所属分类中排序最靠前且有覆盖项的分类设置."""
    stmt = (
        select(UserCategory)
        .join(UserFeedCategory, UserFeedCategory.category_id == UserCategory.id)
        .where(UserFeedCategory.user_feed_id == user_feed_id)
        .order_by(UserCategory.sort_order.asc(), UserCategory.id.asc())
    )
    result = await session.execute(stmt)
    for category in result.scalars().all():
        settings = parse_settings(category.settings)
        if not settings.is_empty():
            return settings
    return None


async def _build_layers(
    session: AsyncSession,
    feed: Feed,
    user_id: str | None,
    user_defaults: FeedSettings | None = None,
) -> SettingsLayers:
    feed_layer = parse_settings(feed.settings)
    if user_id is None:
        return SettingsLayers(feed=feed_layer)

    layers = SettingsLayers(feed=feed_layer)
    if user_defaults is None:
        user_defaults = await load_user_defaults(session, user_id)
    layers.user = user_defaults

    stmt = select(UserFeed).where(
        UserFeed.user_id == user_id,
        UserFeed.feed_id == feed.id,
    )
    result = await session.execute(stmt)
    user_feed = result.scalar_one_or_none()
    if user_feed is not None:
        layers.feed = merge_settings(feed_layer, parse_settings(user_feed.settings))
        layers.category = await load_category_override(session, user_feed.id)

    return layers


async def get_effective_settings(
    session: AsyncSession, user_id: str | None, feed_id: str
) -> EffectiveSettings:
    """
    解析某用户对某 Feed 的有效设置.

    Args:
        session: 数据库会话
        user_id: 用户 ID，None 表示系统视角（只应用 Feed 默认设置和系统默认值）
        feed_id: Feed ID

    Returns:
        EffectiveSettings: 合并后的设置及来源
    """
    feed = await session.get(Feed, feed_id)
    if feed is None:
        raise NotFoundError("Feed 不存在")

    layers = await _build_layers(session, feed, user_id)
    return resolve_settings(layers)


async def get_all_user_feed_settings(
    session: AsyncSession, user_id: str
) -> dict[str, EffectiveSettings]:
    """解析用户所有订阅的有效设置，键为 feed_id."""
    user_defaults = await load_user_defaults(session, user_id)

    stmt = (
        select(Feed)
        .join(UserFeed, UserFeed.feed_id == Feed.id)
        .where(UserFeed.user_id == user_id)
    )
    result = await session.execute(stmt)

    resolved: dict[str, EffectiveSettings] = {}
    for feed in result.scalars().all():
        layers = await _build_layers(session, feed, user_id, user_defaults)
        resolved[feed.id] = resolve_settings(layers)
    return resolved
