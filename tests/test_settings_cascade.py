"""测试设置层级解析."""

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.core.categories import assign_feed, create_category
from neureed.core.settings_cascade import (
    FeedSettings,
    SettingsLayers,
    apply_settings_update,
    get_effective_settings,
    resolve_settings,
    validate_settings,
)
from neureed.errors import NotFoundError, ValidationError
from neureed.models.feed import Feed, UserFeed
from neureed.models.user import User, UserPreferences


class TestResolveSettings:
    """测试纯函数解析."""

    def test_system_defaults_when_no_layers(self) -> None:
        """没有任何覆盖时全部取系统默认值."""
        effective = resolve_settings(SettingsLayers())
        assert effective.refresh_interval == 60
        assert effective.max_articles_per_feed == 500
        assert effective.max_article_age == 90
        assert effective.auto_summarize is False
        assert set(effective.source.values()) == {"system"}

    def test_each_key_resolved_independently(self) -> None:
        """每项分别取最具体的非空层."""
        effective = resolve_settings(
            SettingsLayers(
                feed=FeedSettings(refresh_interval=30),
                category=FeedSettings(refresh_interval=120, max_article_age=7),
                user=FeedSettings(max_articles_per_feed=100, max_article_age=30),
            )
        )
        assert effective.refresh_interval == 30
        assert effective.source["refresh_interval"] == "feed"
        assert effective.max_article_age == 7
        assert effective.source["max_article_age"] == "category"
        assert effective.max_articles_per_feed == 100
        assert effective.source["max_articles_per_feed"] == "user"
        assert effective.source["auto_summarize"] == "system"

    def test_false_boolean_is_an_override(self) -> None:
        """False 是有效覆盖值，不会穿透到下一层."""
        effective = resolve_settings(
            SettingsLayers(
                feed=FeedSettings(auto_summarize=False),
                user=FeedSettings(auto_summarize=True),
            )
        )
        assert effective.auto_summarize is False
        assert effective.source["auto_summarize"] == "feed"


class TestValidateSettings:
    """测试设置校验."""

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("refresh_interval", 14),
            ("refresh_interval", 1441),
            ("max_articles_per_feed", 49),
            ("max_articles_per_feed", 5001),
            ("max_article_age", 0),
            ("max_article_age", 366),
        ],
    )
    def test_out_of_range_rejected(self, key: str, value: int) -> None:
        """超出范围的值被拒绝."""
        result = validate_settings({key: value})
        assert result.valid is False
        assert len(result.errors) == 1

    @pytest.mark.parametrize(
        ("key", "value"),
        [
            ("refresh_interval", 15),
            ("refresh_interval", 1440),
            ("max_articles_per_feed", 50),
            ("max_article_age", 365),
        ],
    )
    def test_boundaries_accepted(self, key: str, value: int) -> None:
        """边界值合法."""
        assert validate_settings({key: value}).valid is True

    def test_unknown_key_and_wrong_type(self) -> None:
        """未知键和错误类型都会报告."""
        result = validate_settings({"foo": 1, "refresh_interval": "60", "auto_summarize": 1})
        assert result.valid is False
        assert len(result.errors) == 3

    def test_none_always_valid(self) -> None:
        """None 表示清除覆盖."""
        assert validate_settings({"refresh_interval": None}).valid is True


class TestApplySettingsUpdate:
    """测试 PATCH 语义."""

    def test_null_removes_override(self) -> None:
        """显式 null 删除覆盖项，其余保持不变."""
        current = FeedSettings(refresh_interval=30, max_article_age=10)
        updated = apply_settings_update(current, {"refresh_interval": None})
        assert updated is not None
        assert updated.refresh_interval is None
        assert updated.max_article_age == 10

    def test_returns_none_when_empty(self) -> None:
        """全部清除后返回 None."""
        current = FeedSettings(refresh_interval=30)
        assert apply_settings_update(current, {"refresh_interval": None}) is None

    def test_invalid_value_not_clamped(self) -> None:
        """非法值直接拒绝."""
        with pytest.raises(ValidationError) as exc_info:
            apply_settings_update(None, {"refresh_interval": 5})
        assert exc_info.value.errors


class TestEffectiveSettingsFromDatabase:
    """测试从数据库读取各层设置."""

    async def test_user_layer_overlays_feed_defaults(
        self, async_session: AsyncSession, user: User
    ) -> None:
        """订阅覆盖设置叠加在 Feed 默认设置之上，共同构成 feed 层."""
        feed = Feed(url="https://a.example/rss", title="A", settings={"refresh_interval": 240})
        async_session.add(feed)
        await async_session.flush()
        async_session.add(
            UserFeed(user_id=user.id, feed_id=feed.id, settings={"max_article_age": 5})
        )
        async_session.add(UserPreferences(user_id=user.id, default_max_articles_per_feed=200))
        await async_session.commit()

        effective = await get_effective_settings(async_session, user.id, feed.id)
        assert effective.refresh_interval == 240
        assert effective.max_article_age == 5
        assert effective.source["max_article_age"] == "feed"
        assert effective.max_articles_per_feed == 200
        assert effective.source["max_articles_per_feed"] == "user"

    async def test_category_tie_break_by_sort_order(
        self, async_session: AsyncSession, user: User, feed: Feed, subscription: UserFeed
    ) -> None:
        """多个分类时取排序最靠前且有覆盖项的分类."""
        empty = await create_category(async_session, user.id, "Empty")
        first = await create_category(
            async_session, user.id, "Tech", settings={"refresh_interval": 30}
        )
        second = await create_category(
            async_session, user.id, "News", settings={"refresh_interval": 720}
        )
        for category in (second, first, empty):
            await assign_feed(async_session, user.id, feed.id, category.id)

        effective = await get_effective_settings(async_session, user.id, feed.id)
        assert effective.refresh_interval == 30
        assert effective.source["refresh_interval"] == "category"

    async def test_missing_feed_raises(self, async_session: AsyncSession, user: User) -> None:
        """Feed 不存在时抛出 NotFoundError."""
        with pytest.raises(NotFoundError):
            await get_effective_settings(async_session, user.id, "missing")

    async def test_system_view_ignores_user_layers(
        self, async_session: AsyncSession, user: User, feed: Feed, subscription: UserFeed
    ) -> None:
        """不指定用户时只应用 Feed 设置和系统默认值."""
        async_session.add(UserPreferences(user_id=user.id, default_refresh_interval=15))
        await async_session.commit()

        effective = await get_effective_settings(async_session, None, feed.id)
        assert effective.refresh_interval == 60
        assert effective.source["refresh_interval"] == "system"
