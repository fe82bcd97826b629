"""测试 HTTP API."""

import json

from httpx import AsyncClient
from starlette.requests import Request

from neureed.errors import ValidationError, neureed_error_handler
from neureed.fetcher import ParsedEntry

ALICE = {"X-User-Id": "alice"}
BOB = {"X-User-Id": "bob"}
FEED_URL = "https://blog.example/rss"


def _entries() -> list[ParsedEntry]:
    return [
        ParsedEntry(guid=f"post-{i}", title=f"Post {i}", url=f"https://blog.example/{i}", content="<p>Hi</p>")
        for i in range(2)
    ]


class TestApp:
    """测试应用基础端点."""

    async def test_health(self, client: AsyncClient) -> None:
        response = await client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}

    async def test_missing_user_header(self, client: AsyncClient) -> None:
        """没有用户身份返回 401."""
        response = await client.get("/api/feeds")
        assert response.status_code == 401
        assert response.json()["error"] == "AuthenticationError"

    async def test_error_handler_includes_field_errors(self) -> None:
        """校验错误返回 422 并带上字段错误列表."""
        request = Request({"type": "http", "method": "PATCH", "path": "/api/x", "headers": [], "query_string": b""})
        exc = ValidationError("配置无效", errors=["fetch_full_text 取值无效"])

        response = await neureed_error_handler(request, exc)

        assert response.status_code == 422
        body = json.loads(response.body)
        assert body["error"] == "ValidationError"
        assert body["errors"] == ["fetch_full_text 取值无效"]
        assert body["detail"] == "配置无效"


class TestFeedsApi:
    """测试订阅 API."""

    async def test_subscribe_refreshes_immediately(
        self, client: AsyncClient, fake_fetcher
    ) -> None:
        """订阅后立即刷新，文章可在列表中看到."""
        fake_fetcher.set_entries(FEED_URL, _entries(), title="Example Blog")

        response = await client.post("/api/feeds", json={"url": FEED_URL}, headers=ALICE)
        assert response.status_code == 201
        data = response.json()
        assert data["title"] == "Example Blog"
        assert data["refresh"]["new_articles"] == 2

        articles = await client.get("/api/articles", headers=ALICE)
        assert articles.json()["total"] == 2

        feeds = await client.get("/api/feeds", headers=ALICE)
        assert feeds.json()["items"][0]["unread_count"] == 2

        duplicate = await client.post("/api/feeds", json={"url": FEED_URL}, headers=ALICE)
        assert duplicate.status_code == 409

    async def test_failed_first_refresh_still_subscribes(
        self, client: AsyncClient, fake_fetcher
    ) -> None:
        """首次刷新失败不影响订阅成功."""
        fake_fetcher.set_error(FEED_URL)

        response = await client.post("/api/feeds", json={"url": FEED_URL}, headers=ALICE)
        assert response.status_code == 201
        assert response.json()["refresh"]["success"] is False
        assert response.json()["error_count"] == 1

    async def test_invalid_settings_rejected(self, client: AsyncClient, fake_fetcher) -> None:
        """非法设置返回 422 和错误列表."""
        fake_fetcher.set_entries(FEED_URL, [])
        response = await client.post(
            "/api/feeds",
            json={"url": FEED_URL, "settings": {"refresh_interval": 5}},
            headers=ALICE,
        )
        assert response.status_code == 422
        assert response.json()["errors"]

        validation = await client.post(
            "/api/feeds/settings/validate", json={"max_article_age": 400}
        )
        assert validation.json()["valid"] is False

    async def test_effective_settings_and_patch(self, client: AsyncClient, fake_fetcher) -> None:
        """PATCH 设置后有效设置的来源变为 feed，null 清除覆盖."""
        fake_fetcher.set_entries(FEED_URL, [])
        created = await client.post("/api/feeds", json={"url": FEED_URL}, headers=ALICE)
        feed_id = created.json()["id"]

        await client.patch(
            f"/api/feeds/{feed_id}", json={"settings": {"refresh_interval": 30}}, headers=ALICE
        )
        effective = (await client.get(f"/api/feeds/{feed_id}/settings", headers=ALICE)).json()
        assert effective["refresh_interval"] == 30
        assert effective["source"]["refresh_interval"] == "feed"

        await client.patch(
            f"/api/feeds/{feed_id}", json={"settings": {"refresh_interval": None}}, headers=ALICE
        )
        effective = (await client.get(f"/api/feeds/{feed_id}/settings", headers=ALICE)).json()
        assert effective["refresh_interval"] == 60
        assert effective["source"]["refresh_interval"] == "system"

    async def test_unknown_feed(self, client: AsyncClient) -> None:
        response = await client.get("/api/feeds/missing", headers=ALICE)
        assert response.status_code == 404


class TestArticlesApi:
    """测试文章 API."""

    async def test_unknown_article(self, client: AsyncClient) -> None:
        response = await client.get("/api/articles/missing", headers=ALICE)
        assert response.status_code == 404

    async def test_search_requires_embedding(self, client: AsyncClient) -> None:
        """未启用 Embedding 时语义搜索返回 503."""
        response = await client.get("/api/articles/search", params={"q": "python"}, headers=ALICE)
        assert response.status_code == 503

    async def test_read_and_star(self, client: AsyncClient, fake_fetcher) -> None:
        """标记已读和收藏后在列表中反映."""
        fake_fetcher.set_entries(FEED_URL, _entries())
        await client.post("/api/feeds", json={"url": FEED_URL}, headers=ALICE)
        items = (await client.get("/api/articles", headers=ALICE)).json()["items"]
        article_id = items[0]["id"]

        assert (await client.put(f"/api/articles/{article_id}/read", headers=ALICE)).status_code == 200
        assert (await client.put(f"/api/articles/{article_id}/star", headers=ALICE)).status_code == 200

        unread = (await client.get("/api/articles", params={"unread_only": True}, headers=ALICE)).json()
        assert unread["total"] == 1
        starred = (await client.get("/api/articles", params={"starred_only": True}, headers=ALICE)).json()
        assert [a["id"] for a in starred["items"]] == [article_id]

        # 未订阅的用户看不到这篇文章
        response = await client.get(f"/api/articles/{article_id}", headers=BOB)
        assert response.status_code == 404

    async def test_scores_follow_feedback(self, client: AsyncClient, fake_fetcher) -> None:
        """喜欢一篇文章后，含相同关键词的文章得分升高."""
        fake_fetcher.set_entries(FEED_URL, _entries())
        await client.post("/api/feeds", json={"url": FEED_URL}, headers=ALICE)
        items = (await client.get("/api/articles", headers=ALICE)).json()["items"]
        first, second = items[0]["id"], items[1]["id"]

        neutral = (await client.get(f"/api/articles/{second}/score", headers=ALICE)).json()
        assert neutral["score"] == 0.5
        assert neutral["label"] == "medium"

        await client.post(f"/api/articles/{first}/feedback", json={"value": 1.0}, headers=ALICE)
        scored = (await client.get(f"/api/articles/{second}/score", headers=ALICE)).json()
        assert scored["score"] > 0.9
        assert scored["matching_patterns"][0]["keyword"] == "post"

        batch = await client.post(
            "/api/articles/scores", json={"article_ids": [second, "missing", first]}, headers=ALICE
        )
        assert [s["article_id"] for s in batch.json()["items"]] == [second, first]

        response = await client.get(f"/api/articles/{second}/score", headers=BOB)
        assert response.status_code == 404


class TestAdminApi:
    """测试管理权限."""

    async def test_first_user_is_admin(self, client: AsyncClient) -> None:
        """第一个出现的用户成为管理员，后来的用户无权访问管理接口."""
        admin = await client.get("/api/admin/users", headers=ALICE)
        assert admin.status_code == 200
        assert admin.json()["items"][0]["role"] == "admin"

        denied = await client.get("/api/admin/users", headers=BOB)
        assert denied.status_code == 403

    async def test_last_admin_cannot_be_demoted(self, client: AsyncClient) -> None:
        await client.get("/api/admin/users", headers=ALICE)
        response = await client.put(
            "/api/admin/users/alice/role", json={"role": "user"}, headers=ALICE
        )
        assert response.status_code == 409

    async def test_promote_user(self, client: AsyncClient) -> None:
        await client.get("/api/admin/users", headers=ALICE)
        await client.get("/api/feeds", headers=BOB)

        response = await client.put("/api/admin/users/bob/role", json={"role": "admin"}, headers=ALICE)
        assert response.status_code == 200
        assert (await client.get("/api/admin/users", headers=BOB)).status_code == 200

    async def test_cleanup_dry_run(self, client: AsyncClient) -> None:
        response = await client.post("/api/admin/cleanup", json={"dry_run": True}, headers=ALICE)
        assert response.status_code == 200
        assert response.json()["dry_run"] is True

    async def test_job_status(self, client: AsyncClient) -> None:
        response = await client.get("/api/jobs", headers=ALICE)
        assert response.status_code == 200
        names = {item["name"] for item in response.json()["items"]}
        assert names == {"feed_refresh", "cleanup", "pattern_decay", "embedding_generation"}
