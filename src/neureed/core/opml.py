"""OPML 订阅导入导出."""

import logging
from dataclasses import dataclass, field
from email.utils import format_datetime

from lxml import etree
from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.core.categories import assign_feed, create_category
from neureed.core.subscriptions import list_subscriptions, normalize_url, subscribe
from neureed.errors import ValidationError
from neureed.models.feed import Feed, UserCategory, UserFeed, UserFeedCategory
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

MAX_OPML_BYTES = 2 * 1024 * 1024


@dataclass
class OpmlOutline:
    """OPML 中的一个订阅."""

    url: str
    title: str
    site_url: str | None = None
    categories: list[str] = field(default_factory=list)


@dataclass
class OpmlImportResult:
    total: int = 0
    subscribed: int = 0
    already_subscribed: int = 0
    categories_created: int = 0
    errors: list[dict[str, str]] = field(default_factory=list)
    new_feed_ids: list[str] = field(default_factory=list)


def parse_opml(content: bytes) -> list[OpmlOutline]:
    """
    解析 OPML 文档.

    带 xmlUrl 的 outline 是订阅，其余带 text/title 的 outline 视为分类，
    嵌套分类路径上的每一级都记为该订阅的分类。

    Raises:
        ValidationError: 文档过大、不是合法 XML 或根元素不是 opml
    """
    if len(content) > MAX_OPML_BYTES:
        msg = "OPML 文件过大"
        raise ValidationError(msg)

    parser = etree.XMLParser(resolve_entities=False, no_network=True, recover=False)
    try:
        root = etree.fromstring(content, parser=parser)
    except etree.XMLSyntaxError as e:
        msg = f"OPML 解析失败: {e}"
        raise ValidationError(msg) from e

    if etree.QName(root).localname != "opml":
        msg = "OPML 缺少 opml 根元素"
        raise ValidationError(msg)

    body = root.find("body")
    outlines: list[OpmlOutline] = []
    if body is not None:
        _collect_outlines(body, [], outlines)
    return outlines


def _collect_outlines(parent: etree._Element, path: list[str], out: list[OpmlOutline]) -> None:
    for node in parent.iterchildren("outline"):
        url = (node.get("xmlUrl") or node.get("xmlurl") or "").strip()
        label = (node.get("title") or node.get("text") or "").strip()
        if url:
            out.append(
                OpmlOutline(
                    url=url,
                    title=label or url,
                    site_url=node.get("htmlUrl") or None,
                    categories=list(path),
                )
            )
        elif label:
            _collect_outlines(node, [*path, label], out)
        else:
            _collect_outlines(node, path, out)


def build_opml(feeds: list[tuple[Feed, str, list[str]]], title: str = "NeuReed Subscriptions") -> bytes:
    """
    生成 OPML 2.0 文档.

    Args:
        feeds: (Feed, 显示名称, 分类名列表)；属于多个分类的订阅在每个分类下各出现一次
    """
    root = etree.Element("opml", version="2.0")
    head = etree.SubElement(root, "head")
    etree.SubElement(head, "title").text = title
    etree.SubElement(head, "dateCreated").text = format_datetime(utcnow(), usegmt=False)
    body = etree.SubElement(root, "body")

    category_nodes: dict[str, etree._Element] = {}
    for feed, name, category_names in feeds:
        parents = []
        for category_name in category_names:
            node = category_nodes.get(category_name)
            if node is None:
                node = etree.SubElement(body, "outline", text=category_name, title=category_name)
                category_nodes[category_name] = node
            parents.append(node)
        for parent in parents or [body]:
            _feed_outline(parent, feed, name)

    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", pretty_print=True)


def _feed_outline(parent: etree._Element, feed: Feed, name: str) -> None:
    attrs = {"type": "rss", "text": name, "title": name, "xmlUrl": feed.url}
    if feed.site_url:
        attrs["htmlUrl"] = feed.site_url
    if feed.description:
        attrs["description"] = feed.description
    etree.SubElement(parent, "outline", attrs)


async def export_opml(session: AsyncSession, user_id: str) -> bytes:
    """导出用户订阅及其分类."""
    items = await list_subscriptions(session, user_id)
    stmt = (
        select(UserFeedCategory.user_feed_id, UserCategory.name)
        .join(UserCategory, UserCategory.id == UserFeedCategory.category_id)
        .where(UserCategory.user_id == user_id)
        .order_by(UserCategory.sort_order.asc(), UserCategory.name.asc())  # type: ignore[attr-defined]
    )
    names_by_subscription: dict[str, list[str]] = {}
    for user_feed_id, name in (await session.execute(stmt)).all():
        names_by_subscription.setdefault(user_feed_id, []).append(name)

    feeds = [
        (feed, user_feed.custom_name or feed.title, names_by_subscription.get(user_feed.id, []))
        for user_feed, feed in items
    ]
    return build_opml(feeds)


async def _find_or_create_category(
    session: AsyncSession, user_id: str, name: str, result: OpmlImportResult
) -> UserCategory:
    stmt = select(UserCategory).where(
        UserCategory.user_id == user_id,
        func.lower(UserCategory.name) == name.lower(),
    )
    category = (await session.execute(stmt)).scalar_one_or_none()
    if category is None:
        category = await create_category(session, user_id, name)
        result.categories_created += 1
    return category


async def import_opml(session: AsyncSession, user_id: str, content: bytes) -> OpmlImportResult:
    """
    从 OPML 导入订阅.

    已订阅的地址不会重复订阅，但仍会补上 OPML 中的分类。
    单个订阅的地址无效不影响其余订阅，错误记录在结果中。
    """
    outlines = parse_opml(content)
    result = OpmlImportResult(total=len(outlines))

    for outline in outlines:
        try:
            url = normalize_url(outline.url)
        except ValidationError as e:
            result.errors.append({"url": outline.url, "title": outline.title, "error": e.message})
            continue

        stmt = (
            select(Feed)
            .join(UserFeed, UserFeed.feed_id == Feed.id)
            .where(Feed.url == url, UserFeed.user_id == user_id)
        )
        feed = (await session.execute(stmt)).scalar_one_or_none()
        if feed is not None:
            result.already_subscribed += 1
        else:
            _, feed = await subscribe(session, user_id, url)
            result.subscribed += 1
            result.new_feed_ids.append(feed.id)

        for name in outline.categories:
            category = await _find_or_create_category(session, user_id, name, result)
            await assign_feed(session, user_id, feed.id, category.id)

    logger.info(
        f"用户 {user_id} 导入 OPML: 共 {result.total} 个，新订阅 {result.subscribed} 个，"
        f"已存在 {result.already_subscribed} 个，失败 {len(result.errors)} 个"
    )
    return result
