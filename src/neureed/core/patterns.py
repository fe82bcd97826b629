"""
用户关键词偏好.

每次反馈按文章关键词增量更新权重（按反馈次数加权的滑动平均）：
    weight ← weight + (value − weight) / (count + 1)
    count  ← count + 1
更新在数据库端以单条 UPDATE 完成，并发反馈不会互相覆盖。
"""

import logging
import re
from collections import Counter
from datetime import datetime, timedelta

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from neureed.errors import NotFoundError, ValidationError
from neureed.models.article import Article
from neureed.models.feedback import UserPattern
from neureed.utils.dates import utcnow
from neureed.utils.html_parser import html_to_text

logger = logging.getLogger(__name__)

MAX_KEYWORDS = 15
DECAY_FACTOR = 0.9
DECAY_PERIOD_DAYS = 30
MIN_PATTERN_WEIGHT = 0.1
MAX_PATTERNS_PER_USER = 100
_MAX_RETRIES = 3

STOP_WORDS: frozenset[str] = frozenset(
    """
    the and for are but not you all any can had her was one our out day get has him
    his how man new now old see two way who boy did its let put say she too use that
    with have this will your from they know want been good much some time very when
    come here just like long make many over such take than them well were what which
    their would there could other about these after first into more also only then
    where while should being because through before between under again further once
    most each both those does doing same own few nor off why whom itself yourself
    ourselves themselves himself herself above below down during until against isn
    aren wasn weren hasn haven hadn doesn didn won wouldn shan shouldn cannot
    couldn mustn may might must shall via per said says just really still even
    """.split()
)

_WORD_SPLIT = re.compile(r"\W+")


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[tuple[str, float]]:
    """
    从文本中提取关键词及得分.

    词频归一化后，出现 2-10 次的词加权 1.5，超过 10 次的常见词降权 0.5。

    Args:
        text: 纯文本或 HTML
        limit: 返回数量上限

    Returns:
        按得分降序的 (关键词, 得分) 列表
    """
    plain = html_to_text(text) if "<" in text else text
    words = [
        word
        for word in _WORD_SPLIT.split(plain.lower())
        if len(word) > 2 and word not in STOP_WORDS and not word.isdigit()
    ]
    if not words:
        return []

    counts = Counter(words)
    total = len(words)
    scored: list[tuple[str, float]] = []
    for word, count in counts.items():
        score = count / total
        if 2 <= count <= 10:
            score *= 1.5
        elif count > 10:
            score *= 0.5
        scored.append((word, score))

    scored.sort(key=lambda item: (-item[1], item[0]))
    return scored[:limit]


def article_keywords(article: Article, limit: int = MAX_KEYWORDS) -> list[str]:
    """文章关键词：优先使用 AI 生成的主题，否则从标题和正文中提取."""
    if article.topics:
        unique: list[str] = []
        for topic in article.topics:
            keyword = topic.strip().lower()
            if keyword and keyword not in unique:
                unique.append(keyword)
        return unique[:limit]

    text = f"{article.title}\n{article.content_text or article.excerpt or ''}"
    return [word for word, _ in extract_keywords(text, limit)]


async def update_patterns(
    session: AsyncSession,
    user_id: str,
    article_id: str,
    value: float,
) -> list[UserPattern]:
    """
    按一次反馈增量更新文章关键词的权重.

    Args:
        session: 数据库会话
        user_id: 用户 ID
        article_id: 被反馈的文章
        value: 反馈值，-1.0 ~ 1.0

    Returns:
        更新后的偏好记录
    """
    if not -1.0 <= value <= 1.0:
        msg = "反馈值必须在 -1.0 到 1.0 之间"
        raise ValidationError(msg)

    article = await session.get(Article, article_id)
    if article is None:
        raise NotFoundError("文章不存在")

    keywords = article_keywords(article)
    if not keywords:
        return []

    for attempt in range(_MAX_RETRIES):
        try:
            await _apply_feedback(session, user_id, keywords, value)
            break
        except IntegrityError:
            # 并发插入了同一关键词，回滚后重试，已存在的行走 UPDATE 分支
            await session.rollback()
            if attempt == _MAX_RETRIES - 1:
                raise

    stmt = select(UserPattern).where(
        UserPattern.user_id == user_id,
        UserPattern.keyword.in_(keywords),  # type: ignore[attr-defined]
    )
    result = await session.execute(stmt.execution_options(populate_existing=True))
    return list(result.scalars().all())


async def _apply_feedback(
    session: AsyncSession, user_id: str, keywords: list[str], value: float
) -> None:
    now = utcnow()
    existing_stmt = select(UserPattern.keyword).where(
        UserPattern.user_id == user_id,
        UserPattern.keyword.in_(keywords),  # type: ignore[attr-defined]
    )
    existing = set((await session.execute(existing_stmt)).scalars().all())

    if existing:
        await session.execute(
            update(UserPattern)
            .where(
                UserPattern.user_id == user_id,
                UserPattern.keyword.in_(sorted(existing)),  # type: ignore[attr-defined]
            )
            .values(
                weight=UserPattern.weight
                + (value - UserPattern.weight) / (UserPattern.feedback_count + 1),
                feedback_count=UserPattern.feedback_count + 1,
                updated_at=now,
            )
        )

    for keyword in keywords:
        if keyword not in existing:
            session.add(
                UserPattern(
                    user_id=user_id,
                    keyword=keyword,
                    weight=value,
                    feedback_count=1,
                    updated_at=now,
                )
            )
    await session.commit()


async def get_user_patterns(
    session: AsyncSession, user_id: str, limit: int = 50
) -> list[UserPattern]:
    """按权重绝对值降序返回用户偏好."""
    stmt = (
        select(UserPattern)
        .where(UserPattern.user_id == user_id)
        .order_by(func.abs(UserPattern.weight).desc(), UserPattern.keyword.asc())  # type: ignore[attr-defined]
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def get_pattern_stats(session: AsyncSession, user_id: str) -> dict:
    """偏好统计."""
    stmt = select(UserPattern).where(UserPattern.user_id == user_id)
    patterns = list((await session.execute(stmt)).scalars().all())

    positive = sorted((p for p in patterns if p.weight > 0), key=lambda p: -p.weight)
    negative = sorted((p for p in patterns if p.weight < 0), key=lambda p: p.weight)
    total_weight = sum(p.weight for p in patterns)

    return {
        "total_patterns": len(patterns),
        "positive_patterns": len(positive),
        "negative_patterns": len(negative),
        "average_weight": round(total_weight / len(patterns), 4) if patterns else 0.0,
        "top_positive": [{"keyword": p.keyword, "weight": p.weight} for p in positive[:10]],
        "top_negative": [{"keyword": p.keyword, "weight": p.weight} for p in negative[:10]],
    }


async def reset_user_patterns(session: AsyncSession, user_id: str) -> int:
    """删除用户全部偏好，返回删除条数."""
    result = await session.execute(delete(UserPattern).where(UserPattern.user_id == user_id))
    await session.commit()
    logger.info(f"已重置用户 {user_id} 的 {result.rowcount} 条偏好")
    return result.rowcount or 0


async def apply_pattern_decay(session: AsyncSession, now: datetime | None = None) -> int:
    """
    对长期没有新反馈的偏好衰减权重.

    每满 30 天未更新乘以 0.9，updated_at 前移相应周期，不足一个周期的余量保留到下次。

    Returns:
        被衰减的偏好数量
    """
    now = now or utcnow()
    period = timedelta(days=DECAY_PERIOD_DAYS)
    stmt = select(UserPattern).where(UserPattern.updated_at <= now - period)
    patterns = list((await session.execute(stmt)).scalars().all())

    for pattern in patterns:
        periods = (now - pattern.updated_at) // period
        pattern.weight *= DECAY_FACTOR**periods
        pattern.updated_at += period * periods

    await session.commit()
    if patterns:
        logger.info(f"已衰减 {len(patterns)} 条偏好权重")
    return len(patterns)


async def prune_patterns(session: AsyncSession, user_id: str | None = None) -> int:
    """
    删除权重过小的偏好，并为每个用户只保留权重绝对值最大的 100 条.

    Returns:
        删除的偏好数量
    """
    weak = delete(UserPattern).where(func.abs(UserPattern.weight) < MIN_PATTERN_WEIGHT)
    if user_id is not None:
        weak = weak.where(UserPattern.user_id == user_id)
    deleted = (await session.execute(weak)).rowcount or 0

    if user_id is not None:
        user_ids = [user_id]
    else:
        user_ids = list(
            (await session.execute(select(UserPattern.user_id).distinct())).scalars().all()
        )

    for uid in user_ids:
        keep_stmt = (
            select(UserPattern.id)
            .where(UserPattern.user_id == uid)
            .order_by(func.abs(UserPattern.weight).desc(), UserPattern.id.asc())  # type: ignore[attr-defined]
            .limit(MAX_PATTERNS_PER_USER)
        )
        keep_ids = list((await session.execute(keep_stmt)).scalars().all())
        result = await session.execute(
            delete(UserPattern).where(
                UserPattern.user_id == uid,
                UserPattern.id.not_in(keep_ids),  # type: ignore[attr-defined]
            )
        )
        deleted += result.rowcount or 0

    await session.commit()
    if deleted:
        logger.info(f"已清理 {deleted} 条弱偏好")
    return deleted
