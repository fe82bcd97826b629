"""文章反馈：显式点赞/点踩与基于阅读时长的隐式反馈."""

import logging

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from neureed.config import get_effective_setting
from neureed.core.patterns import update_patterns
from neureed.errors import NotFoundError, ValidationError
from neureed.models.article import Article
from neureed.models.feedback import ArticleFeedback, FeedbackType
from neureed.models.user import UserPreferences
from neureed.utils.dates import utcnow
from neureed.utils.html_parser import estimate_reading_time

logger = logging.getLogger(__name__)

EXPLICIT_VALUES = (1.0, -1.0)
BOUNCE_VALUE = -0.5
COMPLETION_VALUE = 0.5


async def _require_article(session: AsyncSession, article_id: str) -> Article:
    article = await session.get(Article, article_id)
    if article is None:
        raise NotFoundError("文章不存在")
    return article


async def get_feedback(
    session: AsyncSession, user_id: str, article_id: str
) -> ArticleFeedback | None:
    """获取用户对文章的反馈."""
    stmt = select(ArticleFeedback).where(
        ArticleFeedback.user_id == user_id,
        ArticleFeedback.article_id == article_id,
    )
    return (await session.execute(stmt)).scalar_one_or_none()


async def _upsert_feedback(
    session: AsyncSession,
    user_id: str,
    article_id: str,
    feedback_type: str,
    value: float,
    time_spent: int | None = None,
    estimated_time: int | None = None,
) -> ArticleFeedback:
    """写入反馈，同一 (用户, 文章) 只保留一条."""
    try:
        return await _write_feedback(
            session, user_id, article_id, feedback_type, value, time_spent, estimated_time
        )
    except IntegrityError:
        # 并发请求先插入了记录，回滚后按更新处理
        await session.rollback()
        return await _write_feedback(
            session, user_id, article_id, feedback_type, value, time_spent, estimated_time
        )


async def _write_feedback(
    session: AsyncSession,
    user_id: str,
    article_id: str,
    feedback_type: str,
    value: float,
    time_spent: int | None,
    estimated_time: int | None,
) -> ArticleFeedback:
    feedback = await get_feedback(session, user_id, article_id)
    if feedback is None:
        feedback = ArticleFeedback(
            user_id=user_id,
            article_id=article_id,
            feedback_type=feedback_type,
            feedback_value=value,
        )
        session.add(feedback)

    feedback.feedback_type = feedback_type
    feedback.feedback_value = value
    feedback.time_spent = time_spent
    feedback.estimated_time = estimated_time
    feedback.updated_at = utcnow()
    await session.commit()
    await session.refresh(feedback)
    return feedback


async def record_feedback(
    session: AsyncSession, user_id: str, article_id: str, value: float
) -> ArticleFeedback:
    """
    记录显式反馈（+1 喜欢 / -1 不喜欢）.

    同一用户对同一文章重复反馈时覆盖原记录，不会追加新记录。
    """
    if value not in EXPLICIT_VALUES:
        msg = "显式反馈值只能是 1.0 或 -1.0"
        raise ValidationError(msg)

    await _require_article(session, article_id)
    feedback = await _upsert_feedback(session, user_id, article_id, FeedbackType.EXPLICIT, value)
    logger.info(f"用户 {user_id} 对文章 {article_id} 的反馈: {value:+.1f}")
    return feedback


async def delete_feedback(session: AsyncSession, user_id: str, article_id: str) -> None:
    """删除反馈."""
    feedback = await get_feedback(session, user_id, article_id)
    if feedback is None:
        raise NotFoundError("反馈不存在")
    await session.delete(feedback)
    await session.commit()


async def record_article_view(session: AsyncSession, user_id: str, article_id: str) -> dict:
    """记录打开文章，返回预计阅读时长（秒），供前端在离开时回传."""
    article = await _require_article(session, article_id)
    text = article.content_text or article.excerpt or article.title
    return {
        "article_id": article_id,
        "viewed_at": utcnow().isoformat(),
        "estimated_time": estimate_reading_time(text),
    }


async def _bounce_threshold(session: AsyncSession, user_id: str) -> float:
    prefs = await session.get(UserPreferences, user_id)
    if prefs is not None and prefs.bounce_threshold is not None:
        return prefs.bounce_threshold
    return float(get_effective_setting("bounce_threshold") or 0.25)


def classify_visit(
    time_spent: float, estimated_time: float, bounce_threshold: float, completion_threshold: float
) -> float | None:
    """
    按阅读时长比例判定隐式反馈值.

    比例低于跳出阈值为 -0.5，达到完读阈值为 +0.5，其余不算反馈返回 None。
    """
    if estimated_time <= 0 or time_spent < 0:
        return None
    ratio = time_spent / estimated_time
    if ratio < bounce_threshold:
        return BOUNCE_VALUE
    if ratio >= completion_threshold:
        return COMPLETION_VALUE
    return None


async def record_article_exit(
    session: AsyncSession,
    user_id: str,
    article_id: str,
    time_spent: int,
    estimated_time: int,
) -> ArticleFeedback | None:
    """
    记录离开文章，必要时生成隐式反馈.

    只有跳出或完读才写入反馈；普通浏览、或用户已有显式反馈时返回 None，
    调用方应视为"无需更新"而不是错误。
    """
    await _require_article(session, article_id)

    threshold = await _bounce_threshold(session, user_id)
    completion = float(get_effective_setting("completion_threshold") or 0.9)
    value = classify_visit(time_spent, estimated_time, threshold, completion)
    if value is None:
        return None

    existing = await get_feedback(session, user_id, article_id)
    if existing is not None and existing.feedback_type == FeedbackType.EXPLICIT:
        return None

    return await _upsert_feedback(
        session,
        user_id,
        article_id,
        FeedbackType.IMPLICIT,
        value,
        time_spent=time_spent,
        estimated_time=estimated_time,
    )


async def get_feedback_stats(session: AsyncSession, user_id: str) -> dict:
    """反馈统计."""
    is_positive = (ArticleFeedback.feedback_value > 0).label("is_positive")
    stmt = (
        select(ArticleFeedback.feedback_type, is_positive, func.count())
        .where(ArticleFeedback.user_id == user_id)
        .group_by(ArticleFeedback.feedback_type, is_positive)
    )
    rows = (await session.execute(stmt)).all()
    counts = {(ftype, bool(positive)): count for ftype, positive, count in rows}

    stats = {
        "explicit_positive": counts.get((FeedbackType.EXPLICIT, True), 0),
        "explicit_negative": counts.get((FeedbackType.EXPLICIT, False), 0),
        "completions": counts.get((FeedbackType.IMPLICIT, True), 0),
        "bounces": counts.get((FeedbackType.IMPLICIT, False), 0),
    }
    stats["total"] = sum(stats.values())
    return stats


async def update_patterns_in_background(
    session_factory: async_sessionmaker[AsyncSession],
    user_id: str,
    article_id: str,
    value: float,
) -> None:
    """在独立会话中更新偏好，失败只记录日志."""
    try:
        async with session_factory() as session:
            await update_patterns(session, user_id, article_id, value)
    except Exception:
        logger.exception(f"更新用户 {user_id} 的偏好失败 (article={article_id})")
