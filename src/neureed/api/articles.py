"""文章 API."""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from neureed.api.deps import get_current_user_id, get_session_factory
from neureed.core import feedback, reading, scoring, search
from neureed.core.summarization import summarize_article
from neureed.models.article import Article
from neureed.models.database import get_session
from neureed.models.feedback import ArticleFeedback

router = APIRouter(prefix="/api/articles", tags=["articles"])


class FeedbackRequest(BaseModel):
    """显式反馈请求."""

    value: float = Field(..., description="1.0 喜欢 / -1.0 不喜欢")


class ScoreRequest(BaseModel):
    """批量打分请求."""

    article_ids: list[str] = Field(..., max_length=200)


class ExitRequest(BaseModel):
    """离开文章时回传的阅读时长."""

    time_spent: int = Field(..., ge=0, description="实际阅读秒数")
    estimated_time: int = Field(..., gt=0, description="预计阅读秒数")


def _article_summary(article: Article) -> dict:
    return {
        "id": article.id,
        "feed_id": article.feed_id,
        "title": article.title,
        "url": article.url,
        "author": article.author,
        "excerpt": article.excerpt,
        "published_at": article.published_at.isoformat() if article.published_at else None,
    }


def _view_to_dict(view: reading.ArticleView) -> dict:
    data = _article_summary(view.article)
    data["is_read"] = view.is_read
    data["is_starred"] = view.is_starred
    return data


def _feedback_to_dict(record: ArticleFeedback) -> dict:
    return {
        "article_id": record.article_id,
        "feedback_type": record.feedback_type,
        "feedback_value": record.feedback_value,
        "time_spent": record.time_spent,
        "estimated_time": record.estimated_time,
        "updated_at": record.updated_at.isoformat(),
    }


@router.get("")
async def list_articles(
    feed_id: str | None = Query(None, description="按 Feed 筛选"),
    unread_only: bool = Query(False, description="只看未读"),
    starred_only: bool = Query(False, description="只看收藏"),
    page: int = Query(1, ge=1, description="页码"),
    limit: int = Query(20, ge=1, le=100, description="每页数量"),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取文章列表."""
    views, total = await reading.list_articles(
        session,
        user_id,
        feed_id=feed_id,
        unread_only=unread_only,
        starred_only=starred_only,
        limit=limit,
        offset=(page - 1) * limit,
    )
    return {
        "total": total,
        "page": page,
        "limit": limit,
        "items": [_view_to_dict(v) for v in views],
    }


@router.post("/read-all")
async def mark_all_read(
    feed_id: str | None = Query(None, description="只标记该 Feed"),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """全部标记已读."""
    count = await reading.mark_feed_read(session, user_id, feed_id)
    return {"marked": count}


@router.get("/search")
async def search_articles(
    q: str = Query(..., description="搜索内容"),
    limit: int = Query(10, ge=1, le=50),
    min_score: float = Query(0.3, ge=0, le=1, description="最低相似度"),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """语义搜索."""
    results = await search.search_similar_articles(
        session, user_id, q, limit=limit, min_score=min_score
    )
    return {
        "query": q,
        "items": [{**_article_summary(a), "score": round(score, 4)} for a, score in results],
    }


@router.get("/{article_id}")
async def get_article(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取文章详情."""
    view = await reading.get_article_view(session, user_id, article_id)
    article = view.article
    record = await feedback.get_feedback(session, user_id, article_id)

    data = _view_to_dict(view)
    data.update(
        {
            "content": article.content,
            "content_text": article.content_text,
            "content_source": article.content_source,
            "summary": article.summary,
            "key_points": article.key_points,
            "topics": article.topics,
            "has_embedding": bool(article.embedding),
            "feedback": _feedback_to_dict(record) if record else None,
        }
    )
    return data


@router.put("/{article_id}/read")
async def mark_read(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """标记已读."""
    await reading.mark_read(session, user_id, article_id)
    return {"id": article_id, "is_read": True}


@router.delete("/{article_id}/read")
async def mark_unread(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """标记未读."""
    await reading.mark_unread(session, user_id, article_id)
    return {"id": article_id, "is_read": False}


@router.put("/{article_id}/star")
async def star(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """收藏."""
    await reading.star_article(session, user_id, article_id)
    return {"id": article_id, "is_starred": True}


@router.delete("/{article_id}/star")
async def unstar(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """取消收藏."""
    await reading.unstar_article(session, user_id, article_id)
    return {"id": article_id, "is_starred": False}


@router.post("/{article_id}/feedback")
async def submit_feedback(
    article_id: str,
    body: FeedbackRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict:
    """提交喜欢/不喜欢，偏好在后台更新."""
    await reading.get_article_for_user(session, user_id, article_id)
    record = await feedback.record_feedback(session, user_id, article_id, body.value)
    background_tasks.add_task(
        feedback.update_patterns_in_background, session_factory, user_id, article_id, body.value
    )
    return _feedback_to_dict(record)


@router.delete("/{article_id}/feedback")
async def remove_feedback(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """撤销反馈."""
    await feedback.delete_feedback(session, user_id, article_id)
    return {"article_id": article_id, "deleted": True}


@router.post("/{article_id}/view")
async def view_article(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """记录打开文章，返回预计阅读时长（秒）."""
    await reading.get_article_for_user(session, user_id, article_id)
    return await feedback.record_article_view(session, user_id, article_id)


@router.post("/{article_id}/exit")
async def exit_article(
    article_id: str,
    body: ExitRequest,
    background_tasks: BackgroundTasks,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> dict:
    """记录离开文章；跳出或完读时生成隐式反馈."""
    await reading.get_article_for_user(session, user_id, article_id)
    record = await feedback.record_article_exit(
        session, user_id, article_id, body.time_spent, body.estimated_time
    )
    if record is None:
        return {"article_id": article_id, "recorded": False, "feedback": None}

    background_tasks.add_task(
        feedback.update_patterns_in_background,
        session_factory,
        user_id,
        article_id,
        record.feedback_value,
    )
    return {"article_id": article_id, "recorded": True, "feedback": _feedback_to_dict(record)}


@router.post("/{article_id}/summarize")
async def summarize(
    article_id: str,
    force: bool = Query(False, description="重新生成"),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """生成 AI 摘要."""
    await reading.get_article_for_user(session, user_id, article_id)
    article = await summarize_article(session, article_id, force=force)
    return {
        "id": article.id,
        "summary": article.summary,
        "key_points": article.key_points,
        "topics": article.topics,
    }


@router.get("/{article_id}/related")
async def related_articles(
    article_id: str,
    limit: int = Query(5, ge=1, le=20),
    min_score: float = Query(0.5, ge=0, le=1),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """相似文章."""
    results = await search.find_related_articles(
        session, user_id, article_id, limit=limit, min_score=min_score
    )
    return {"items": [{**_article_summary(a), "score": round(score, 4)} for a, score in results]}


@router.post("/scores")
async def score_articles(
    body: ScoreRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """按阅读偏好批量打分，结果保持请求顺序."""
    scores = await scoring.score_articles(session, user_id, body.article_ids)
    return {"items": [scores[i].to_dict() for i in body.article_ids if i in scores]}


@router.get("/{article_id}/score")
async def score_article(
    article_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """文章与阅读偏好的匹配得分."""
    result = await scoring.score_article(session, user_id, article_id)
    return result.to_dict()
