"""阅读偏好与反馈统计 API."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.api.deps import get_current_user_id
from neureed.core import feedback, patterns
from neureed.models.database import get_session

router = APIRouter(prefix="/api/patterns", tags=["patterns"])


@router.get("")
async def list_patterns(
    limit: int = Query(50, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """按权重强弱列出关键词偏好."""
    items = await patterns.get_user_patterns(session, user_id, limit=limit)
    return {
        "items": [
            {
                "keyword": p.keyword,
                "weight": round(p.weight, 4),
                "feedback_count": p.feedback_count,
                "updated_at": p.updated_at.isoformat(),
            }
            for p in items
        ]
    }


@router.get("/stats")
async def pattern_stats(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """偏好与反馈统计."""
    stats = await patterns.get_pattern_stats(session, user_id)
    stats["feedback"] = await feedback.get_feedback_stats(session, user_id)
    return stats


@router.delete("")
async def reset_patterns(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """清空偏好."""
    return {"deleted": await patterns.reset_user_patterns(session, user_id)}
