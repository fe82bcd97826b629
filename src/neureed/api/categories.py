"""分类 API."""

from typing import Any

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.api.deps import get_current_user_id
from neureed.core import categories
from neureed.models.database import get_session
from neureed.models.feed import UserCategory

router = APIRouter(prefix="/api/categories", tags=["categories"])


class CreateCategoryRequest(BaseModel):
    """创建分类请求."""

    name: str
    description: str | None = None
    icon: str | None = None
    settings: dict[str, Any] | None = None


class UpdateCategoryRequest(BaseModel):
    """更新分类请求，未提交的字段保持不变."""

    name: str | None = None
    description: str | None = None
    icon: str | None = None
    settings: dict[str, Any] | None = None


class ReorderRequest(BaseModel):
    """分类排序请求."""

    category_ids: list[str] = Field(..., description="按新顺序排列的分类 ID")


def _category_to_dict(category: UserCategory, feed_count: int | None = None) -> dict:
    data = {
        "id": category.id,
        "name": category.name,
        "description": category.description,
        "icon": category.icon,
        "sort_order": category.sort_order,
        "settings": category.settings,
        "created_at": category.created_at.isoformat(),
        "updated_at": category.updated_at.isoformat(),
    }
    if feed_count is not None:
        data["feed_count"] = feed_count
    return data


@router.get("")
async def list_categories(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取分类列表（按排序）."""
    items = await categories.list_categories(session, user_id)
    return {"items": [_category_to_dict(c, count) for c, count in items]}


@router.post("", status_code=201)
async def create_category(
    body: CreateCategoryRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """创建分类."""
    category = await categories.create_category(
        session,
        user_id,
        body.name,
        description=body.description,
        icon=body.icon,
        settings=body.settings,
    )
    return _category_to_dict(category, 0)


@router.put("/order")
async def reorder_categories(
    body: ReorderRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """调整分类顺序."""
    ordered = await categories.reorder_categories(session, user_id, body.category_ids)
    return {"items": [_category_to_dict(c) for c in ordered]}


@router.patch("/{category_id}")
async def update_category(
    category_id: str,
    body: UpdateCategoryRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """更新分类（settings 中值为 null 的项清除覆盖）."""
    category = await categories.update_category(
        session, user_id, category_id, body.model_dump(exclude_unset=True)
    )
    return _category_to_dict(category)


@router.delete("/{category_id}")
async def delete_category(
    category_id: str,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """删除分类，其中的订阅保留."""
    await categories.delete_category(session, user_id, category_id)
    return {"id": category_id, "deleted": True}
