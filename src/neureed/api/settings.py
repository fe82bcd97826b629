"""设置 API：系统动态配置（管理员）与个人偏好."""

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from neureed.api.deps import get_current_user_id, require_admin
from neureed.config import get_effective_settings
from neureed.core import app_config, users
from neureed.embeddings import create_embedding_provider
from neureed.llm import create_llm_provider
from neureed.llm.base import Message
from neureed.models.database import get_session
from neureed.models.user import UserPreferences

router = APIRouter(prefix="/api/settings", tags=["settings"])


class SettingsUpdateRequest(BaseModel):
    """动态配置更新请求，值为 null 的项恢复为环境变量配置."""

    summarization_enabled: bool | None = None
    llm_provider: str | None = None
    openai_api_key: str | None = None
    openai_base_url: str | None = None
    openai_model: str | None = None
    ollama_host: str | None = None
    ollama_model: str | None = None
    embedding_enabled: bool | None = None
    embedding_provider: str | None = None
    embedding_model: str | None = None
    embedding_auto_generate: bool | None = None
    refresh_concurrency: int | None = None
    max_feed_errors: int | None = None
    notification_retention_count: int | None = None
    notification_retention_days: int | None = None
    delete_orphaned_feeds: bool | None = None


class PreferencesUpdateRequest(BaseModel):
    """个人偏好更新请求，值为 null 的项恢复系统默认."""

    default_refresh_interval: int | None = None
    default_max_articles_per_feed: int | None = None
    default_max_article_age: int | None = None
    default_auto_summarize: bool | None = None
    bounce_threshold: float | None = None


class TestConnectionResult(BaseModel):
    """连接测试结果."""

    success: bool
    message: str


def _preferences_to_dict(prefs: UserPreferences) -> dict:
    return {
        "default_refresh_interval": prefs.default_refresh_interval,
        "default_max_articles_per_feed": prefs.default_max_articles_per_feed,
        "default_max_article_age": prefs.default_max_article_age,
        "default_auto_summarize": prefs.default_auto_summarize,
        "bounce_threshold": prefs.bounce_threshold,
    }


@router.get("")
async def get_current_settings(
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取当前生效的系统配置（动态配置优先）."""
    await app_config.load_dynamic_settings(session)
    return app_config.describe_settings()


@router.put("")
async def update_settings(
    request: SettingsUpdateRequest,
    _admin: str = Depends(require_admin),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """更新系统配置（保存到数据库，立即生效）."""
    await app_config.update_app_settings(session, request.model_dump(exclude_unset=True))
    return app_config.describe_settings()


@router.post("/test-llm")
async def test_llm_connection(_admin: str = Depends(require_admin)) -> TestConnectionResult:
    """测试 LLM 连接."""
    try:
        provider = create_llm_provider(get_effective_settings())
        messages = [Message(role="user", content="Say 'OK' if you can hear me.")]
        response = (await provider.chat(messages)).content
    except Exception as e:
        return TestConnectionResult(success=False, message=str(e))

    if response:
        return TestConnectionResult(success=True, message=f"LLM 连接成功: {response[:50]}...")
    return TestConnectionResult(success=False, message="LLM 返回空响应")


@router.post("/test-embedding")
async def test_embedding_connection(
    _admin: str = Depends(require_admin),
) -> TestConnectionResult:
    """测试 Embedding 服务."""
    provider = create_embedding_provider(get_effective_settings())
    if provider is None:
        return TestConnectionResult(success=False, message="Embedding 未启用或未配置")

    try:
        batch = await provider.embed(["NeuReed"])
    except Exception as e:
        return TestConnectionResult(success=False, message=str(e))
    return TestConnectionResult(
        success=True,
        message=f"Embedding 连接成功: {batch.model}, 维度 {len(batch.vectors[0])}",
    )


@router.get("/preferences")
async def get_preferences(
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """获取个人偏好."""
    prefs = await users.get_preferences(session, user_id)
    return _preferences_to_dict(prefs)


@router.patch("/preferences")
async def update_preferences(
    request: PreferencesUpdateRequest,
    user_id: str = Depends(get_current_user_id),
    session: AsyncSession = Depends(get_session),
) -> dict:
    """更新个人偏好（作为所有订阅的默认设置）."""
    prefs = await users.update_preferences(
        session, user_id, request.model_dump(exclude_unset=True)
    )
    return _preferences_to_dict(prefs)
