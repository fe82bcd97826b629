"""NeuReed 主应用入口."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from neureed import __version__
from neureed.api import admin, articles, categories, feeds, jobs, notifications, patterns, settings
from neureed.config import get_settings
from neureed.core.app_config import load_dynamic_settings
from neureed.core.refresh import FeedRefresher
from neureed.errors import register_error_handlers
from neureed.models.database import async_session_maker, close_db, init_db
from neureed.scheduler import JobScheduler

# 配置日志
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """应用生命周期管理."""
    app_settings = get_settings()

    # 启动时初始化
    logger.info("正在初始化数据库...")
    await init_db(app_settings.database_url)
    session_factory = async_session_maker()

    # 加载动态配置
    logger.info("正在加载动态配置...")
    async with session_factory() as session:
        await load_dynamic_settings(session)

    # Embedding Provider 每次按当前动态配置创建
    refresher = FeedRefresher(session_factory)
    app.state.session_factory = session_factory
    app.state.refresher = refresher
    app.state.scheduler = None

    if app_settings.enable_scheduler:
        logger.info("正在启动定时任务...")
        scheduler = JobScheduler(session_factory, refresher, app_settings)
        await scheduler.recover_interrupted_runs()
        scheduler.start()
        app.state.scheduler = scheduler

    logger.info("NeuReed 启动完成！")
    yield

    # 关闭时清理
    logger.info("正在关闭...")
    if app.state.scheduler is not None:
        app.state.scheduler.shutdown()
    refresher.extractor.close()
    await close_db()
    logger.info("NeuReed 已关闭")


app = FastAPI(
    title="NeuReed",
    description="个人 RSS 阅读器 - 订阅刷新、保留策略、通知与阅读偏好",
    version=__version__,
    lifespan=lifespan,
)

# CORS 配置
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # 生产环境应该限制具体域名
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# 注册路由
app.include_router(feeds.router)
app.include_router(categories.router)
app.include_router(articles.router)
app.include_router(notifications.router)
app.include_router(patterns.router)
app.include_router(settings.router)
app.include_router(admin.router)
app.include_router(jobs.router)


@app.get("/")
async def root() -> dict:
    """根路径."""
    return {
        "name": "NeuReed",
        "version": __version__,
        "description": "个人 RSS 阅读器",
    }


@app.get("/health")
async def health() -> dict:
    """健康检查."""
    return {"status": "ok"}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "neureed.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
