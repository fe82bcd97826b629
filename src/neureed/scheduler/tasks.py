"""定时任务定义与调度器."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from neureed.config import Settings, get_settings
from neureed.core.cleanup import cleanup_all_feeds
from neureed.core.patterns import apply_pattern_decay, prune_patterns
from neureed.core.refresh import FeedRefresher
from neureed.embeddings import backfill_article_embeddings
from neureed.errors import ConflictError, NotFoundError
from neureed.models.job_run import JobRun, JobStatus
from neureed.utils.dates import utcnow

logger = logging.getLogger(__name__)

JobFunc = Callable[[], Awaitable[dict[str, Any]]]


@dataclass
class JobDefinition:
    """任务定义."""

    name: str
    description: str
    cron: str
    func: JobFunc


class JobScheduler:
    """
    定时任务调度器.

    由应用生命周期创建并持有，包装 APScheduler 的 AsyncIOScheduler。
    每次执行都记录到 job_runs 表，同一任务正在运行时新的触发会被跳过。
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        refresher: FeedRefresher,
        settings: Settings | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.refresher = refresher
        self.settings = settings or get_settings()
        self.scheduler = AsyncIOScheduler()
        self._running: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self.jobs: dict[str, JobDefinition] = {
            job.name: job
            for job in (
                JobDefinition(
                    "feed_refresh", "刷新所有到期订阅", self.settings.feed_refresh_cron, self._feed_refresh
                ),
                JobDefinition("cleanup", "按保留策略清理文章", self.settings.cleanup_cron, self._cleanup),
                JobDefinition(
                    "pattern_decay", "偏好权重衰减与修剪", self.settings.pattern_decay_cron, self._pattern_decay
                ),
                JobDefinition(
                    "embedding_generation",
                    "为缺少向量的文章生成向量",
                    self.settings.embedding_generation_cron,
                    self._embedding_generation,
                ),
            )
        }

    def start(self) -> None:
        """注册 cron 任务并启动调度器."""
        for job in self.jobs.values():
            self.scheduler.add_job(
                self.run_job,
                CronTrigger.from_crontab(job.cron),
                args=[job.name],
                id=job.name,
                name=job.description,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
            )
        self.scheduler.start()
        logger.info(f"定时任务调度器已启动，任务: {', '.join(self.jobs)}")

    def shutdown(self) -> None:
        """关闭调度器."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("定时任务调度器已关闭")

    def is_running(self, job_name: str) -> bool:
        return job_name in self._running

    def _get_job(self, job_name: str) -> JobDefinition:
        job = self.jobs.get(job_name)
        if job is None:
            msg = f"任务不存在: {job_name}"
            raise NotFoundError(msg)
        return job

    async def recover_interrupted_runs(self) -> int:
        """把服务重启前未结束的执行记录标记为失败."""
        async with self.session_factory() as session:
            result = await session.execute(
                update(JobRun)
                .where(JobRun.status == JobStatus.RUNNING)
                .values(status=JobStatus.FAILED, error_message="服务重启，任务中断", completed_at=utcnow())
            )
            await session.commit()
        count = result.rowcount or 0
        if count:
            logger.info(f"已重置 {count} 条中断的任务记录")
        return count

    async def run_job(self, job_name: str, triggered_by: str = "schedule") -> JobRun | None:
        """
        执行任务并记录结果.

        Returns:
            JobRun: 执行记录；任务已在运行时返回 None
        """
        job = self._get_job(job_name)
        if self.is_running(job_name):
            logger.info(f"任务 {job_name} 正在运行，跳过本次触发")
            return None

        run = await self._start_run(job_name, triggered_by)
        return await self._execute(job, run)

    async def trigger(self, job_name: str, triggered_by: str = "manual") -> JobRun:
        """
        手动触发任务，在后台执行.

        Raises:
            NotFoundError: 任务不存在
            ConflictError: 任务正在运行
        """
        job = self._get_job(job_name)
        if self.is_running(job_name):
            msg = f"任务 {job_name} 正在运行"
            raise ConflictError(msg)

        run = await self._start_run(job_name, triggered_by)
        task = asyncio.create_task(self._execute(job, run))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return run

    async def _start_run(self, job_name: str, triggered_by: str) -> JobRun:
        self._running.add(job_name)
        try:
            async with self.session_factory() as session:
                run = JobRun(job_name=job_name, status=JobStatus.RUNNING, triggered_by=triggered_by)
                session.add(run)
                await session.commit()
        except Exception:
            self._running.discard(job_name)
            raise
        logger.info(f"任务 {job_name} 开始执行（{triggered_by}）")
        return run

    async def _execute(self, job: JobDefinition, run: JobRun) -> JobRun:
        started = time.monotonic()
        try:
            stats = await job.func()
            run.status = JobStatus.SUCCESS
            run.stats = stats
        except Exception as e:
            logger.exception(f"任务 {job.name} 执行失败")
            run.status = JobStatus.FAILED
            run.error_message = str(e)[:500]
        finally:
            self._running.discard(job.name)

        run.completed_at = utcnow()
        run.duration_ms = int((time.monotonic() - started) * 1000)
        async with self.session_factory() as session:
            run = await session.merge(run)
            await session.commit()

        logger.info(f"任务 {job.name} 结束: 状态={run.status}, 耗时={run.duration_ms}ms")
        return run

    async def get_status(self) -> list[dict[str, Any]]:
        """每个任务的计划、运行状态和最近一次执行."""
        status: list[dict[str, Any]] = []
        async with self.session_factory() as session:
            for job in self.jobs.values():
                stmt = (
                    select(JobRun)
                    .where(JobRun.job_name == job.name)
                    .order_by(JobRun.started_at.desc(), JobRun.id.desc())  # type: ignore[attr-defined,union-attr]
                    .limit(1)
                )
                last_run = (await session.execute(stmt)).scalar_one_or_none()
                scheduled = self.scheduler.get_job(job.name) if self.scheduler.running else None
                status.append(
                    {
                        "name": job.name,
                        "description": job.description,
                        "cron": job.cron,
                        "running": self.is_running(job.name),
                        "next_run_at": scheduled.next_run_time.isoformat()
                        if scheduled and scheduled.next_run_time
                        else None,
                        "last_run": last_run,
                    }
                )
        return status

    async def get_history(self, job_name: str | None = None, limit: int = 20) -> list[JobRun]:
        """最近的执行记录."""
        if job_name is not None:
            self._get_job(job_name)
        stmt = select(JobRun).order_by(JobRun.started_at.desc(), JobRun.id.desc())  # type: ignore[attr-defined,union-attr]
        if job_name is not None:
            stmt = stmt.where(JobRun.job_name == job_name)
        async with self.session_factory() as session:
            return list((await session.execute(stmt.limit(limit))).scalars().all())

    async def _feed_refresh(self) -> dict[str, Any]:
        outcome = await self.refresher.refresh_all_due_feeds()
        stats = asdict(outcome.summary)
        stats["notified_users"] = len(outcome.notified_users)
        return stats

    async def _cleanup(self) -> dict[str, Any]:
        async with self.session_factory() as session:
            summary = await cleanup_all_feeds(session)
        return {
            "feeds_processed": summary.feeds_processed,
            "deleted": summary.deleted,
            "preserved": summary.preserved,
        }

    async def _pattern_decay(self) -> dict[str, Any]:
        async with self.session_factory() as session:
            decayed = await apply_pattern_decay(session)
            pruned = await prune_patterns(session)
        return {"decayed": decayed, "pruned": pruned}

    async def _embedding_generation(self) -> dict[str, Any]:
        async with self.session_factory() as session:
            run = await backfill_article_embeddings(session, provider=self.refresher.embedding_provider)
        return {
            "generated": run.generated,
            "tokens": run.tokens,
            "batches": run.batches,
            "skipped": run.skipped,
        }
