"""定时任务执行记录模型."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from neureed.utils.dates import utcnow


class JobStatus:
    """任务执行状态常量."""

    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"


class JobRun(SQLModel, table=True):
    """单次任务执行记录."""

    __tablename__ = "job_runs"  # type: ignore[assignment]

    id: int | None = Field(default=None, primary_key=True)
    job_name: str = Field(index=True, description="任务名称")
    status: str = Field(description="状态: running|success|failed")
    triggered_by: str = Field(default="schedule", description="触发方式: schedule|manual")
    stats: dict[str, Any] | None = Field(default=None, sa_column=Column(JSON))
    error_message: str | None = Field(default=None, description="错误信息")
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: datetime | None = Field(default=None)
    duration_ms: int | None = Field(default=None)
