"""定时任务."""

from neureed.scheduler.tasks import JobDefinition, JobScheduler

__all__ = ["JobDefinition", "JobScheduler"]
