import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

logger = logging.getLogger(__name__)

Operation = Callable[[], Awaitable[object]]


class ScheduledJob:
    """
    A named operation triggered on a cron schedule.

    At most one run of a job is in flight at a time, a trigger arriving while the
    previous run is still going is skipped. Failures are logged and never escape
    ``trigger``, so the next trigger runs as usual.
    """

    def __init__(self, name: str, cron_expression: str, operation: Operation):
        self.name = name
        self.cron_expression = cron_expression
        self.operation = operation
        self.in_flight = False

    async def trigger(self) -> bool:
        if self.in_flight:
            logger.warning(f"⚠️ Skipping scheduled {self.name}, the previous run has not finished yet.")
            return False

        self.in_flight = True
        logger.info(f"🚀 Scheduled {self.name} starting")
        try:
            await self.operation()
        except Exception:
            logger.exception(f"❌ Scheduled {self.name} failed")
            return False
        finally:
            self.in_flight = False
        logger.info(f"✅ Scheduled {self.name} completed")
        return True


class Scheduler:
    def __init__(self, scheduler: Optional[AsyncIOScheduler] = None):
        self._scheduler = scheduler or AsyncIOScheduler()
        self.jobs: dict[str, ScheduledJob] = {}

    def schedule(self, name: str, cron_expression: str, operation: Operation) -> ScheduledJob:
        job = ScheduledJob(name, cron_expression, operation)
        self._scheduler.add_job(
            job.trigger,
            trigger=CronTrigger.from_crontab(cron_expression),
            id=name,
            name=name,
            replace_existing=True,
            # Overlapping triggers reach ScheduledJob.trigger, which skips and logs them
            max_instances=2,
            coalesce=True,
        )
        self.jobs[name] = job
        logger.info(f"✅ Scheduled {name} with '{cron_expression}'")
        return job

    def start(self) -> None:
        self._scheduler.start()
        for name in self.jobs:
            logger.info(f"ℹ️ Next {name} run at {self.next_run_time(name)}")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)

    def next_run_time(self, name: str) -> Optional[datetime]:
        job = self._scheduler.get_job(name)
        # Jobs only get a next run time once the scheduler has started
        return getattr(job, "next_run_time", None)
