import asyncio
from datetime import timedelta
import logging

from apscheduler import AsyncScheduler, ConflictPolicy, TaskDefaults
from apscheduler.executors.async_ import AsyncJobExecutor
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger as loguru_logger

from focusflare.config import Settings, load_settings, setup_logging
from focusflare.modules.sessions.tasks import run_sessionization
from focusflare.modules.sessions.types import ProcessingStats


logger = logging.getLogger("apscheduler")

# One batch at a time, overlapping batches are never needed
task_defaults = TaskDefaults(
    job_executor="async",
    misfire_grace_time=timedelta(minutes=5),
    max_running_jobs=1,
    metadata={},
)


async def sessionization_job() -> ProcessingStats:
    try:
        return await run_sessionization(load_settings())
    except Exception:
        loguru_logger.exception("Sessionization batch failed")
        raise


def create_scheduler() -> AsyncScheduler:
    return AsyncScheduler(
        max_concurrent_jobs=1,
        job_executors={"async": AsyncJobExecutor()},
        task_defaults=task_defaults,
        logger=logger,
    )


async def init_schedules(scheduler: AsyncScheduler, settings: Settings) -> None:
    await scheduler.add_schedule(
        func_or_task_id=sessionization_job,
        trigger=IntervalTrigger(seconds=settings.batch_interval.total_seconds()),
        id="run_sessionization",
        conflict_policy=ConflictPolicy.replace,
    )


async def run_scheduler(settings: Settings) -> None:
    async with create_scheduler() as scheduler:
        await init_schedules(scheduler, settings)
        loguru_logger.info(
            "Sessionization scheduled every {}", settings.batch_interval
        )
        await scheduler.run_until_stopped()


def main() -> None:
    settings = load_settings()
    setup_logging(settings)
    asyncio.run(run_scheduler(settings))
