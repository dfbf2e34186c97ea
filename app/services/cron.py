"""Scheduled batch runs."""
from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from app.core.logging import get_logger
from app.services.dormant import run_dormant_orchestrator
from app.services.procedure_errors import (
    AlreadyRunningError,
    LockTimeoutError,
    ProcedureExecutionError,
)
from app.services.procedure_runner import ProcedureRunner

logger = get_logger(__name__)

DORMANT_JOB_ID = "dormant-orchestrator"

_scheduler_active = False


def is_scheduler_active() -> bool:
    return _scheduler_active


def run_scheduled_dormant_orchestrator(runner: ProcedureRunner) -> None:
    """Run the orchestrator without waiting; a run held by another instance is skipped."""

    try:
        run_dormant_orchestrator(runner, timeout_seconds=0)
    except (AlreadyRunningError, LockTimeoutError):
        logger.info("Scheduled dormant run skipped; lock held elsewhere", extra={"job_id": DORMANT_JOB_ID})
    except ProcedureExecutionError as exc:
        logger.error(
            "Scheduled dormant run failed",
            extra={"job_id": DORMANT_JOB_ID, "native_code": exc.native_code},
        )
    else:
        logger.info("Scheduled dormant run completed", extra={"job_id": DORMANT_JOB_ID})


def start_scheduler(runner: ProcedureRunner, cron: str) -> AsyncIOScheduler:
    """Start an APScheduler instance running the dormant orchestrator on ``cron``."""

    global _scheduler_active
    scheduler = AsyncIOScheduler()
    scheduler.add_job(
        run_scheduled_dormant_orchestrator,
        CronTrigger.from_crontab(cron),
        args=[runner],
        id=DORMANT_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    scheduler.start()
    _scheduler_active = True
    logger.info("Scheduler started", extra={"job_id": DORMANT_JOB_ID, "cron": cron})
    return scheduler


def stop_scheduler(scheduler: AsyncIOScheduler | None) -> None:
    global _scheduler_active
    if scheduler is not None:
        scheduler.shutdown(wait=False)
    _scheduler_active = False


__all__ = [
    "DORMANT_JOB_ID",
    "is_scheduler_active",
    "run_scheduled_dormant_orchestrator",
    "start_scheduler",
    "stop_scheduler",
]
