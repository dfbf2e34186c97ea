"""Health check endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from app.config import get_settings
from app.db import Database, get_database
from app.dependencies import get_procedure_runner
from app.services.cron import is_scheduler_active
from app.services.dormant import DORMANT_ORCHESTRATOR_LOCK
from app.services.procedure_locks import describe_procedure_lock
from app.services.procedure_runner import ProcedureRunner

router = APIRouter(prefix="/health", tags=["health"])
logger = logging.getLogger(__name__)


def _db_status(database: Database) -> tuple[str, str | None]:
    """Return ('ok', None) if the DB is reachable, ('error', reason) otherwise."""

    try:
        database.ping()
        return "ok", None
    except Exception as exc:  # noqa: BLE001
        logger.exception("DB health check failed")
        return "error", type(exc).__name__


def _lock_status(database: Database, runner: ProcedureRunner) -> dict[str, object] | None:
    if runner.lock_backend != "table":
        return None
    try:
        return describe_procedure_lock(database.engine, DORMANT_ORCHESTRATOR_LOCK)
    except Exception:  # noqa: BLE001
        logger.exception("Lock description failed")
        return {"name": DORMANT_ORCHESTRATOR_LOCK, "present": None}


@router.get("", summary="Health check")
def healthcheck(database: Database = Depends(get_database)) -> dict[str, object]:
    """Return a simple health payload."""

    settings = get_settings()
    db_status, _ = _db_status(database)
    return {
        "status": "ok" if db_status == "ok" else "degraded",
        "env": settings.app_env,
        "db_ok": db_status == "ok",
        "db_status": db_status,
        "scheduler_config_enabled": bool(settings.DORMANT_SCHEDULE_ENABLED),
        "scheduler_running": is_scheduler_active(),
    }


@router.get("/integrations", summary="Database and procedure integration check")
def check_integrations(
    database: Database = Depends(get_database),
    runner: ProcedureRunner = Depends(get_procedure_runner),
) -> dict[str, object]:
    """Ping the database and report pool counters and the procedure lock backend."""

    db_status, error = _db_status(database)
    proc: dict[str, object] = {
        "ok": db_status == "ok",
        "dialect": database.dialect,
        "driver": runner.driver,
        "lock_backend": runner.lock_backend,
        "client_init": database.oracle_client,
        "pool": database.pool_status(),
    }
    if error:
        proc["error"] = error
    lock = _lock_status(database, runner) if db_status == "ok" else None
    if lock is not None:
        proc["lock"] = lock
    return {"success": db_status == "ok", "proc": proc}
