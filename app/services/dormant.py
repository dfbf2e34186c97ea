"""Dormant-client batch jobs."""
from __future__ import annotations

from app.services.procedure_runner import ProcedureResult, ProcedureRunner

# One lock per batch job type; never built from request input.
DORMANT_ORCHESTRATOR_LOCK = "CMP_DORMANT_ORCH_LOCK"
DORMANT_ORCHESTRATOR_CALL = "CMP_DORMANT_PKG.PROCESS_DORMANT_ORCH();"
DEFAULT_TIMEOUT_SECONDS = 30


def run_dormant_orchestrator(
    runner: ProcedureRunner, *, timeout_seconds: int = DEFAULT_TIMEOUT_SECONDS
) -> ProcedureResult:
    """Run the dormant-client orchestrator, at most once at a time across all instances.

    Errors from the runner (already running, lock timeout, execution error)
    propagate unchanged.
    """

    return runner.run_with_optional_lock(
        DORMANT_ORCHESTRATOR_CALL,
        lock_name=DORMANT_ORCHESTRATOR_LOCK,
        timeout_seconds=timeout_seconds,
    )


__all__ = [
    "DEFAULT_TIMEOUT_SECONDS",
    "DORMANT_ORCHESTRATOR_CALL",
    "DORMANT_ORCHESTRATOR_LOCK",
    "run_dormant_orchestrator",
]
