"""Batch procedure endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Body, Depends, Query, status

from app.config import get_settings
from app.dependencies import get_procedure_runner
from app.schemas.procedure import MAX_TIMEOUT_SECONDS, ErrorRead, ProcedureRunRead, ProcedureRunRequest
from app.services.dormant import run_dormant_orchestrator
from app.services.procedure_runner import ProcedureRunner

router = APIRouter(prefix="/procedures", tags=["procedures"])

_ERROR_RESPONSES = {
    status.HTTP_409_CONFLICT: {"model": ErrorRead, "description": "Another run holds the lock"},
    status.HTTP_423_LOCKED: {"model": ErrorRead, "description": "Lock not obtained within timeout"},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ErrorRead, "description": "Procedure failed"},
}


@router.post(
    "/dormant-orchestrator",
    response_model=ProcedureRunRead,
    status_code=status.HTTP_200_OK,
    responses=_ERROR_RESPONSES,
)
def run_dormant_orchestrator_endpoint(
    timeout: int | None = Query(default=None, ge=0, le=MAX_TIMEOUT_SECONDS),
    payload: ProcedureRunRequest | None = Body(default=None),
    runner: ProcedureRunner = Depends(get_procedure_runner),
) -> dict[str, object]:
    """Run the dormant-client orchestrator; ``timeout`` bounds the lock wait in seconds."""

    if timeout is None and payload is not None:
        timeout = payload.timeout
    if timeout is None:
        timeout = get_settings().DORMANT_DEFAULT_TIMEOUT_SECONDS
    return run_dormant_orchestrator(runner, timeout_seconds=timeout).as_dict()
