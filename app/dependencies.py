"""FastAPI dependencies resolving process-wide components from the application state."""
from __future__ import annotations

from fastapi import Request

from app.services.procedure_runner import ProcedureRunner


def get_procedure_runner(request: Request) -> ProcedureRunner:
    return request.app.state.procedure_runner


__all__ = ["get_procedure_runner"]
