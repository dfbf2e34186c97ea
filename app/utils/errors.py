"""Utility helpers for standardized error responses."""
from typing import Any

from app.services.procedure_errors import ProcedureError


def error_response(code: str, message: str, details: Any | None = None, **extra: Any) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"success": False, "code": code, "message": message}
    payload.update({key: value for key, value in extra.items() if value is not None})
    if details:
        payload["details"] = details
    return payload


def procedure_error_response(error: ProcedureError) -> dict[str, Any]:
    """Render a procedure failure without any raw engine detail."""

    return error_response(**error.to_payload())
