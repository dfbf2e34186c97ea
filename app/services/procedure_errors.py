"""Closed error taxonomy for batch procedure runs and the classifier feeding it.

Engines report lock contention either through result codes or only through
message text (for example errors raised by a PL/SQL block), so every engine
specific marker lives here and nowhere else.

The explicit job signals (`PROCESS_ALREADY_RUNNING`, `LOCK_TIMEOUT` and their
ORA-20001/ORA-20002 application errors) are honoured wherever they surface.
Generic engine contention (deadlocks, busy resources, lock wait timeouts) only
means "the lock was not obtained" while the lock is being acquired; raised by
the batch call itself it is an execution failure and keeps its native number.
"""
from __future__ import annotations

import re
from typing import Any

from sqlalchemy.exc import DBAPIError

ALREADY_RUNNING = "ALREADY_RUNNING"
TIMEOUT = "TIMEOUT"
PROC_ERROR = "PROC_ERROR"

_JOB_RUNNING_MARKERS = ("PROCESS_ALREADY_RUNNING", "ORA-20001")
_JOB_TIMEOUT_MARKERS = ("LOCK_TIMEOUT", "ORA-20002")
_JOB_RUNNING_CODES = {20001}
_JOB_TIMEOUT_CODES = {20002}

_DEADLOCK_MARKERS = (
    "ORA-04020",  # deadlock while trying to lock an object
    "ORA-00060",  # deadlock detected while waiting for resource
    "deadlock detected",
)
_BUSY_MARKERS = (
    "ORA-30006",  # resource busy; acquire with WAIT timeout expired
    "ORA-00054",  # resource busy and acquire with NOWAIT specified
    "canceling statement due to lock timeout",
    "could not obtain lock",
    "database is locked",
)
_DEADLOCK_CODES = {"40P01", 4020, 60}
_BUSY_CODES = {"55P03", 30006, 54}

_ORA_CODE = re.compile(r"ORA-(\d{5})")


class ProcedureError(Exception):
    """Base class for the three outcomes a procedure run can fail with."""

    code: str = PROC_ERROR
    status_code: int = 500
    default_message: str = "Procedure execution failed"

    def __init__(self, message: str | None = None, *, native_code: int | str | None = None) -> None:
        self.message = message or self.default_message
        self.native_code = native_code
        super().__init__(self.message)

    def to_payload(self) -> dict[str, Any]:
        """Return the public fields of the error (never the raw engine detail)."""

        return {"code": self.code, "message": self.message}


class AlreadyRunningError(ProcedureError):
    code = ALREADY_RUNNING
    status_code = 409
    default_message = "A run is already in progress"


class LockTimeoutError(ProcedureError):
    code = TIMEOUT
    status_code = 423
    default_message = "Could not obtain lock within timeout"


class ProcedureExecutionError(ProcedureError):
    """Anything that is neither lock contention nor a lock wait timeout.

    ``detail`` carries the raw engine message for server-side logs only.
    """

    code = PROC_ERROR
    status_code = 500

    def __init__(
        self,
        detail: str = "",
        *,
        native_code: int | str | None = None,
        message: str | None = None,
    ) -> None:
        self.detail = detail
        super().__init__(message, native_code=native_code)

    def to_payload(self) -> dict[str, Any]:
        payload = super().to_payload()
        if self.native_code is not None:
            payload["number"] = self.native_code
        return payload


def native_error_code(exc: BaseException) -> int | str | None:
    """Extract the engine's own error number from a (wrapped) DBAPI error."""

    orig = exc.orig if isinstance(exc, DBAPIError) else exc
    if orig is not None:
        # python-oracledb: the first argument is an _Error carrying ``code``.
        args = getattr(orig, "args", ())
        if args and isinstance(getattr(args[0], "code", None), int):
            return args[0].code
        for attribute in ("sqlstate", "pgcode", "sqlite_errorcode"):
            value = getattr(orig, attribute, None)
            if value:
                return value
    match = _ORA_CODE.search(str(exc))
    if match:
        return int(match.group(1))
    return None


def _matches(native_code: int | str | None, message: str, codes: set, markers: tuple[str, ...]) -> bool:
    return native_code in codes or any(marker in message for marker in markers)


def classify_failure(exc: BaseException, *, acquiring_lock: bool = False) -> ProcedureError:
    """Map any failure raised while running a procedure onto the closed taxonomy.

    ``acquiring_lock`` marks failures raised by the lock backend; only those
    treat engine deadlocks and lock wait timeouts as contention. Pure with
    respect to its inputs: the same failure always yields the same error type,
    code and native number.
    """

    if isinstance(exc, ProcedureError):
        return exc

    message = str(exc)
    native_code = native_error_code(exc)

    if _matches(native_code, message, _JOB_RUNNING_CODES, _JOB_RUNNING_MARKERS):
        return AlreadyRunningError(native_code=native_code)
    if _matches(native_code, message, _JOB_TIMEOUT_CODES, _JOB_TIMEOUT_MARKERS):
        return LockTimeoutError(native_code=native_code)
    if acquiring_lock:
        if _matches(native_code, message, _DEADLOCK_CODES, _DEADLOCK_MARKERS):
            return AlreadyRunningError(native_code=native_code)
        if _matches(native_code, message, _BUSY_CODES, _BUSY_MARKERS):
            return LockTimeoutError(native_code=native_code)
    return ProcedureExecutionError(message, native_code=native_code)


__all__ = [
    "ALREADY_RUNNING",
    "TIMEOUT",
    "PROC_ERROR",
    "ProcedureError",
    "AlreadyRunningError",
    "LockTimeoutError",
    "ProcedureExecutionError",
    "classify_failure",
    "native_error_code",
]
