"""Run server-side batch procedures, optionally serialized by a named lock."""
from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine

from app.core.logging import get_logger
from app.services.procedure_errors import (
    AlreadyRunningError,
    LockTimeoutError,
    ProcedureError,
    ProcedureExecutionError,
    classify_failure,
)
from app.services.procedure_locks import LockOutcome, NamedLock

logger = get_logger(__name__)

COMPLETED_MESSAGE = "Procedure completed successfully"

_IDENTIFIER = re.compile(r"^[A-Za-z][A-Za-z0-9_$#]*$")


@dataclass(frozen=True)
class ProcedureResult:
    message: str
    driver: str
    success: bool = True
    status: str = "COMPLETED"
    code: str = "OK"

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


def _validate_timeout(timeout_seconds: int) -> int:
    if isinstance(timeout_seconds, bool) or not isinstance(timeout_seconds, int):
        raise ValueError("timeout_seconds must be an integer")
    if timeout_seconds < 0:
        raise ValueError("timeout_seconds must be >= 0")
    return timeout_seconds


def _validate_identifier(value: str, label: str) -> str:
    if not _IDENTIFIER.match(value or ""):
        raise ValueError(f"Invalid {label}: {value!r}")
    return value


class ProcedureRunner:
    """Executes batch calls through leased pool connections.

    With a lock name, the lock request and the call share one transaction:
    they commit together, and a failure rolls both back. The timeout only
    bounds the wait for the lock, never the call itself.
    """

    def __init__(self, engine: Engine, named_lock: NamedLock | None = None) -> None:
        self._engine = engine
        self._named_lock = named_lock

    @property
    def driver(self) -> str:
        return self._engine.dialect.driver

    @property
    def lock_backend(self) -> str | None:
        return getattr(self._named_lock, "backend", None)

    def _statement(self, call: str) -> str:
        if self._engine.dialect.name == "oracle":
            return f"BEGIN {call} END;"
        return call

    def _release(self, connection: Connection) -> None:
        try:
            connection.close()
        except Exception:  # noqa: BLE001
            logger.warning("Failed to release procedure connection", exc_info=True)

    def run_with_optional_lock(
        self,
        call: str,
        *,
        lock_name: str | None = None,
        timeout_seconds: int = 0,
        parameters: Mapping[str, Any] | None = None,
    ) -> ProcedureResult:
        """Run ``call`` and return a COMPLETED result, or raise a ``ProcedureError``."""

        timeout_seconds = _validate_timeout(timeout_seconds)
        statement = text(self._statement(call))
        binds = dict(parameters or {})
        log_extra = {"lock_name": lock_name, "timeout_seconds": timeout_seconds, "driver": self.driver}

        try:
            connection = self._engine.connect()
        except Exception as exc:  # noqa: BLE001
            raise self._failed(exc, log_extra) from exc

        try:
            if lock_name:
                self._run_locked(connection, statement, binds, lock_name, timeout_seconds)
            else:
                connection = connection.execution_options(isolation_level="AUTOCOMMIT")
                connection.execute(statement, binds)
        except ProcedureError as error:
            self._log_failure(error, log_extra)
            raise
        except Exception as exc:  # noqa: BLE001
            raise self._failed(exc, log_extra) from exc
        finally:
            self._release(connection)

        logger.info("Procedure completed", extra=log_extra)
        return ProcedureResult(message=COMPLETED_MESSAGE, driver=self.driver)

    def _run_locked(
        self,
        connection: Connection,
        statement: Any,
        binds: dict[str, Any],
        lock_name: str,
        timeout_seconds: int,
    ) -> None:
        if self._named_lock is None:
            raise ProcedureExecutionError(
                f"No lock backend configured for lock {lock_name!r}",
                message="Procedure lock is not configured",
            )

        with connection.begin():
            try:
                outcome = self._named_lock.acquire(connection, lock_name, timeout_seconds)
            except ProcedureError:
                raise
            except Exception as exc:  # noqa: BLE001
                raise classify_failure(exc, acquiring_lock=True) from exc
            if outcome is LockOutcome.TIMEOUT:
                raise LockTimeoutError()
            if outcome is LockOutcome.ALREADY_RUNNING:
                raise AlreadyRunningError()
            connection.execute(statement, binds)
        # Leaving the block commits the lock request and the call together.

    def _failed(self, exc: Exception, log_extra: dict[str, Any]) -> ProcedureError:
        error = classify_failure(exc)
        self._log_failure(error, log_extra, exc)
        return error

    def _log_failure(
        self, error: ProcedureError, log_extra: dict[str, Any], exc: BaseException | None = None
    ) -> None:
        extra = {**log_extra, "code": error.code, "native_code": error.native_code}
        if isinstance(error, ProcedureExecutionError):
            logger.error(
                "Procedure failed: %s", error.detail or error.message, extra=extra, exc_info=exc or error
            )
        else:
            logger.warning("Procedure not started: %s", error.message, extra=extra)

    def run_plain_procedure(
        self,
        package: str,
        procedure: str,
        params: Mapping[str, Any] | None = None,
    ) -> ProcedureResult:
        """Call ``package.procedure`` unguarded, binding ``params`` by name."""

        params = dict(params or {})
        _validate_identifier(package, "package name")
        _validate_identifier(procedure, "procedure name")
        for name in params:
            _validate_identifier(name, "parameter name")
        placeholders = ", ".join(f":{name}" for name in params)
        return self.run_with_optional_lock(f"{package}.{procedure}({placeholders});", parameters=params)


__all__ = ["COMPLETED_MESSAGE", "ProcedureResult", "ProcedureRunner"]
