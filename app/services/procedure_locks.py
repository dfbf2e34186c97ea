"""Named, engine-level exclusive locks used to serialize batch procedures.

Every backend acquires its lock inside the caller's open transaction and the
lock lives exactly as long as that transaction: the commit that follows the
protected call (or the rollback on failure) releases it. No backend keeps any
in-process state, so the guarantee holds across processes and hosts.
"""
from __future__ import annotations

import enum
import hashlib
import os
import socket
from contextlib import closing
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import insert, select, text, update
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import IntegrityError

from app.core.logging import get_logger
from app.models.base import utcnow
from app.models.procedure_lock import ProcedureLock
from app.services.procedure_errors import ProcedureExecutionError

logger = get_logger(__name__)


class LockOutcome(enum.Enum):
    ACQUIRED = "acquired"
    TIMEOUT = "timeout"
    ALREADY_RUNNING = "already_running"


class NamedLock(Protocol):
    """Capability: take an exclusive lock called ``name`` within the current transaction."""

    backend: str

    def acquire(self, connection: Connection, name: str, timeout_seconds: int) -> LockOutcome:
        ...


def lock_key(name: str) -> int:
    """Return a signed 64-bit key for ``name``, identical in every process."""

    digest = hashlib.blake2b(name.encode("utf-8"), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def holder_id() -> str:
    return f"{socket.gethostname()}-{os.getpid()}"


class OracleNamedLock:
    """``DBMS_LOCK`` user lock in exclusive mode, released on commit."""

    backend = "oracle"

    X_MODE = 6
    MAXWAIT = 32767

    # DBMS_LOCK.REQUEST results: 0 success, 1 timeout, 2 deadlock,
    # 3 parameter error, 4 already own lock, 5 illegal lock handle.
    _OUTCOMES = {
        0: LockOutcome.ACQUIRED,
        1: LockOutcome.TIMEOUT,
        2: LockOutcome.ALREADY_RUNNING,
        4: LockOutcome.ALREADY_RUNNING,
    }

    _REQUEST_BLOCK = """
        DECLARE
          l_handle VARCHAR2(128);
        BEGIN
          DBMS_LOCK.ALLOCATE_UNIQUE(:lock_name, l_handle);
          :result := DBMS_LOCK.REQUEST(l_handle, :lock_mode, :timeout_sec, TRUE);
        END;"""

    def acquire(self, connection: Connection, name: str, timeout_seconds: int) -> LockOutcome:
        timeout = min(timeout_seconds, self.MAXWAIT)
        # Out binds need the driver cursor; it shares the connection's transaction.
        with closing(connection.connection.cursor()) as cursor:
            result = cursor.var(int)
            cursor.execute(
                self._REQUEST_BLOCK,
                lock_name=name,
                lock_mode=self.X_MODE,
                timeout_sec=timeout,
                result=result,
            )
            status = result.getvalue()

        outcome = self._OUTCOMES.get(status)
        if outcome is None:
            raise ProcedureExecutionError(
                f"DBMS_LOCK.REQUEST returned {status} for lock {name!r}", native_code=status
            )
        return outcome


def _local_lock_timeout(connection: Connection, milliseconds: int) -> str:
    """Set PostgreSQL ``lock_timeout`` for the current transaction and return the previous value."""

    previous = connection.execute(text("SELECT current_setting('lock_timeout')")).scalar_one()
    connection.execute(
        text("SELECT set_config('lock_timeout', :value, true)"), {"value": f"{milliseconds}ms"}
    )
    return previous


def _restore_lock_timeout(connection: Connection, previous: str) -> None:
    connection.execute(text("SELECT set_config('lock_timeout', :value, true)"), {"value": previous})


class PostgresNamedLock:
    """Transaction-scoped advisory lock (``pg_advisory_xact_lock``)."""

    backend = "postgresql"

    def acquire(self, connection: Connection, name: str, timeout_seconds: int) -> LockOutcome:
        key = lock_key(name)
        if timeout_seconds == 0:
            acquired = connection.execute(
                text("SELECT pg_try_advisory_xact_lock(:key)"), {"key": key}
            ).scalar_one()
            return LockOutcome.ACQUIRED if acquired else LockOutcome.TIMEOUT

        # A lock_not_available failure here is classified as a lock timeout.
        previous = _local_lock_timeout(connection, timeout_seconds * 1000)
        connection.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
        # The wait bound must not leak into the protected call.
        _restore_lock_timeout(connection, previous)
        return LockOutcome.ACQUIRED


class TableNamedLock:
    """Lock row in ``procedure_locks`` for engines without advisory locks.

    Writing the row takes the engine's write lock on it (the whole database on
    SQLite) until the transaction ends. The wait is bounded by ``busy_timeout``
    on SQLite and ``lock_timeout`` on PostgreSQL.
    """

    backend = "table"

    def acquire(self, connection: Connection, name: str, timeout_seconds: int) -> LockOutcome:
        dialect = connection.dialect.name
        previous: int | str | None = None
        if dialect == "sqlite":
            previous = connection.exec_driver_sql("PRAGMA busy_timeout").scalar()
            connection.exec_driver_sql(f"PRAGMA busy_timeout = {int(timeout_seconds) * 1000}")
        elif dialect == "postgresql":
            previous = _local_lock_timeout(connection, max(timeout_seconds * 1000, 1))

        now = utcnow()
        holder = holder_id()
        claim = (
            update(ProcedureLock).where(ProcedureLock.name == name).values(holder=holder, acquired_at=now)
        )
        try:
            if not connection.execute(claim).rowcount:
                try:
                    with connection.begin_nested():
                        connection.execute(
                            insert(ProcedureLock).values(name=name, holder=holder, acquired_at=now)
                        )
                except IntegrityError:
                    # Another session created the row first. The savepoint keeps this
                    # transaction usable, and the update now waits on that row's lock.
                    logger.info("Lock row created concurrently", extra={"lock_name": name})
                    if not connection.execute(claim).rowcount:
                        return LockOutcome.ALREADY_RUNNING
        finally:
            if dialect == "sqlite" and previous is not None:
                connection.exec_driver_sql(f"PRAGMA busy_timeout = {int(previous)}")

        if dialect == "postgresql" and previous is not None:
            _restore_lock_timeout(connection, str(previous))
        return LockOutcome.ACQUIRED


def describe_procedure_lock(engine: Engine, name: str) -> dict[str, object]:
    """Return a lightweight description of the last holder of a lock row."""

    with engine.connect() as conn:
        lock = conn.execute(select(ProcedureLock).where(ProcedureLock.name == name)).first()
    if lock is None:
        return {"name": name, "present": False, "holder": None}

    acquired_at = lock.acquired_at
    if acquired_at.tzinfo is None:
        acquired_at = acquired_at.replace(tzinfo=timezone.utc)
    age_seconds = (datetime.now(timezone.utc) - acquired_at).total_seconds()
    return {
        "name": name,
        "present": True,
        "holder": lock.holder,
        "held_by_self": lock.holder == holder_id(),
        "last_acquired_at": acquired_at.isoformat(),
        "age_seconds": age_seconds,
    }


_BACKENDS: dict[str, type] = {
    "oracle": OracleNamedLock,
    "postgresql": PostgresNamedLock,
    "table": TableNamedLock,
}


def select_named_lock(engine: Engine, backend: str = "auto") -> NamedLock:
    """Pick the lock backend for ``engine``; ``auto`` prefers native advisory locks."""

    if backend == "auto":
        backend = engine.dialect.name if engine.dialect.name in ("oracle", "postgresql") else "table"
    try:
        lock_cls = _BACKENDS[backend]
    except KeyError:
        raise ValueError(f"Unknown procedure lock backend: {backend!r}") from None
    logger.info("Procedure lock backend selected", extra={"backend": backend, "dialect": engine.dialect.name})
    return lock_cls()


__all__ = [
    "LockOutcome",
    "NamedLock",
    "OracleNamedLock",
    "PostgresNamedLock",
    "TableNamedLock",
    "describe_procedure_lock",
    "holder_id",
    "lock_key",
    "select_named_lock",
]
