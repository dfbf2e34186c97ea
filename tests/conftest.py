"""Test configuration."""
import os
import threading
from collections.abc import AsyncIterator, Callable, Iterator
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from alembic import command
from alembic.config import Config
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

# --- Default env config
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DATABASE_URL", "sqlite:///./backoffice_test.db")
os.environ.setdefault("ALLOW_DB_CREATE_ALL", "true")
os.environ.setdefault("DORMANT_SCHEDULE_ENABLED", "false")
os.environ.setdefault("PROMETHEUS_ENABLED", "false")

from app.db import Database  # noqa: E402
from app.main import app  # noqa: E402
from app.services.procedure_locks import LockOutcome  # noqa: E402
from app.services.procedure_runner import COMPLETED_MESSAGE, ProcedureResult  # noqa: E402

DB_PATH = Path("./backoffice_test.db")
ALEMBIC_INI = Path(__file__).resolve().parents[1] / "alembic.ini"
if DB_PATH.exists():
    DB_PATH.unlink()


def _run_migrations(engine: Engine) -> None:
    """Build the schema through Alembic on the given engine."""

    cfg = Config(str(ALEMBIC_INI))
    with engine.begin() as connection:
        cfg.attributes["connection"] = connection
        command.upgrade(cfg, "head")


# --- Fakes for the connection pool and the engine lock -------------------


class FakeTransaction:
    def __init__(self, connection: "FakeConnection") -> None:
        self.connection = connection

    def __enter__(self) -> "FakeTransaction":
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.connection.end_transaction(commit=exc_type is None)
        return False


class FakeConnection:
    """Records statements; staged work only becomes visible on commit."""

    def __init__(self, engine: "FakeEngine") -> None:
        self.engine = engine
        self.isolation_level: str | None = None
        self.pending: list[tuple[str, dict[str, Any]]] = []
        self.on_end: list[Callable[[], None]] = []
        self.closed = False

    def execution_options(self, **options: Any) -> "FakeConnection":
        self.isolation_level = options.get("isolation_level", self.isolation_level)
        return self

    def begin(self) -> FakeTransaction:
        return FakeTransaction(self)

    def execute(self, statement: Any, params: dict[str, Any] | None = None) -> None:
        sql = str(statement)
        params = dict(params or {})
        self.engine.executed.append((sql, params))
        self.engine.run_hook(sql, params)
        if self.isolation_level == "AUTOCOMMIT":
            self.engine.record_commit([(sql, params)])
        else:
            self.pending.append((sql, params))

    def end_transaction(self, *, commit: bool) -> None:
        if commit:
            self.engine.record_commit(self.pending)
        else:
            self.engine.rollbacks += 1
        self.pending = []
        callbacks, self.on_end = self.on_end, []
        for callback in callbacks:
            callback()

    def close(self) -> None:
        if self.closed:
            raise AssertionError("connection released twice")
        self.closed = True
        self.engine.checkin()
        if self.engine.fail_close:
            raise RuntimeError("close failed")


class FakeEngine:
    """Stand-in for a pooled engine counting leased connections."""

    def __init__(self, dialect: str = "fake", driver: str = "fakedb") -> None:
        self.dialect = SimpleNamespace(name=dialect, driver=driver)
        self.executed: list[tuple[str, dict[str, Any]]] = []
        self.committed: list[tuple[str, dict[str, Any]]] = []
        self.rollbacks = 0
        self.leases = 0
        self.releases = 0
        self.in_use = 0
        self.hook: Callable[[str, dict[str, Any]], None] | None = None
        self.fail_connect = False
        self.fail_close = False
        self._mutex = threading.Lock()

    def connect(self) -> FakeConnection:
        if self.fail_connect:
            raise RuntimeError("pool exhausted")
        with self._mutex:
            self.leases += 1
            self.in_use += 1
        return FakeConnection(self)

    def checkin(self) -> None:
        with self._mutex:
            self.releases += 1
            self.in_use -= 1

    def record_commit(self, statements: list[tuple[str, dict[str, Any]]]) -> None:
        with self._mutex:
            self.committed.extend(statements)

    def run_hook(self, sql: str, params: dict[str, Any]) -> None:
        if self.hook is not None:
            self.hook(sql, params)


class ThreadNamedLock:
    """In-process lock with engine-like semantics, released when the transaction ends."""

    backend = "fake"

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock(self, name: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(name, threading.Lock())

    def acquire(self, connection: FakeConnection, name: str, timeout_seconds: int) -> LockOutcome:
        lock = self._lock(name)
        if timeout_seconds == 0:
            acquired = lock.acquire(blocking=False)
        else:
            acquired = lock.acquire(timeout=timeout_seconds)
        if not acquired:
            return LockOutcome.TIMEOUT
        connection.on_end.append(lock.release)
        return LockOutcome.ACQUIRED


class FixedOutcomeLock:
    backend = "fixed"

    def __init__(self, outcome: LockOutcome) -> None:
        self.outcome = outcome
        self.calls: list[tuple[str, int]] = []

    def acquire(self, connection: Any, name: str, timeout_seconds: int) -> LockOutcome:
        self.calls.append((name, timeout_seconds))
        return self.outcome


class StubRunner:
    """Procedure runner double for the HTTP layer and the scheduler."""

    driver = "stubdb"
    lock_backend = "table"

    def __init__(self) -> None:
        self.calls: list[dict[str, Any]] = []
        self.error: Exception | None = None

    def run_with_optional_lock(
        self,
        call: str,
        *,
        lock_name: str | None = None,
        timeout_seconds: int = 0,
        parameters: dict[str, Any] | None = None,
    ) -> ProcedureResult:
        self.calls.append(
            {"call": call, "lock_name": lock_name, "timeout_seconds": timeout_seconds, "parameters": parameters}
        )
        if self.error is not None:
            raise self.error
        return ProcedureResult(message=COMPLETED_MESSAGE, driver=self.driver)


# --- Fixtures ------------------------------------------------------------


@pytest.fixture
def fake_engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def make_fake_engine() -> Callable[..., FakeEngine]:
    return FakeEngine


@pytest.fixture
def thread_lock() -> ThreadNamedLock:
    return ThreadNamedLock()


@pytest.fixture
def fixed_lock() -> Callable[[LockOutcome], FixedOutcomeLock]:
    return FixedOutcomeLock


@pytest.fixture
def stub_runner() -> StubRunner:
    return StubRunner()


@pytest.fixture
def sqlite_path(tmp_path: Path) -> Path:
    return tmp_path / "procedures.db"


@pytest.fixture
def sqlite_engine(sqlite_path: Path) -> Iterator[Engine]:
    engine = create_engine(f"sqlite:///{sqlite_path}", connect_args={"check_same_thread": False})
    _run_migrations(engine)
    with engine.begin() as conn:
        conn.execute(text("CREATE TABLE batch_marker (id INTEGER PRIMARY KEY, label VARCHAR(32) NOT NULL)"))
    yield engine
    engine.dispose()


@pytest.fixture
def database(sqlite_engine: Engine) -> Database:
    return Database(sqlite_engine)


@pytest.fixture
def app_state(database: Database, stub_runner: StubRunner) -> Iterator[StubRunner]:
    app.state.database = database
    app.state.procedure_runner = stub_runner
    yield stub_runner
    del app.state.procedure_runner
    del app.state.database


@pytest.fixture
async def client(app_state: StubRunner) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as async_client:
        yield async_client


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"
