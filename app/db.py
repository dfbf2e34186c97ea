"""Database engine and connection pool lifecycle."""
from __future__ import annotations

from typing import Any

from fastapi import Request
from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from app.config import Settings
from app.core.logging import get_logger
from app.models.base import Base

logger = get_logger(__name__)

_oracle_client_initialized = False


def _init_oracle_client(lib_dir: str | None) -> bool:
    """Switch python-oracledb to thick mode once per process when a client dir is configured."""

    global _oracle_client_initialized
    if _oracle_client_initialized:
        return True
    if not lib_dir:
        logger.debug("ORACLE_CLIENT_LIB_DIR not set; using python-oracledb thin mode")
        return False

    import oracledb

    try:
        oracledb.init_oracle_client(lib_dir=lib_dir)
    except oracledb.Error:
        logger.warning(
            "Oracle client init failed; continuing in thin mode",
            extra={"lib_dir": lib_dir},
            exc_info=True,
        )
        return False
    _oracle_client_initialized = True
    logger.info("Oracle client initialized", extra={"lib_dir": lib_dir})
    return True


def _engine_kwargs(settings: Settings) -> dict[str, Any]:
    if settings.database_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    return {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
    }


class Database:
    """Owns the engine (and therefore the connection pool) for one process.

    Built by the application lifespan and handed to the components that need
    connections; ``dispose`` closes every pooled connection.
    """

    def __init__(self, engine: Engine, *, oracle_client: bool = False) -> None:
        self.engine = engine
        self.oracle_client = oracle_client

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        oracle_client = False
        if settings.database_url.startswith("oracle"):
            oracle_client = _init_oracle_client(settings.ORACLE_CLIENT_LIB_DIR)
        engine = create_engine(settings.database_url, echo=False, **_engine_kwargs(settings))
        logger.info(
            "Database engine created",
            extra={"dialect": engine.dialect.name, "driver": engine.dialect.driver},
        )
        return cls(engine, oracle_client=oracle_client)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    @property
    def driver(self) -> str:
        return self.engine.dialect.driver

    def create_all(self) -> None:
        """Create the tables owned by this service using the declarative metadata."""

        Base.metadata.create_all(bind=self.engine)

    def ping(self) -> None:
        """Run a trivial round-trip query; raises when the database is unreachable."""

        statement = "SELECT 1 FROM DUAL" if self.dialect == "oracle" else "SELECT 1"
        with self.engine.connect() as conn:
            conn.execute(text(statement))

    def pool_status(self) -> dict[str, Any]:
        """Return a snapshot of the connection pool counters."""

        pool = self.engine.pool
        stats: dict[str, Any] = {"class": type(pool).__name__, "status": pool.status()}
        for attribute in ("size", "checkedin", "checkedout", "overflow"):
            counter = getattr(pool, attribute, None)
            if callable(counter):
                stats[attribute] = counter()
        return stats

    def dispose(self) -> None:
        self.engine.dispose()
        logger.info("Database engine disposed")


def get_database(request: Request) -> Database:
    """Return the process database attached to the application state."""

    return request.app.state.database


__all__ = ["Database", "get_database"]
