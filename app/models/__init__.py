"""ORM models package."""
from .base import Base, TimestampMixin
from .procedure_lock import ProcedureLock

__all__ = ["Base", "ProcedureLock", "TimestampMixin"]
