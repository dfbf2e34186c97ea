"""Procedure lock ORM mapping."""
from datetime import datetime

from sqlalchemy import DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, TimestampMixin


class ProcedureLock(TimestampMixin, Base):
    """Lock row used to serialize batch procedures on engines without advisory locks.

    The row is written inside the transaction that runs the procedure, so the
    engine's row (or database) write lock is held until that transaction ends.
    """

    __tablename__ = "procedure_locks"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    holder: Mapped[str] = mapped_column(String(128), nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
