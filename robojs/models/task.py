from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from robojs.models.base import Base, BigIntPK, TimestampMixin


class Task(TimestampMixin, Base):
    __tablename__ = "tasks"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    # multi-tenant
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    collection_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # opaque script, handed to the execution capability as-is
    code: Mapped[str] = mapped_column(Text, nullable=False, default="")

    # minutes between runs
    interval: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    next_run: Mapped[object] = mapped_column(DateTime(timezone=False), nullable=False, index=True)

    # simple lease to avoid duplicate runs from overlapping cycles
    locked_by: Mapped[str] = mapped_column(String(64), nullable=True)
    locked_until: Mapped[object] = mapped_column(DateTime(timezone=False), nullable=True, index=True)
