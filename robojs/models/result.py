from __future__ import annotations

from sqlalchemy import BigInteger, Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from robojs.models.base import Base, BigIntPK, TimestampMixin


class Result(TimestampMixin, Base):
    """
    Outcome of one execution attempt. Written once by the scheduler, never updated.

    `result` holds the compact JSON of the returned value, or "Error: <message>"
    when is_error is set.
    """

    __tablename__ = "results"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    task_id: Mapped[int] = mapped_column(BigInteger, index=True, nullable=False)
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)

    result: Mapped[str] = mapped_column(Text, nullable=False)
    is_error: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
