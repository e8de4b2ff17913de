import uuid

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from robojs.models.base import Base, TimestampMixin


class User(TimestampMixin, Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    # free | member (member accounts get a larger active-task quota)
    role: Mapped[str] = mapped_column(String(16), nullable=False, default="free")
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False, default="")
