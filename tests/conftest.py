# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

import pytest

from robojs.core.db import make_engine, make_session_factory
from robojs.models import Base, Collection, Notification, Result, Task, User

NOW = datetime(2026, 3, 1, 12, 0, 0)


class Seed:
    """Row factory over a real (tmp) SQLite database; each call commits on its own."""

    def __init__(self, session_factory) -> None:
        self.session_factory = session_factory

    def _add(self, obj: Any) -> Any:
        with self.session_factory() as db:
            db.add(obj)
            db.commit()
        return obj

    def user(self, *, email: str = "ada@example.com", name: str = "Ada", role: str = "free") -> User:
        return self._add(User(email=email, name=name, role=role))

    def collection(self, user: User, *, name: str = "Default") -> Collection:
        return self._add(Collection(user_id=user.id, name=name, description=""))

    def task(
        self,
        user: User,
        collection: Collection,
        *,
        name: str = "Task",
        code: str = "",
        interval: int = 60,
        active: bool = True,
        next_run: Optional[datetime] = None,
        **extra: Any,
    ) -> Task:
        return self._add(
            Task(
                user_id=user.id,
                collection_id=collection.id,
                name=name,
                description="",
                code=code,
                interval=interval,
                active=active,
                next_run=next_run or NOW - timedelta(minutes=1),
                **extra,
            )
        )

    def result(self, task: Task, value: str, *, is_error: bool = False, created_at=None) -> Result:
        return self._add(
            Result(
                task_id=task.id,
                user_id=task.user_id,
                result=value,
                is_error=is_error,
                created_at=created_at or NOW,
            )
        )

    def notification(self, task: Task, result: Result, text: str = "hi", *, is_read: bool = False) -> Notification:
        return self._add(
            Notification(
                task_id=task.id,
                user_id=task.user_id,
                result_id=result.id,
                notification=text,
                is_read=is_read,
            )
        )

    def get(self, model: Any, pk: Any) -> Any:
        with self.session_factory() as db:
            return db.get(model, pk)

    def all(self, model: Any, **filters: Any) -> list:
        with self.session_factory() as db:
            q = db.query(model)
            for key, value in filters.items():
                q = q.filter(getattr(model, key) == value)
            return list(q.order_by(model.id).all())


@pytest.fixture()
def engine(tmp_path: Path):
    eng = make_engine(f"sqlite:///{tmp_path / 'robojs.sqlite3'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return make_session_factory(engine)


@pytest.fixture()
def seed(session_factory) -> Seed:
    return Seed(session_factory)


@pytest.fixture()
def owner(seed: Seed) -> User:
    return seed.user()


@pytest.fixture()
def collection(seed: Seed, owner: User) -> Collection:
    return seed.collection(owner)
