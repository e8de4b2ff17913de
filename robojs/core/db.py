from typing import Any, Dict, Iterator

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from robojs.core.config import get_settings


def make_engine(url: str, **kwargs: Any) -> Engine:
    connect_args: Dict[str, Any] = {}
    if url.startswith("sqlite"):
        # worker threads share the file database
        connect_args["check_same_thread"] = False
        return create_engine(url, connect_args=connect_args, **kwargs)
    return create_engine(url, pool_pre_ping=True, pool_recycle=3600, **kwargs)


def make_session_factory(engine: Engine) -> sessionmaker:
    # rows are read back after commit (ids, lease checks); keep them loaded
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


engine = make_engine(get_settings().sqlalchemy_database_uri)
SessionLocal = make_session_factory(engine)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
