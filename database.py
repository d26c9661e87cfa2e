from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool

from config import get_settings


class Base(DeclarativeBase):
    pass


def build_engine(database_url: str, poolclass: Optional[type] = None) -> Engine:
    """Engine for the budget store.

    SQLite connections get foreign keys enforced, and WAL journaling when the
    database lives in a file. An in-memory URL is pinned to a single shared
    connection so every session sees the same data.
    """
    kwargs: dict[str, object] = {}
    is_sqlite = database_url.startswith("sqlite")
    in_memory = is_sqlite and ":memory:" in database_url
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    if poolclass is not None:
        kwargs["poolclass"] = poolclass
    elif in_memory:
        kwargs["poolclass"] = StaticPool
    eng = create_engine(database_url, **kwargs)

    if is_sqlite:

        @event.listens_for(eng, "connect")
        def _sqlite_pragmas(dbapi_conn, _record):
            cursor = dbapi_conn.cursor()
            if not in_memory:
                cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA foreign_keys=ON;")
            cursor.close()

    return eng


def session_factory(eng: Engine) -> sessionmaker:
    # loaded rows stay usable after commit; services return them to routes
    return sessionmaker(bind=eng, autoflush=False, expire_on_commit=False)


engine = build_engine(get_settings().database_url)
SessionLocal = session_factory(engine)


@contextmanager
def session_scope(factory: Optional[sessionmaker] = None) -> Iterator[Session]:
    session: Session = (factory or SessionLocal)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
