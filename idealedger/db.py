from __future__ import annotations

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

from sqlalchemy import create_engine, event, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from idealedger.errors import InternalError, NotFoundError
from idealedger.models import Base, Idea

log = logging.getLogger(__name__)

_lock = threading.Lock()
_engine: Engine | None = None
_SessionLocal: sessionmaker | None = None

# Per-idea serialization; ideas hashing to the same stripe share a lock.
_IDEA_LOCK_STRIPES = 64
_idea_locks = tuple(threading.Lock() for _ in range(_IDEA_LOCK_STRIPES))


def _enable_sqlite_fk(dbapi_conn, _record) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(url: str, **kwargs) -> Engine:
    """Create an engine; SQLite gets foreign keys and cross-thread access."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        path = url.split("///", 1)[-1]
        if path and path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)
    engine = create_engine(url, **kwargs)
    if url.startswith("sqlite"):
        event.listen(engine, "connect", _enable_sqlite_fk)
    return engine


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


def init_db(url: str) -> None:
    """Bind the process to a database and create missing tables.

    Existing data is never dropped.
    """
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = make_engine(url)
        Base.metadata.create_all(_engine)
        _SessionLocal = make_session_factory(_engine)
    log.info("Database initialized at %s", _engine.url.render_as_string(hide_password=True))


def dispose_db() -> None:
    global _engine, _SessionLocal
    with _lock:
        if _engine is not None:
            _engine.dispose()
        _engine = None
        _SessionLocal = None


def get_session() -> Session:
    with _lock:
        if _SessionLocal is None:
            raise RuntimeError("init_db() has not been called")
        factory = _SessionLocal
    return factory()


def session_generator() -> Generator[Session, None, None]:
    """One session per request; rolled back if the request fails, always closed."""
    session = get_session()
    try:
        yield session
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


def _lock_for(idea_id: str) -> threading.Lock:
    return _idea_locks[hash(idea_id) % _IDEA_LOCK_STRIPES]


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Commit everything done in the block as one unit, or nothing.

    Storage failures surface as :class:`InternalError`; the original exception
    is logged, never exposed.
    """
    try:
        yield session
        session.commit()
    except SQLAlchemyError as exc:
        session.rollback()
        log.error("Storage failure, transaction rolled back", exc_info=exc)
        raise InternalError("Storage failure") from exc
    except Exception:
        session.rollback()
        raise


@contextmanager
def idea_mutation(session: Session, idea_id: str) -> Iterator[Idea]:
    """Serialize ledger mutations of one idea and commit them atomically.

    Holds a per-idea lock for the whole read-validate-write sequence and takes a
    row lock on the idea (``FOR UPDATE``, ignored by SQLite). Yields the idea.
    """
    with _lock_for(idea_id):
        with atomic(session):
            idea = session.execute(
                select(Idea).where(Idea.id == idea_id).with_for_update()
            ).scalars().first()
            if idea is None:
                raise NotFoundError("Idea not found")
            yield idea
