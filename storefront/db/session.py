from contextlib import contextmanager
import os
from pathlib import Path
from typing import Callable, ContextManager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from ..errors import PersistenceError


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///data/app.db")

SessionFactory = Callable[[], ContextManager[Session]]


def _ensure_sqlite_parent(url: str) -> None:
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if url.startswith("sqlite:///") and ":memory:" not in url:
        db_path = url.split("sqlite:///")[-1]
        try:
            parent = Path(db_path).expanduser().resolve().parent
            parent.mkdir(parents=True, exist_ok=True)
        except Exception:
            # best-effort; real error will surface on connect if still invalid
            pass


def build_engine(url: str) -> Engine:
    _ensure_sqlite_parent(url)
    eng = create_engine(url, future=True)
    if url.startswith("sqlite"):
        @event.listens_for(eng, "connect")
        def _enable_sqlite_fks(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()
    return eng


def transactional(session_maker: sessionmaker) -> SessionFactory:
    """Wrap a sessionmaker into a unit-of-work context manager.

    Commits when the block exits cleanly, rolls back on any exception and
    always closes. Storage failures surface as PersistenceError.
    """

    @contextmanager
    def _unit_of_work():
        session = session_maker()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as exc:
            session.rollback()
            raise PersistenceError(str(exc.__class__.__name__), cause=exc) from exc
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return _unit_of_work


def make_session_factory(url: str):
    """Return (engine, session_factory) bound to a dedicated engine."""
    eng = build_engine(url)
    maker = sessionmaker(bind=eng, autoflush=False, expire_on_commit=False, future=True)
    return eng, transactional(maker)


def init_db(bind: Engine) -> None:
    from ..models import Base

    Base.metadata.create_all(bind)


engine = build_engine(DATABASE_URL)
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)
get_session = transactional(SessionLocal)
