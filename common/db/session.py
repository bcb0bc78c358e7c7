from contextlib import contextmanager
from pathlib import Path
from typing import Callable, ContextManager, Tuple

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..models import Base


SessionFactory = Callable[[], ContextManager[Session]]


def _ensure_sqlite_parent(database_url: str) -> None:
    # Ensure sqlite file parent directory exists to avoid 'unable to open database file'
    if database_url.startswith("sqlite:///") and ":memory:" not in database_url:
        db_path = database_url.split("sqlite:///")[-1]
        try:
            Path(db_path).expanduser().resolve().parent.mkdir(parents=True, exist_ok=True)
        except OSError:
            # best-effort; real error will surface on connect if still invalid
            pass


def build_engine(database_url: str) -> Engine:
    _ensure_sqlite_parent(database_url)
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        # one shared connection so every session sees the same in-memory database
        return create_engine(
            database_url,
            future=True,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_engine(database_url, future=True)


def make_session_factory(database_url: str, create_tables: bool = True) -> Tuple[SessionFactory, Engine]:
    """Return ``(get_session, engine)`` bound to ``database_url``.

    ``get_session()`` is a unit of work: it commits when the block exits
    cleanly and rolls back on any exception.
    """
    engine = build_engine(database_url)
    if create_tables:
        Base.metadata.create_all(engine)
    session_local = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False, future=True)

    @contextmanager
    def get_session():
        session = session_local()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    return get_session, engine
