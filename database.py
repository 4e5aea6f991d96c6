from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker
from sqlalchemy.pool import StaticPool


class Base(DeclarativeBase):
    pass


def _enable_sqlite_pragmas(dbapi_conn, _record):
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.close()


def _is_memory_sqlite(url: str) -> bool:
    if not url.startswith("sqlite"):
        return False
    return ":memory:" in url or url.rstrip("/").endswith(":")


class Database:
    """Store handle shared by the services.

    Nothing touches the engine until ``open()`` is called, and ``close()``
    disposes of the connection pool. An in-memory SQLite URL keeps a single
    connection alive so every session sees the same data.
    """

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine: Optional[Engine] = None
        self._sessionmaker: Optional[sessionmaker[Session]] = None

    @property
    def is_open(self) -> bool:
        return self.engine is not None

    def open(self) -> None:
        if self.engine is not None:
            return
        connect_args: dict[str, object] = {}
        engine_kwargs: dict[str, object] = {}
        if self.url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        if _is_memory_sqlite(self.url):
            engine_kwargs["poolclass"] = StaticPool

        eng = create_engine(self.url, connect_args=connect_args, **engine_kwargs)
        if self.url.startswith("sqlite"):
            event.listen(eng, "connect", _enable_sqlite_pragmas)
        self.engine = eng
        self._sessionmaker = sessionmaker(
            bind=eng, autoflush=False, expire_on_commit=False
        )

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
        self.engine = None
        self._sessionmaker = None

    def create_all(self) -> None:
        # models must be imported for their tables to be registered
        import models  # noqa: F401

        if self.engine is None:
            raise RuntimeError("Database is not open")
        Base.metadata.create_all(self.engine)

    def session(self) -> Session:
        if self._sessionmaker is None:
            raise RuntimeError("Database is not open")
        return self._sessionmaker()

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        session = self.session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()
