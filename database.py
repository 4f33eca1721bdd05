from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Session, sessionmaker

from config import get_settings


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def build_engine(url: str, *, busy_timeout_ms: int = 5000) -> Engine:
    connect_args: dict[str, object] = {}
    if _is_sqlite(url):
        connect_args["check_same_thread"] = False

    eng = create_engine(url, connect_args=connect_args)
    if _is_sqlite(url):

        @event.listens_for(eng, "connect")
        def _on_connect(dbapi_conn, _record):
            _enable_sqlite_pragmas(dbapi_conn, busy_timeout_ms)

        event.listen(eng, "begin", _begin_immediate)
    return eng


def _create_engine() -> Engine:
    return build_engine(get_settings().database_url)


def _enable_sqlite_pragmas(dbapi_conn, busy_timeout_ms: int):
    # Let SQLAlchemy emit BEGIN itself; see _begin_immediate.
    dbapi_conn.isolation_level = None
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL;")
    cursor.execute("PRAGMA foreign_keys=ON;")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)};")
    cursor.close()


def _begin_immediate(conn):
    # SQLite ignores SELECT ... FOR UPDATE. Taking the write lock when the
    # transaction opens keeps count-then-insert sequences serialized.
    conn.exec_driver_sql("BEGIN IMMEDIATE")


engine = _create_engine()
SessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


class Base(DeclarativeBase):
    pass


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def session_scope() -> Iterator[Session]:
    session: Session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
