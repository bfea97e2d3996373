# backend/app/db.py
from __future__ import annotations

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, DeclarativeBase

from .config import settings


class Base(DeclarativeBase):
    pass


def _is_sqlite(url: str) -> bool:
    return str(url).strip().lower().startswith("sqlite")


def make_engine(url: str):
    """
    Engine factory shared by the app and the tests.

    SQLite has no row locks, so every transaction is opened as BEGIN IMMEDIATE:
    the first statement of a unit of work then holds the database write lock,
    which serializes concurrent reconciliations the way SELECT ... FOR UPDATE
    does on Postgres.
    """
    if not _is_sqlite(url):
        return create_engine(url, pool_pre_ping=True, future=True)

    eng = create_engine(
        url,
        future=True,
        connect_args={"check_same_thread": False, "timeout": 30},
    )

    @event.listens_for(eng, "connect")
    def _sqlite_connect(dbapi_connection, connection_record):
        # let SQLAlchemy emit BEGIN itself (pysqlite would defer it)
        dbapi_connection.isolation_level = None

    @event.listens_for(eng, "begin")
    def _sqlite_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return eng


engine = make_engine(settings.database_url)

SessionLocal = sessionmaker(
    bind=engine,
    autoflush=False,
    autocommit=False,
    expire_on_commit=False,
    future=True,
)


def init_db() -> None:
    # dev/test convenience; production schema goes through alembic
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)


def get_db():
    """
    Request-scoped session for read endpoints.

    Rolls back on any exception so an aborted Postgres transaction never
    leaks into the next query on the same connection.
    """
    db = SessionLocal()
    try:
        yield db
    except Exception:
        try:
            db.rollback()
        except Exception:
            pass
        raise
    finally:
        db.close()
