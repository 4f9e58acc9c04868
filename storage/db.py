"""
Engine, session and transaction helpers.
"""
from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from common.errors import StorageError
from common.logger import get_logger
from common.settings import settings
from storage.models import Base

log = get_logger(__name__)


def build_engine(url: str | None = None, echo: bool = False) -> Engine:
    url = url or settings.database_url
    connect_args = {}
    if url.startswith("sqlite"):
        connect_args = {"check_same_thread": False, "timeout": 30}
    engine = create_engine(url, echo=echo, connect_args=connect_args)

    if url.startswith("sqlite"):
        # pysqlite defers BEGIN until the first write; take the write lock up front
        # so the validate-then-archive sequence is serialized like SELECT ... FOR UPDATE.
        @event.listens_for(engine, "connect")
        def _disable_pysqlite_begin(dbapi_conn, _record):
            dbapi_conn.isolation_level = None

        @event.listens_for(engine, "begin")
        def _begin_immediate(conn):
            conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


def create_schema(engine: Engine) -> None:
    Base.metadata.create_all(engine)


def make_session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, expire_on_commit=False)


@contextmanager
def session_scope(factory: sessionmaker) -> Iterator[Session]:
    """One unit of work: commit on success, roll back and re-raise on any failure."""
    session: Session = factory()
    try:
        yield session
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        log.error("Database transaction failed: %s", e, exc_info=True)
        raise StorageError(str(e)) from e
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
