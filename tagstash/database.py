from __future__ import annotations

from collections.abc import Generator

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from tagstash.config import get_settings

settings = get_settings()

_database_uri = settings.sqlalchemy_database_uri()
_connect_args = {"check_same_thread": False} if _database_uri.startswith("sqlite") else {}

engine = create_engine(
    _database_uri,
    pool_pre_ping=True,
    connect_args=_connect_args,
    future=True,
)

if _database_uri.startswith("sqlite"):

    @event.listens_for(engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, _connection_record):  # noqa: ANN001
        # tag_image relies on ON DELETE CASCADE
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
