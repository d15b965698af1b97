"""Database configuration for the NetPulse API.

This module sets up the SQLAlchemy engine and session factory.  Unless
``DATABASE_URL`` points somewhere else, the SQLite database file lives inside
the repository's ``data`` directory regardless of the current working
directory from which the application is launched.  The directory is created
automatically if it does not already exist.
"""

import os
from pathlib import Path

from sqlalchemy import create_engine, inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker, declarative_base

BASE_DIR = Path(__file__).resolve().parent.parent
DATA_DIR = BASE_DIR / "data"


def _default_url() -> str:
    DATA_DIR.mkdir(parents=True, exist_ok=True)
    return f"sqlite:///{DATA_DIR / 'netpulse.db'}"


DATABASE_URL = os.environ.get("DATABASE_URL") or _default_url()


def make_engine(url: str) -> Engine:
    connect_args = {}
    if url.startswith("sqlite"):
        # Requests are served from a thread pool, so a connection may be used
        # by a thread other than the one that opened it.
        connect_args["check_same_thread"] = False
    return create_engine(url, connect_args=connect_args)


engine = make_engine(DATABASE_URL)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


def migrate(bind: Engine | None = None) -> None:
    """Ensure the database schema matches the current SQLAlchemy models.

    SQLite's ``CREATE TABLE IF NOT EXISTS`` does not add new columns to an
    existing table.  Databases created by the anonymous results service have a
    ``test_results`` table without ``user_email``; inserting into it would fail
    with ``OperationalError``.  This helper creates missing tables and then
    adds any column that is defined on a model but missing from the database.
    """

    # Import here to avoid circular imports during module initialisation.
    from . import models

    bind = bind or engine
    models.Base.metadata.create_all(bind=bind)

    inspector = inspect(bind)
    with bind.begin() as conn:
        for table in models.Base.metadata.sorted_tables:
            existing = {col["name"] for col in inspector.get_columns(table.name)}
            for column in table.columns:
                if column.name in existing:
                    continue
                coltype = column.type.compile(bind.dialect)
                conn.execute(
                    text(f"ALTER TABLE {table.name} ADD COLUMN {column.name} {coltype}")
                )
