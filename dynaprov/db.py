from __future__ import annotations

import os

from sqlalchemy.engine import Engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from dynaprov.config import DEFAULT_DATABASE_URL


def _database_url() -> str:
    return os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)


def build_engine(database_url: str) -> Engine:
    is_sqlite = database_url.startswith("sqlite")
    in_memory = is_sqlite and (database_url in ("sqlite://", "sqlite:///:memory:"))
    connect_args = {"check_same_thread": False} if is_sqlite else {}
    kwargs = {"poolclass": StaticPool} if in_memory else {}
    return create_engine(database_url, echo=False, connect_args=connect_args, **kwargs)


DATABASE_URL = _database_url()
engine = build_engine(DATABASE_URL)


def init_db(engine: Engine) -> None:
    # Ensure models are imported before creating tables.
    import dynaprov.models  # noqa: F401

    SQLModel.metadata.create_all(engine)
