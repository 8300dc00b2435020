from collections.abc import Generator
from functools import lru_cache

from sqlalchemy import Engine
from sqlmodel import Session, SQLModel, create_engine

from shield.core.settings import get_settings


@lru_cache
def get_engine() -> Engine:
    """Create the engine for the configured database (once per process)."""
    database_url = get_settings().database_url
    connect_args: dict[str, object] = {}
    if database_url.startswith("sqlite"):
        # Required for SQLite when used with FastAPI across threads.
        connect_args = {"check_same_thread": False}
    return create_engine(database_url, echo=False, connect_args=connect_args)


def init_db(engine: Engine | None = None) -> None:
    """Create missing tables. The session blob table is the only one."""
    # Registers StoredSession in SQLModel.metadata.
    from shield.session import store  # noqa: F401

    SQLModel.metadata.create_all(engine or get_engine())


def get_session() -> Generator[Session, None, None]:
    with Session(get_engine()) as session:
        yield session
