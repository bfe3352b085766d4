import functools
from typing import Any

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from basecore.settings import get_settings


def engine_options(database_url: str) -> dict[str, Any]:
    """
    Build create_engine() options for a database URL.

    PostgreSQL connections run at READ COMMITTED with a statement timeout so
    no store call can block indefinitely.
    """
    settings = get_settings()
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": False}

    if database_url.startswith("postgresql"):
        options["isolation_level"] = "READ COMMITTED"
        options["connect_args"] = {
            "connect_timeout": settings.DB_CONNECT_TIMEOUT,
            "options": f"-c statement_timeout={settings.DB_STATEMENT_TIMEOUT_MS}",
        }

    return options


@functools.lru_cache()
def get_engine(database_url: str | None = None) -> Engine:
    """
    Get SQLAlchemy engine (cached per URL).

    This function lazily initializes the engine to avoid import-time side effects.
    Defaults to DATABASE_URL (the auction write-side store).
    """
    url = database_url or get_settings().DATABASE_URL
    return create_engine(url, **engine_options(url))


@functools.lru_cache()
def get_sessionmaker(database_url: str | None = None) -> sessionmaker:
    """
    Get SQLAlchemy sessionmaker (cached per URL).

    This function lazily initializes the sessionmaker to avoid import-time side effects.
    """
    engine = get_engine(database_url)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def get_db():
    """
    Dependency generator for FastAPI to get an auction database session.

    Yields a database session and ensures it's closed after use.
    """
    SessionLocal = get_sessionmaker()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_search_db():
    """Dependency generator yielding a session on the search read-model store."""
    SessionLocal = get_sessionmaker(get_settings().SEARCH_DATABASE_URL)
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
