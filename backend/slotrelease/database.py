from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from .config import settings


def make_engine(database_url: str) -> Engine:
    """
    Create an engine for the slot store.

    SQLite needs check_same_thread=False because workers share the engine
    across threads; ":memory:" databases additionally need a single shared
    connection, otherwise every thread sees its own empty database.
    """
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, pool_pre_ping=True)

    kwargs = {"connect_args": {"check_same_thread": False}}
    if database_url in ("sqlite://", "sqlite:///:memory:"):
        kwargs["poolclass"] = StaticPool

    sqlite_engine = create_engine(database_url, **kwargs)

    # Foreign keys are off by default in SQLite
    @event.listens_for(sqlite_engine, "connect")
    def enable_sqlite_fk(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return sqlite_engine


def make_session_factory(bind: Engine) -> sessionmaker:
    return sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=bind,
    )


def init_db(bind: Engine) -> None:
    """Create all tables that do not exist yet."""
    from .models.generated import Base

    Base.metadata.create_all(bind=bind)


engine = make_engine(settings.resolved_database_url)

# Default session factory
SessionLocal = make_session_factory(engine)
