import time

from sqlalchemy import create_engine, event, text
from sqlalchemy.orm import sessionmaker

from app.ricedash.core.config import settings
from app.ricedash.core.db_timing import add_db_time, get_db_time_ms

connect_args = {}
if settings.DATABASE_URL.startswith("sqlite"):
    connect_args = {"check_same_thread": False}

engine = create_engine(settings.DATABASE_URL, echo=False, future=True, connect_args=connect_args)


@event.listens_for(engine, "before_cursor_execute")
def _before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    if get_db_time_ms() is None:
        return
    conn.info["query_start_time"] = time.perf_counter()


@event.listens_for(engine, "after_cursor_execute")
def _after_cursor_execute(conn, cursor, statement, parameters, context, executemany):
    if get_db_time_ms() is None:
        return
    start = conn.info.pop("query_start_time", None)
    if start is None:
        return
    add_db_time((time.perf_counter() - start) * 1000)


SessionLocal = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def session_settings(info) -> dict[str, str]:
    settings_map = {}
    if info.get("caller_id") is not None:
        settings_map["app.caller_id"] = info["caller_id"]
    if info.get("trusted"):
        settings_map["app.trusted"] = "on"
    return settings_map


def _apply_settings(connection, info) -> None:
    if connection.dialect.name != "postgresql":
        return
    for name, value in session_settings(info).items():
        connection.execute(text("SELECT set_config(:name, :value, true)"), {"name": name, "value": value})


@event.listens_for(SessionLocal, "after_begin")
def _apply_session_settings(session, transaction, connection):
    _apply_settings(connection, session.info)


def bind_caller(db, external_id: str | None) -> None:
    """Expose the verified caller to PostgreSQL row-level security policies.

    The setting is transaction-local and re-applied at the start of every
    transaction of this session, so pooled connections never carry a previous
    caller's identity.
    """
    db.info["caller_id"] = external_id or ""
    if db.in_transaction():
        _apply_settings(db.connection(), db.info)


def bind_trusted(db) -> None:
    """Mark the session as a trusted server-side writer.

    Used by the webhook synchronizer, the stock refresh and reconciliation
    jobs and the seed, which act for no end user. Row-level security policies
    pass every row while ``app.trusted`` is on.
    """
    db.info["trusted"] = True
    if db.in_transaction():
        _apply_settings(db.connection(), db.info)
