import time

from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from app.custody.core.config import settings
from app.custody.core.db_timing import add_db_time, get_db_time_ms


def _time_queries(engine) -> None:
    @event.listens_for(engine, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):
        if get_db_time_ms() is not None:
            conn.info.setdefault("custody_query_started", []).append(time.perf_counter())

    @event.listens_for(engine, "after_cursor_execute")
    def _stop(conn, cursor, statement, parameters, context, executemany):
        started = conn.info.get("custody_query_started")
        if started:
            add_db_time((time.perf_counter() - started.pop()) * 1000)


def build_engine(database_url: str):
    """Engine with per-request query timing; SQLite waits on a locked file instead of failing at once."""
    connect_args = {"check_same_thread": False, "timeout": 5} if database_url.startswith("sqlite") else {}
    engine = create_engine(database_url, echo=False, future=True, connect_args=connect_args)
    _time_queries(engine)
    return engine


def _session_factory(engine) -> sessionmaker:
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)


def build_session_factory(database_url: str) -> sessionmaker:
    return _session_factory(build_engine(database_url))


engine = build_engine(settings.DATABASE_URL)
SessionLocal = _session_factory(engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
