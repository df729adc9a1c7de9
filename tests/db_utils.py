from __future__ import annotations

import uuid
from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, text
from sqlalchemy.engine import URL, make_url


def _maintenance_engine(url: URL):
    return create_engine(url.set(database="postgres"), isolation_level="AUTOCOMMIT", future=True)


@contextmanager
def throwaway_postgres_database(base_url: str) -> Iterator[str]:
    """Create an empty PostgreSQL database next to ``base_url`` and drop it afterwards."""
    url = make_url(base_url)
    name = f"custody_test_{uuid.uuid4().hex[:16]}"

    engine = _maintenance_engine(url)
    with engine.connect() as conn:
        conn.execute(text(f'CREATE DATABASE "{name}"'))
    engine.dispose()
    try:
        yield url.set(database=name).render_as_string(hide_password=False)
    finally:
        engine = _maintenance_engine(url)
        with engine.connect() as conn:
            conn.execute(
                text("SELECT pg_terminate_backend(pid) FROM pg_stat_activity WHERE datname = :name"),
                {"name": name},
            )
            conn.execute(text(f'DROP DATABASE IF EXISTS "{name}"'))
        engine.dispose()
