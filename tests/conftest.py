import importlib
import os
from contextlib import contextmanager
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from alembic import command
from alembic.config import Config

from tests.db_utils import throwaway_postgres_database

ROOT = Path(__file__).resolve().parents[1]


def _setup_app(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    os.environ["SECRET_KEY"] = "test-secret"

    import app.custody.core.config as config
    import app.custody.db.session as session
    import app.main as main

    importlib.reload(config)
    importlib.reload(session)
    importlib.reload(main)

    return main.create_app(), session


def _run_migrations(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    config = Config(str(ROOT / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


@contextmanager
def _test_database(tmp_path: Path):
    base_url = os.getenv("DATABASE_URL", "")
    if base_url.startswith("postgres"):
        with throwaway_postgres_database(base_url) as database_url:
            yield database_url
    else:
        yield f"sqlite+pysqlite:///{tmp_path / 'custody.db'}"


@pytest.fixture()
def client(tmp_path: Path):
    with _test_database(tmp_path) as database_url:
        _run_migrations(database_url)
        app, session = _setup_app(database_url)
        with TestClient(app) as test_client:
            yield test_client
        session.engine.dispose()


@pytest.fixture()
def db_session(client):
    from app.custody.db.session import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def make_session(client):
    """Factory for extra sessions, for tests that need two concurrent writers."""
    from app.custody.db.session import SessionLocal

    opened = []

    def factory():
        db = SessionLocal()
        opened.append(db)
        return db

    yield factory
    for db in opened:
        db.close()
