import base64
import importlib
import os
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from alembic import command
from alembic.config import Config

ROOT_DIR = Path(__file__).resolve().parents[1]
WEBHOOK_SECRET = "whsec_" + base64.b64encode(b"ricedash-webhook-test-secret").decode()

os.environ.setdefault("TOKEN_SECRET_KEY", "test-token-secret")
os.environ.setdefault("WEBHOOK_SIGNING_SECRET", WEBHOOK_SECRET)
os.environ.setdefault("IDENTITY_API_URL", "https://identity.test/v1")
os.environ.setdefault("IDENTITY_SECRET_KEY", "sk_test_identity")
os.environ.setdefault("IDENTITY_RETRY_BACKOFF_MS", "0")
os.environ.setdefault("STOCK_FEED_URL", "https://erp.test/api/v1/models/stock")
os.environ.setdefault("STOCK_FEED_API_KEY", "feed-test-key")


def _setup_app(database_url: str):
    os.environ["DATABASE_URL"] = database_url

    import app.ricedash.core.config as config
    import app.ricedash.db.session as session
    import app.main as main

    importlib.reload(config)
    importlib.reload(session)
    importlib.reload(main)

    return main.create_app(), session


def _run_migrations(database_url: str):
    os.environ["DATABASE_URL"] = database_url
    config = Config(str(ROOT_DIR / "alembic.ini"))
    config.set_main_option("script_location", str(ROOT_DIR / "migrations"))
    config.set_main_option("sqlalchemy.url", database_url)
    command.upgrade(config, "head")


@pytest.fixture()
def identity_store():
    from tests.fakes import FakeIdentityStore

    return FakeIdentityStore()


@pytest.fixture()
def stock_feed():
    from tests.fakes import FakeStockFeed

    return FakeStockFeed()


@pytest.fixture()
def client(tmp_path: Path, identity_store, stock_feed):
    database_url = f"sqlite+pysqlite:///{tmp_path / 'test.db'}"
    _run_migrations(database_url)
    app, session = _setup_app(database_url)

    from app.ricedash.core.deps import get_identity_store, get_stock_feed
    from app.ricedash.core.metrics import metrics

    metrics.reset()
    app.dependency_overrides[get_identity_store] = lambda: identity_store.client()
    app.dependency_overrides[get_stock_feed] = lambda: stock_feed.client()

    with TestClient(app) as client:
        yield client

    session.engine.dispose()


@pytest.fixture()
def db_session(client):
    from app.ricedash.db.session import SessionLocal

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
