"""
conftest.py
------------
Pytest fixtures for FastAPI + SQLAlchemy tests.

Goals:
- Provide a fast, isolated test database (SQLite) that does NOT touch the real Postgres.
- Override the app's `get_db` dependency so API tests use the test Session.
- Create tables once per test session, and clean rows between tests.
- Offer small builders for clients, products and snapshots so scenarios stay readable.

Why SQLite (file) and not in-memory?
- FastAPI's TestClient may run requests in different threads.
- SQLite in-memory DB is process-local *and* connection-local; different connections
  would see different (empty) DBs.
- A temporary **file-backed** SQLite database is one physical DB visible to all
  connections in the test process, and needs no Docker/Postgres.

`DATABASE_URL` is pointed at the same temporary file *before* the app is
imported, so the app's own engine (used by the startup hook) never tries to
reach Postgres.
"""

import os
import sys
import tempfile
from datetime import date, datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

# Ensure project root is on sys.path so `import backend.*` works during pytest collection
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

_fd, TEST_DB_PATH = tempfile.mkstemp(suffix=".db")
os.close(_fd)
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"

from backend.main import app  # noqa: E402
from backend.db import Base, get_db  # noqa: E402
from backend.models import (  # noqa: E402
    Client,
    MetricSnapshot,
    Product,
    Subscription,
    SubscriptionItem,
)

# Fixed clock for deterministic tenure / window math
NOW = datetime(2025, 6, 15, 12, 0, 0)


@pytest.fixture(scope="session")
def test_engine():
    """
    SQLAlchemy Engine bound to the temporary SQLite database file.

    Tables are created once for the entire test session; the file is removed
    at the end.
    """
    engine = create_engine(
        f"sqlite:///{TEST_DB_PATH}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    Base.metadata.create_all(bind=engine)
    yield engine

    engine.dispose()
    try:
        os.remove(TEST_DB_PATH)
    except FileNotFoundError:
        pass


@pytest.fixture(scope="function")
def db_session(test_engine):
    """
    Fresh SQLAlchemy Session for each test function.

    After the test, closes the Session and deletes all rows from all tables
    in reverse dependency order so tests are isolated and order-independent.
    """
    TestingSessionLocal = sessionmaker(bind=test_engine, autocommit=False, autoflush=False)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        for tbl in reversed(Base.metadata.sorted_tables):
            session.execute(tbl.delete())
        session.commit()


@pytest.fixture(scope="function")
def client(db_session):
    """
    FastAPI TestClient that uses the test Session instead of the real database.
    Dependency overrides are cleared after the test.
    """
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_client(db_session):
    """
    Build and commit a Client whose tenure is `tenure_days` before NOW.

    `categories` attaches one active subscription item per product category
    (drives plan inference).
    """
    def _make(name="Acme Dental", tenure_days=400, categories=(), status="active", **fields):
        c = Client(
            name=name,
            status=status,
            created_at=NOW - timedelta(days=tenure_days),
            start_date=(NOW - timedelta(days=tenure_days)).date(),
            **fields,
        )
        db_session.add(c)
        db_session.flush()
        if categories:
            sub = Subscription(client_id=c.id, status="active")
            db_session.add(sub)
            db_session.flush()
            for cat in categories:
                product = Product(name=f"{cat} plan", category=cat, monthly_price=500.0)
                db_session.add(product)
                db_session.flush()
                db_session.add(SubscriptionItem(subscription_id=sub.id, product_id=product.id, quantity=1))
        db_session.commit()
        return c
    return _make


@pytest.fixture
def add_snapshot(db_session):
    """
    Add a snapshot for the current (`period="current"`) or previous window,
    with period_start aligned to the window start plus `offset_days`.
    """
    def _add(client_id, metric_type, value, period="current", offset_days=0):
        window_start = NOW - timedelta(days=30 if period == "current" else 60)
        start: date = (window_start + timedelta(days=offset_days)).date()
        db_session.add(MetricSnapshot(
            client_id=client_id,
            metric_type=metric_type,
            value=value,
            period_start=start,
            period_end=start + timedelta(days=29),
        ))
        db_session.commit()
    return _add
