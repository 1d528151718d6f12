# src/docbase/conftest.py
"""
Pytest configuration and shared fixtures.

Tests are co-located with implementation files using the *_test.py suffix.
This file provides fixtures available to all tests in the package.

Most tests run against the in-memory store. Backend contract tests also run
against mongomock, and against Postgres when DATABASE_URL is set (e.g. in
.env.test); the Postgres variants are skipped without it.
"""

import os

# Set environment BEFORE importing any app modules
os.environ["DOCBASE_ENV"] = "test"
os.environ.setdefault("DOCBASE_STORE", "memory")

import random
from datetime import datetime, timedelta, timezone

import mongomock
import psycopg
import pytest

from docbase import db
from docbase.config import config
from docbase.crud import CrudService
from docbase.ident import SequenceIdGenerator
from docbase.store.memory import MemoryDocumentStore
from docbase.store.mongo import MongoDocumentStore

# =============================================================================
# Helpers
# =============================================================================


class FakeClock:
    """Deterministic clock; advance() moves it forward."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="session")
def test_db():
    """Postgres test database URL; skips the test when none is configured."""
    if not config.database_url:
        pytest.skip("DATABASE_URL not set; skipping Postgres tests")
    return config.database_url


@pytest.fixture
def db_connection(test_db):
    """
    Provide a database connection with transaction rollback.

    Each test runs in a transaction that is rolled back at the end. Table
    creation is transactional in Postgres, so every test starts from empty
    collections.
    """
    conn = psycopg.connect(test_db)

    # Override the db module to use this connection
    db.set_connection_override(conn)

    yield conn

    # Rollback any changes made during the test
    conn.rollback()
    db.clear_connection_override()
    conn.close()


# =============================================================================
# Store Fixtures
# =============================================================================


@pytest.fixture
def memory_store():
    """Provide an empty in-memory store."""
    return MemoryDocumentStore()


@pytest.fixture
def postgres_store(db_connection):
    """Provide a Postgres store running inside the test transaction."""
    from docbase.store.postgres import PostgresDocumentStore

    return PostgresDocumentStore(table_prefix="test_")


@pytest.fixture
def mongo_store():
    """Provide a Mongo store over an in-process mongomock client."""
    client = mongomock.MongoClient(tz_aware=True)
    return MongoDocumentStore(client["docbase_test"], client=client)


@pytest.fixture(params=["memory", "mongo", "postgres"])
def store(request):
    """Every backend that can run locally; Postgres skips without a database."""
    return request.getfixturevalue(f"{request.param}_store")


# =============================================================================
# Service Fixtures
# =============================================================================


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def service(memory_store, clock):
    """Provide a versioned CrudService over the "items" collection."""
    return CrudService(
        memory_store,
        "items",
        id_generator=SequenceIdGenerator(),
        clock=clock,
        versioning=True,
        default_limit=20,
        max_limit=100,
    )


# =============================================================================
# Seed Data Fixtures
# =============================================================================


@pytest.fixture
def seq_records(service) -> list:
    """
    Insert 25 records with seq 0..24.

    Records are inserted in shuffled order so id order and seq order differ.
    """
    values = list(range(25))
    random.Random(7).shuffle(values)
    return [
        service.insert({"seq": value, "group": "even" if value % 2 == 0 else "odd"})
        for value in values
    ]


# =============================================================================
# Flask App Fixtures
# =============================================================================


@pytest.fixture
def app(memory_store):
    """Create Flask application for testing."""
    from docbase.api.app import create_app

    app = create_app(store=memory_store)
    app.config["TESTING"] = True

    return app


@pytest.fixture
def client(app):
    """Create Flask test client."""
    return app.test_client()
