"""Root conftest for all tests.

This file makes shared fixtures available across all test modules.
"""

from contextlib import contextmanager

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from salesdesk.actions.errors import DataStoreError, GroupwareError
from salesdesk.actions.store import SqlAlchemyDataStore


class RecordingMailer:
    """EmailSender that records messages instead of sending them."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[dict] = []

    def send(self, to: str, subject: str, body: str) -> dict:
        if self.fail:
            raise GroupwareError("groupware mail API timed out")
        self.sent.append({"to": to, "subject": subject, "body": body})
        return {"to": to, "subject": subject, "message_id": f"msg-{len(self.sent)}"}


class CountingStore:
    """DataStore wrapper counting writes, optionally failing chosen operations."""

    def __init__(self, inner, fail_on: set[tuple[str, str]] | None = None) -> None:
        self.inner = inner
        self.fail_on = fail_on or set()
        self.writes = 0

    def _check(self, operation: str, table: str) -> None:
        if (operation, table) in self.fail_on:
            raise DataStoreError(f"{operation} on {table} failed: connection reset")

    def insert(self, table, values, *, user_id):
        self._check("insert", table)
        self.writes += 1
        return self.inner.insert(table, values, user_id=user_id)

    def update(self, table, where, values, *, user_id):
        self._check("update", table)
        self.writes += 1
        return self.inner.update(table, where, values, user_id=user_id)

    def delete(self, table, where, *, user_id):
        self._check("delete", table)
        self.writes += 1
        return self.inner.delete(table, where, user_id=user_id)

    def select(self, table, where, *, user_id):
        return self.inner.select(table, where, user_id=user_id)


@pytest.fixture
def test_user_id() -> str:
    """Acting user for most tests."""
    return "user-1"


@pytest.fixture
def other_user_id() -> str:
    """A second tenant, used to check isolation."""
    return "user-2"


@pytest.fixture(scope="function")
def db_session(monkeypatch):
    """
    Provides an in-memory SQLite DB session for tests.

    Plan execution commits after every step, so tests cannot rely on an outer
    transaction rollback for cleanup; instead each test gets a fresh database.
    StaticPool keeps the single in-memory connection alive across commits.

    get_session() is patched where the API imports it, so routes share the
    test session.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from salesdesk.db.models import Base

    Base.metadata.create_all(engine)

    test_session_local = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = test_session_local()

    @contextmanager
    def mock_get_session():
        yield session

    import salesdesk.api.actions as actions_api
    import salesdesk.db.session as session_module

    monkeypatch.setattr(session_module, "get_session", mock_get_session)
    monkeypatch.setattr(actions_api, "get_session", mock_get_session)

    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def second_session(db_session):
    """Another session on the test database, standing in for a concurrent request."""
    session = sessionmaker(bind=db_session.get_bind(), autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def store(db_session) -> SqlAlchemyDataStore:
    return SqlAlchemyDataStore(db_session)


@pytest.fixture
def mailer() -> RecordingMailer:
    return RecordingMailer()


@pytest.fixture
def make_client(store, test_user_id):
    """Factory inserting a client for a user and returning its row."""

    def _make(company_name: str, user_id: str | None = None, **values) -> dict:
        rows = store.insert("clients", {"company_name": company_name, **values}, user_id=user_id or test_user_id)
        return rows[0]

    return _make


@pytest.fixture
def counting_store(store):
    """Factory wrapping the test store in a CountingStore."""

    def _wrap(fail_on: set[tuple[str, str]] | None = None) -> CountingStore:
        return CountingStore(store, fail_on=fail_on)

    return _wrap


@pytest.fixture
def failing_mailer() -> RecordingMailer:
    return RecordingMailer(fail=True)
