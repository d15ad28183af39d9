from __future__ import annotations

import os
import tempfile
from datetime import date
from typing import Any, Generator

import pytest
from sqlalchemy.orm import sessionmaker

from finance_tracker.core.database import Base, get_db, make_engine
from finance_tracker.main import app
from finance_tracker.schemas import RecurrenceRuleIn, RecurringScheduleCreate
from finance_tracker.services.recurring_schedule_service import RecurringScheduleService

TEST_USER = "user-1"


@pytest.fixture(scope="session")
def test_db_url() -> Generator[str, Any, Any]:
    # Temporary file so the developer's database is never touched
    fd, path = tempfile.mkstemp(prefix="ft_test_", suffix=".sqlite3")
    os.close(fd)
    url = f"sqlite:///{path}"
    yield url
    for leftover in (path, f"{path}-wal", f"{path}-shm"):
        try:
            os.remove(leftover)
        except OSError:
            pass


@pytest.fixture(scope="session")
def engine(test_db_url: str):
    # Same pragmas as the application engine (FK enforcement, WAL)
    eng = make_engine(test_db_url)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False)


@pytest.fixture(scope="function")
def db_session(engine, session_factory) -> Generator[Any, Any, Any]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
        with engine.begin() as conn:
            conn.exec_driver_sql("PRAGMA foreign_keys=OFF")
            for tbl in reversed(Base.metadata.sorted_tables):
                conn.execute(tbl.delete())
            conn.exec_driver_sql("PRAGMA foreign_keys=ON")


@pytest.fixture(autouse=True)
def override_dependency(db_session):
    def _get_db_override():
        yield db_session

    app.dependency_overrides[get_db] = _get_db_override
    yield
    app.dependency_overrides.clear()


@pytest.fixture()
def client(db_session):
    from fastapi.testclient import TestClient

    with TestClient(app) as c:
        c.headers.update({"X-User-Id": TEST_USER})
        yield c


@pytest.fixture()
def make_schedule(db_session):
    """Create a schedule through the service; keyword overrides win."""

    def _make(user_id: str = TEST_USER, **overrides):
        rule = overrides.pop("recurrence_rule", {"frequency": "monthly"})
        data = {
            "title": "Rent",
            "amount": 1200,
            "type": "expense",
            "category": "Housing",
            "payment_method": "Bank transfer",
            "description": "Monthly rent",
            "recurrence_rule": RecurrenceRuleIn(**rule),
            "start_date": date(2025, 1, 1),
        }
        data.update(overrides)
        return RecurringScheduleService(db_session).create(RecurringScheduleCreate(**data), user_id=user_id)

    return _make
