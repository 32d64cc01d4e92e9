"""Shared test fixtures."""
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from eventfeed.db.engine import init_db
from eventfeed.session.connectivity import ConnectivityMonitor


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine with tables and indexes, fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session


@pytest.fixture(name="connectivity")
def connectivity_fixture() -> ConnectivityMonitor:
    return ConnectivityMonitor(is_connected=True)
