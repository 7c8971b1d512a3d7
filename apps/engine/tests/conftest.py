"""Shared fixtures."""

import os
from unittest.mock import Mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from helpers import FakeClock
from promoguard_engine import models  # noqa: F401
from promoguard_engine.alerts.channels import ChannelRegistry, DashboardChannel
from promoguard_engine.alerts.dispatcher import AlertDispatcher
from promoguard_engine.alerts.window import InMemoryAlertWindowStore
from promoguard_engine.db.base import Base
from promoguard_engine.ledger.service import LedgerService
from promoguard_engine.ledger.store import InMemoryLedgerStore
from promoguard_engine.pipeline.analyzer import BotAnalyzer
from promoguard_engine.policy.executor import LoggingActionExecutor
from promoguard_engine.samples.store import InMemorySampleStore

# Use test database URL from environment or default to SQLite in-memory
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")


@pytest.fixture(scope="function")
def session_factory():
    """Session factory bound to a fresh schema."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_engine(
            TEST_DATABASE_URL,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(TEST_DATABASE_URL)

    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    try:
        yield TestingSessionLocal
    finally:
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def ledger(clock) -> LedgerService:
    return LedgerService(InMemoryLedgerStore(), clock=clock, sleep=Mock())


@pytest.fixture
def dashboard() -> DashboardChannel:
    return DashboardChannel()


@pytest.fixture
def window_store() -> InMemoryAlertWindowStore:
    return InMemoryAlertWindowStore()


@pytest.fixture
def dispatcher(window_store, dashboard, ledger, clock):
    dispatcher = AlertDispatcher(
        window_store,
        ChannelRegistry([dashboard]),
        ledger,
        clock=clock,
        sleep=Mock(),
    )
    yield dispatcher
    dispatcher.close()


@pytest.fixture
def analyzer(ledger, dispatcher, clock) -> BotAnalyzer:
    """Analyzer with inline I/O so effects are visible immediately."""
    return BotAnalyzer(
        ledger=ledger,
        dispatcher=dispatcher,
        sample_store=InMemorySampleStore(),
        action_executor=LoggingActionExecutor(),
        clock=clock,
    )
