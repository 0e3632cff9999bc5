"""Shared pytest fixtures for the quotation core test suite."""

from __future__ import annotations

from collections.abc import Iterator

import pytest
from fakes import FakeDeliveryGateway, FakeDocumentGenerator, FakePricingEngine

from quotation.domain.models import Caller
from quotation.service import QuoteCaseService
from quotation.state import Database, init_quotation_db


@pytest.fixture
def db() -> Iterator[Database]:
    """An in-memory quotation database with the schema applied."""
    database = Database.connect(":memory:")
    init_quotation_db(database)
    yield database
    database.close()


@pytest.fixture
def caller() -> Caller:
    """The authenticated agent used by most tests."""
    return Caller(user_id="agent-42")


@pytest.fixture
def other_caller() -> Caller:
    return Caller(user_id="agent-7")


@pytest.fixture
def engine() -> FakePricingEngine:
    return FakePricingEngine()


@pytest.fixture
def gateway() -> FakeDeliveryGateway:
    return FakeDeliveryGateway()


@pytest.fixture
def service(
    db: Database,
    engine: FakePricingEngine,
    gateway: FakeDeliveryGateway,
) -> QuoteCaseService:
    """A fully wired service with fake collaborators and no automatic retries."""
    return QuoteCaseService(
        db,
        engine,
        gateway,
        FakeDocumentGenerator(),
        completeness_threshold=0.8,
        max_retries=0,
    )
