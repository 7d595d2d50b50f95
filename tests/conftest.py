"""Shared fixtures: in-memory SQLite session, fake payment provider."""
import threading
from datetime import datetime, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.base import Base
from app.models import entitlement, payment  # noqa: F401  (register tables)
from app.services.payments.provider import PaymentProvider, VerificationResult


@pytest.fixture
def db():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


class FakeProvider(PaymentProvider):
    """
    Scriptable provider.

    statuses: verify() answers, one per call (last one repeats); an Exception
    instance in the list is raised instead.
    on_invoke: called with (request, on_success, on_dismiss) inside invoke().
    """

    def __init__(self, statuses=None, on_invoke=None, invoke_error=None):
        super().__init__({})
        self.statuses = list(statuses or ["pending"])
        self.on_invoke = on_invoke
        self.invoke_error = invoke_error
        self.requests = []
        self.verify_calls = 0
        self.verified = threading.Event()
        self.callbacks = None

    def is_available(self) -> bool:
        return True

    def invoke(self, request, on_success, on_dismiss) -> None:
        self.requests.append(request)
        self.callbacks = (on_success, on_dismiss)
        if self.invoke_error is not None:
            raise self.invoke_error
        if self.on_invoke is not None:
            self.on_invoke(request, on_success, on_dismiss)

    def verify(self, reference: str) -> VerificationResult:
        index = min(self.verify_calls, len(self.statuses) - 1)
        self.verify_calls += 1
        answer = self.statuses[index]
        if isinstance(answer, Exception):
            raise answer
        result = VerificationResult(status=answer, amount_minor_units=200, currency="NGN")
        if result.is_success:
            self.verified.set()
        return result


@pytest.fixture
def fake_provider_cls():
    return FakeProvider


@pytest.fixture
def fixed_now():
    return datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

