import os

# Settings are read at import time; keep tests off Postgres and the sweep task
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("OTP_CLEANUP_INTERVAL_SECONDS", "0")

from datetime import datetime, timedelta, timezone
from typing import Iterable, List, Tuple

import pytest
from fastapi.testclient import TestClient

from app.core.deps import get_orchestrator
from app.main import app
from app.services.otp_store import Channel, InMemoryOtpStore
from app.services.verification import VerificationOrchestrator


class FakeClock:
    def __init__(self, start: datetime = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeGateway:
    def __init__(self, succeed: bool = True):
        self.succeed = succeed
        self.sent: List[Tuple[str, str]] = []

    def send(self, identifier: str, code: str) -> bool:
        self.sent.append((identifier, code))
        return self.succeed


class CodeSequence:
    """Code factory handing out fixed codes in order."""

    def __init__(self, codes: Iterable[str]):
        self._codes = iter(codes)

    def __call__(self) -> str:
        return next(self._codes)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return InMemoryOtpStore(clock=clock)


@pytest.fixture
def email_gateway():
    return FakeGateway()


@pytest.fixture
def sms_gateway():
    return FakeGateway()


@pytest.fixture
def codes():
    return CodeSequence(["482913", "135790", "246801", "975310", "102938", "564738"])


@pytest.fixture
def orchestrator(store, email_gateway, sms_gateway, codes, clock):
    return VerificationOrchestrator(
        store=store,
        gateways={Channel.email: email_gateway, Channel.sms: sms_gateway},
        ttl=timedelta(minutes=10),
        session_ttl=timedelta(minutes=60),
        code_factory=codes,
        clock=clock,
    )


@pytest.fixture
def client(orchestrator):
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
