from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional, Tuple

import pytest

from loginguard.core.settings import Settings
from loginguard.errors import LedgerUnavailable
from loginguard.security.gateway import VerificationResult
from loginguard.security.ledger import InMemoryLedgerStore
from loginguard.security.policy import ChallengePolicy

START = datetime(2024, 5, 1, 12, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **delta) -> datetime:
        self.now = self.now + timedelta(**delta)
        return self.now


class FakeGateway:
    def __init__(self, result: Optional[VerificationResult] = None) -> None:
        self.result = result or VerificationResult(True)
        self.calls: List[Tuple[Optional[str], str]] = []

    def verify(self, token: Optional[str], client_ip: str) -> VerificationResult:
        self.calls.append((token, client_ip))
        return self.result


class BrokenStore:
    def _fail(self, *args, **kwargs):
        raise LedgerUnavailable("database is down")

    get = upsert_failure = delete = delete_expired = records = _fail


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryLedgerStore:
    return InMemoryLedgerStore()


@pytest.fixture
def policy(store, clock) -> ChallengePolicy:
    return ChallengePolicy(store, threshold=3, expire_seconds=30 * 60, clock=clock)


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        failed_attempts_threshold=3,
        expire_time_minutes=30,
        captcha_secret_key="test-secret",
        captcha_site_key="test-site-key",
        login_rate_limit="1000/minute",
        database_url=f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
        guard_log_file=str(tmp_path / "loginguard.log"),
    )
