"""
Per-address challenge policy on top of the attempt ledger.

An address must solve a challenge once it has collected
``failed_attempts_threshold`` failures, until ``expire_time_minutes`` pass
without a new one. Stale records are removed two ways: lazily, when the
address is looked up again, and in bulk, by the sweep that follows every
successful login.
"""

from __future__ import annotations

from concurrent.futures import Executor
from datetime import datetime, timezone
from typing import Callable, Optional

from loginguard.errors import LedgerUnavailable
from loginguard.security.ledger import FailureRecord, LedgerStore
from loginguard.security.logger import guard_logger as logger

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Naive UTC, the form both ledger stores persist."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ChallengePolicy:
    def __init__(
        self,
        store: LedgerStore,
        threshold: int,
        expire_seconds: int,
        *,
        clock: Clock = utcnow,
        sweep_executor: Optional[Executor] = None,
    ) -> None:
        if threshold <= 0 or expire_seconds <= 0:
            raise ValueError("threshold and expire_seconds must be positive")
        self.store = store
        self.threshold = threshold
        self.expire_seconds = expire_seconds
        self._clock = clock
        self._sweep_executor = sweep_executor

    def now(self) -> datetime:
        return self._clock()

    def _live_record(self, ip: str) -> Optional[FailureRecord]:
        record = self.store.get(ip)
        if record is None:
            return None
        now = self.now()
        if record.is_expired(now, self.expire_seconds):
            # Same cutoff as the bulk sweep, so this also drops other stale rows.
            try:
                self.store.delete_expired(now, self.expire_seconds)
            except LedgerUnavailable:
                logger.warning("Could not purge expired record. [%s]", ip, exc_info=True)
            return None
        return record

    def _requires_challenge(self, ip: str) -> bool:
        record = self._live_record(ip)
        return record is not None and record.hits >= self.threshold

    def requires_challenge_for_render(self, ip: str) -> bool:
        """Hint for the login form. Fails open when the ledger is down."""
        try:
            return self._requires_challenge(ip)
        except LedgerUnavailable:
            logger.warning("Ledger unavailable while rendering login form. [%s]", ip, exc_info=True)
            return False

    def requires_challenge_for_auth(self, ip: str) -> bool:
        """Authoritative check; raises :class:`LedgerUnavailable` to the caller."""
        return self._requires_challenge(ip)

    def record_failure(self, ip: str, now: Optional[datetime] = None) -> FailureRecord:
        return self.store.upsert_failure(ip, now or self.now())

    def clear_trust(self, ip: str) -> None:
        self.store.delete(ip)
        if self._sweep_executor is None:
            self.sweep_expired()
            return
        try:
            self._sweep_executor.submit(self.sweep_expired)
        except RuntimeError:
            # executor already shut down
            logger.warning("Expired ledger sweep skipped, sweeper is not running")

    def sweep_expired(self) -> int:
        """Drop every expired record. Housekeeping only, so errors are logged."""
        try:
            removed = self.store.delete_expired(self.now(), self.expire_seconds)
        except LedgerUnavailable:
            logger.warning("Expired ledger sweep failed", exc_info=True)
            return 0
        if removed:
            logger.info("Swept %d expired ledger record(s)", removed)
        return removed


__all__ = ["ChallengePolicy", "Clock", "utcnow"]
