from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Protocol

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from loginguard.db_models import LoginFailure
from loginguard.errors import LedgerUnavailable

_INSERT_RACE_RETRIES = 3


@dataclass(frozen=True)
class FailureRecord:
    ip: str
    first_seen: datetime
    last_seen: datetime
    hits: int

    def is_expired(self, now: datetime, expire_seconds: int) -> bool:
        # Strict: a record whose window ends exactly at ``now`` is still live.
        return self.last_seen + timedelta(seconds=expire_seconds) < now


class LedgerStore(Protocol):
    def get(self, ip: str) -> Optional[FailureRecord]: ...

    def upsert_failure(self, ip: str, now: datetime) -> FailureRecord: ...

    def delete(self, ip: str) -> None: ...

    def delete_expired(self, now: datetime, expire_seconds: int) -> int: ...

    def records(self) -> List[FailureRecord]: ...


class InMemoryLedgerStore:
    """Process-local ledger. Every mutation holds a single lock."""

    def __init__(self) -> None:
        self._store: Dict[str, FailureRecord] = {}
        self._lock = threading.Lock()

    def get(self, ip: str) -> Optional[FailureRecord]:
        with self._lock:
            return self._store.get(ip)

    def upsert_failure(self, ip: str, now: datetime) -> FailureRecord:
        with self._lock:
            current = self._store.get(ip)
            if current is None:
                record = FailureRecord(ip=ip, first_seen=now, last_seen=now, hits=1)
            else:
                record = replace(current, last_seen=now, hits=current.hits + 1)
            self._store[ip] = record
            return record

    def delete(self, ip: str) -> None:
        with self._lock:
            self._store.pop(ip, None)

    def delete_expired(self, now: datetime, expire_seconds: int) -> int:
        with self._lock:
            stale = [ip for ip, rec in self._store.items() if rec.is_expired(now, expire_seconds)]
            for ip in stale:
                del self._store[ip]
            return len(stale)

    def records(self) -> List[FailureRecord]:
        with self._lock:
            return [self._store[ip] for ip in sorted(self._store)]


def _to_record(row: LoginFailure) -> FailureRecord:
    return FailureRecord(ip=row.ip, first_seen=row.first_seen, last_seen=row.last_seen, hits=row.hits)


class SqlLedgerStore:
    """Ledger backed by the ``login_failures`` table.

    The increment is a single ``UPDATE ... SET hits = hits + 1`` so concurrent
    failures from the same address never lose a count. When no row exists an
    INSERT follows; if another writer inserted first, the primary key rejects
    ours and the UPDATE is simply run again.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, ip: str) -> Optional[FailureRecord]:
        try:
            with self._session_factory() as session:
                row = session.get(LoginFailure, ip)
                return _to_record(row) if row is not None else None
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"ledger read failed for {ip}") from exc

    def upsert_failure(self, ip: str, now: datetime) -> FailureRecord:
        try:
            for _ in range(_INSERT_RACE_RETRIES):
                with self._session_factory() as session:
                    try:
                        result = session.execute(
                            update(LoginFailure)
                            .where(LoginFailure.ip == ip)
                            .values(hits=LoginFailure.hits + 1, last_seen=now)
                            .execution_options(synchronize_session=False)
                        )
                        if result.rowcount == 0:
                            session.add(LoginFailure(ip=ip, first_seen=now, last_seen=now, hits=1))
                            session.flush()
                        row = session.execute(
                            select(LoginFailure).where(LoginFailure.ip == ip)
                        ).scalar_one()
                        record = _to_record(row)
                        session.commit()
                        return record
                    except IntegrityError:
                        session.rollback()
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"ledger write failed for {ip}") from exc
        raise LedgerUnavailable(f"ledger write for {ip} kept colliding with concurrent inserts")

    def delete(self, ip: str) -> None:
        try:
            with self._session_factory() as session:
                session.execute(delete(LoginFailure).where(LoginFailure.ip == ip))
                session.commit()
        except SQLAlchemyError as exc:
            raise LedgerUnavailable(f"ledger delete failed for {ip}") from exc

    def delete_expired(self, now: datetime, expire_seconds: int) -> int:
        cutoff = now - timedelta(seconds=expire_seconds)
        try:
            with self._session_factory() as session:
                result = session.execute(
                    delete(LoginFailure)
                    .where(LoginFailure.last_seen < cutoff)
                    .execution_options(synchronize_session=False)
                )
                session.commit()
                return int(result.rowcount or 0)
        except SQLAlchemyError as exc:
            raise LedgerUnavailable("expired ledger sweep failed") from exc

    def records(self) -> List[FailureRecord]:
        try:
            with self._session_factory() as session:
                rows = session.execute(select(LoginFailure).order_by(LoginFailure.ip)).scalars()
                return [_to_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise LedgerUnavailable("ledger listing failed") from exc


__all__ = [
    "FailureRecord",
    "LedgerStore",
    "InMemoryLedgerStore",
    "SqlLedgerStore",
]
