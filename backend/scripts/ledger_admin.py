from __future__ import annotations

import argparse

from loginguard.core.settings import get_settings
from loginguard.db import init_db, make_engine, make_session_factory
from loginguard.errors import LedgerUnavailable
from loginguard.security.ledger import SqlLedgerStore
from loginguard.security.policy import utcnow


def _store(database_url: str) -> SqlLedgerStore:
    engine = make_engine(database_url)
    init_db(engine)
    return SqlLedgerStore(make_session_factory(engine))


def list_records(store: SqlLedgerStore, expire_seconds: int) -> int:
    now = utcnow()
    records = store.records()
    if not records:
        print("[INFO] Ledger is empty")
        return 0
    for rec in records:
        marker = " (expired)" if rec.is_expired(now, expire_seconds) else ""
        print(
            f"{rec.ip}\thits={rec.hits}\tfirst={rec.first_seen:%Y-%m-%d %H:%M:%S}"
            f"\tlast={rec.last_seen:%Y-%m-%d %H:%M:%S}{marker}"
        )
    print(f"[INFO] {len(records)} record(s)")
    return 0


def purge_expired(store: SqlLedgerStore, expire_seconds: int) -> int:
    removed = store.delete_expired(utcnow(), expire_seconds)
    print(f"[OK] Removed {removed} expired record(s)")
    return 0


def forget(store: SqlLedgerStore, ip: str) -> int:
    store.delete(ip)
    print(f"[OK] Forgot {ip}")
    return 0


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect and maintain the failed-login ledger.")
    parser.add_argument("--database-url", help="Overrides DATABASE_URL.")
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("list", help="Print every tracked address.")
    sub.add_parser("purge-expired", help="Delete records older than EXPIRE_TIME_MINUTES.")
    forget_parser = sub.add_parser("forget", help="Delete the record for one address.")
    forget_parser.add_argument("ip")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = _parse_args(argv)
    settings = get_settings()
    store = _store(args.database_url or settings.database_url)
    try:
        if args.command == "list":
            return list_records(store, settings.expire_seconds)
        if args.command == "purge-expired":
            return purge_expired(store, settings.expire_seconds)
        return forget(store, args.ip)
    except LedgerUnavailable as exc:
        print(f"[ERR] {exc}")
        return 2


if __name__ == "__main__":
    raise SystemExit(main())
