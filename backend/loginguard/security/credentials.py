from __future__ import annotations

import threading
from typing import Dict, Optional

from passlib.hash import argon2

# Stand-in for the host's own account backend; the guard never sees passwords.
_argon = argon2.using(type="ID", time_cost=3, memory_cost=65536, parallelism=2)


class CredentialStore:
    def __init__(self, users: Optional[Dict[str, str]] = None) -> None:
        self._hashes: Dict[str, str] = {}
        self._lock = threading.Lock()
        for username, password in (users or {}).items():
            self.add_user(username, password)

    @staticmethod
    def _normalize(username: str) -> str:
        return (username or "").strip().lower()

    def add_user(self, username: str, password: str) -> None:
        hashed = _argon.hash(password)
        with self._lock:
            self._hashes[self._normalize(username)] = hashed

    def check(self, username: str, password: str) -> bool:
        with self._lock:
            hashed = self._hashes.get(self._normalize(username))
        if hashed is None or not password:
            return False
        try:
            return _argon.verify(password, hashed)
        except (ValueError, TypeError):
            return False


__all__ = ["CredentialStore"]
