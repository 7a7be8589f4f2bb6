from __future__ import annotations


class LoginGuardError(Exception):
    """Base class for every error raised by the login guard."""


class ConfigurationError(LoginGuardError):
    """Required settings are missing or invalid; the guard must not activate."""


class LedgerUnavailable(LoginGuardError):
    """The attempt ledger could not be read or written."""


class GatewayTransportError(LoginGuardError):
    """Talking to the verification endpoint failed before a verdict was read."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or code)
        self.code = code


__all__ = [
    "LoginGuardError",
    "ConfigurationError",
    "LedgerUnavailable",
    "GatewayTransportError",
]
