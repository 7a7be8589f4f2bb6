from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from loginguard.errors import ConfigurationError

Provider = Literal["turnstile", "recaptcha"]

DEFAULT_ALLOWED_ORIGINS = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
]


class Settings(BaseModel):
    enable_login_guards: bool = Field(default=True)
    failed_attempts_threshold: int = Field(default=3, gt=0)
    expire_time_minutes: int = Field(default=30, gt=0)
    captcha_provider: Provider = Field(default="turnstile")
    captcha_secret_key: Optional[str] = Field(default=None)
    captcha_site_key: Optional[str] = Field(default=None)
    captcha_verify_timeout: float = Field(default=5.0, gt=0)
    captcha_proxy: Optional[str] = Field(default=None)
    trusted_session_bypass: bool = Field(default=False)
    fail_open_on_store_error: bool = Field(default=False)
    database_url: str = Field(default="sqlite:///./loginguard.db")
    login_rate_limit: str = Field(default="10/minute")
    jwt_secret: str = Field(default="your-secret-key")
    jwt_algorithm: str = Field(default="HS256")
    allowed_origins: List[str] = Field(default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS))
    guard_log_file: str = Field(default="loginguard.log")
    demo_users: Dict[str, str] = Field(default_factory=dict)

    @property
    def expire_seconds(self) -> int:
        return self.expire_time_minutes * 60

    def require_captcha_keys(self) -> None:
        """Refuse to activate without both provider keys."""
        missing = [
            name
            for name, value in (
                ("CAPTCHA_SECRET_KEY", self.captcha_secret_key),
                ("CAPTCHA_SITE_KEY", self.captcha_site_key),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"missing required setting(s): {', '.join(missing)}")


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name, default)
    if value == "":
        return None
    return value


def _flag(name: str, default: str) -> bool:
    return (os.getenv(name, default) or default).strip().lower() in {"1", "true", "yes", "on"}


def _origins() -> List[str]:
    raw = os.getenv("ALLOWED_ORIGINS", "")
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    return origins or list(DEFAULT_ALLOWED_ORIGINS)


def _demo_users() -> Dict[str, str]:
    users: Dict[str, str] = {}
    for pair in os.getenv("DEMO_USERS", "").split(","):
        name, sep, password = pair.strip().partition(":")
        if sep and name and password:
            users[name] = password
    return users


def _load_settings() -> Settings:
    env = os.getenv
    try:
        return Settings(
            enable_login_guards=_flag("ENABLE_LOGIN_GUARDS", "1"),
            failed_attempts_threshold=int(env("FAILED_ATTEMPTS_THRESHOLD", "3")),
            expire_time_minutes=int(env("EXPIRE_TIME_MINUTES", "30")),
            captcha_provider=env("CAPTCHA_PROVIDER", "turnstile") or "turnstile",
            captcha_secret_key=_env("CAPTCHA_SECRET_KEY"),
            captcha_site_key=_env("CAPTCHA_SITE_KEY"),
            captcha_verify_timeout=float(env("CAPTCHA_VERIFY_TIMEOUT", "5")),
            captcha_proxy=_env("CAPTCHA_PROXY"),
            trusted_session_bypass=_flag("TRUSTED_SESSION_BYPASS", "0"),
            fail_open_on_store_error=_flag("FAIL_OPEN_ON_STORE_ERROR", "0"),
            database_url=_env("DATABASE_URL") or "sqlite:///./loginguard.db",
            login_rate_limit=_env("LOGIN_RATE_LIMIT") or "10/minute",
            jwt_secret=_env("JWT_SECRET") or "your-secret-key",
            jwt_algorithm=_env("JWT_ALGORITHM") or "HS256",
            allowed_origins=_origins(),
            guard_log_file=_env("GUARD_LOG_FILE") or "loginguard.log",
            demo_users=_demo_users(),
        )
    except (ValueError, ValidationError) as exc:
        raise ConfigurationError(f"invalid login guard settings: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return _load_settings()


def reload_settings() -> Settings:
    get_settings.cache_clear()
    return get_settings()


__all__ = ["Provider", "Settings", "get_settings", "reload_settings"]
