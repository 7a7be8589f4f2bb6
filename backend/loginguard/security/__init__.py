from datetime import datetime, timedelta, timezone
from typing import Literal, Optional

from jose import JWTError, jwt

from loginguard.core.settings import Settings

TokenKind = Literal["access", "trusted_session"]

ACCESS_TOKEN_EXPIRE_MINUTES = 15
TRUSTED_SESSION_EXPIRE_DAYS = 30
TRUSTED_SESSION_COOKIE = "loginguard_trusted"


def _encode(subject: str, kind: TokenKind, lifetime: timedelta, settings: Settings) -> str:
    now = datetime.now(timezone.utc)
    claims = {"sub": subject, "kind": kind, "iat": now, "exp": now + lifetime}
    return jwt.encode(claims, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def create_access_token(subject: str, settings: Settings) -> str:
    return _encode(subject, "access", timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES), settings)


def create_trusted_session(subject: str, settings: Settings) -> str:
    return _encode(subject, "trusted_session", timedelta(days=TRUSTED_SESSION_EXPIRE_DAYS), settings)


def trusted_session_subject(token: Optional[str], settings: Settings) -> Optional[str]:
    """Return the user a trusted-session token was issued to, if it is valid."""
    if not token:
        return None
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None

    subject = payload.get("sub")
    if payload.get("kind") == "trusted_session" and isinstance(subject, str):
        return subject
    return None
