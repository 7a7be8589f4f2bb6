# backend/loginguard/main.py
"""
Demonstration host for the login guard.

Run with ``uvicorn --factory loginguard.main:create_app``. The factory refuses
to build an app (raising ``ConfigurationError``) when guards are enabled but
the CAPTCHA keys are missing.
"""

from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.responses import Response

# rate limiting
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from loginguard.core.settings import Settings, get_settings
from loginguard.db import init_db, make_engine, make_session_factory
from loginguard.routers.auth import build_router
from loginguard.security.credentials import CredentialStore
from loginguard.security.gateway import CaptchaGateway, VerificationGateway
from loginguard.security.ledger import LedgerStore, SqlLedgerStore
from loginguard.security.lifecycle import LoginGuard
from loginguard.security.logger import configure_file_logging, guard_logger as logger
from loginguard.security.policy import ChallengePolicy

# ---- Default security headers ----
SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
    "Content-Security-Policy": (
        "default-src 'self'; "
        "frame-ancestors 'none'; "
        "object-src 'none'; "
        "base-uri 'self'; "
        "form-action 'self'; "
        "script-src 'self' https://challenges.cloudflare.com https://www.google.com; "
        "frame-src https://challenges.cloudflare.com https://www.google.com"
    ),
}
# NOTE: HSTS only takes effect when served over HTTPS
STRICT_TRANSPORT_SECURITY = "max-age=31536000; includeSubDomains"


def _rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    response = JSONResponse(
        status_code=429,
        content={"error": "too_many_requests", "detail": "Try again later."},
    )
    for header, value in (getattr(exc, "headers", {}) or {}).items():
        response.headers.setdefault(header, value)
    return response


async def _add_security_headers(request: Request, call_next):
    response: Response = await call_next(request)
    for header, value in SECURITY_HEADERS.items():
        response.headers.setdefault(header, value)
    response.headers.setdefault("Strict-Transport-Security", STRICT_TRANSPORT_SECURITY)
    return response


async def _require_json_posts(request: Request, call_next):
    if request.method == "POST":
        content_type = request.headers.get("content-type", "")
        if not content_type.lower().startswith("application/json"):
            return JSONResponse(
                status_code=415,
                content={"detail": "Unsupported Media Type. Must be application/json"},
            )
    return await call_next(request)


def _build_guard(
    settings: Settings,
    ledger: Optional[LedgerStore],
    gateway: Optional[VerificationGateway],
    sweeper: ThreadPoolExecutor,
) -> LoginGuard:
    settings.require_captcha_keys()
    if ledger is None:
        engine = make_engine(settings.database_url)
        init_db(engine)
        ledger = SqlLedgerStore(make_session_factory(engine))
    policy = ChallengePolicy(
        ledger,
        settings.failed_attempts_threshold,
        settings.expire_seconds,
        sweep_executor=sweeper,
    )
    return LoginGuard(settings, policy, gateway or CaptchaGateway.from_settings(settings))


def create_app(
    settings: Optional[Settings] = None,
    *,
    ledger: Optional[LedgerStore] = None,
    gateway: Optional[VerificationGateway] = None,
    credentials: Optional[CredentialStore] = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_file_logging(settings.guard_log_file)

    sweeper: Optional[ThreadPoolExecutor] = None
    guard: Optional[LoginGuard] = None
    if settings.enable_login_guards:
        sweeper = ThreadPoolExecutor(max_workers=1, thread_name_prefix="ledger-sweep")
        try:
            guard = _build_guard(settings, ledger, gateway, sweeper)
        except Exception:
            sweeper.shutdown(wait=False)
            raise
    else:
        logger.warning("Login guards disabled; logins are never challenged")

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        yield
        if sweeper is not None:
            sweeper.shutdown(wait=True)

    app = FastAPI(title="Login Guard", lifespan=lifespan)
    app.state.settings = settings
    app.state.guard = guard
    app.state.credentials = credentials if credentials is not None else CredentialStore(settings.demo_users)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["authorization", "content-type", "x-requested-with"],
        max_age=3600,
    )

    # If later behind a proxy, parse X-Forwarded-For here.
    limiter = Limiter(key_func=get_remote_address)
    app.state.limiter = limiter
    app.add_middleware(SlowAPIMiddleware)
    app.add_exception_handler(RateLimitExceeded, _rate_limit_handler)

    app.middleware("http")(_add_security_headers)
    app.middleware("http")(_require_json_posts)

    @app.get("/health")
    def health():
        return {"ok": True, "guards": guard is not None}

    app.include_router(build_router(limiter, settings.login_rate_limit))
    return app
