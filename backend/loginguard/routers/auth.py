# backend/loginguard/routers/auth.py
from typing import Dict, Optional

from fastapi import APIRouter, HTTPException, Request, Response, status
from slowapi import Limiter

from loginguard.core.settings import Settings
from loginguard.models import LoginFormResponse, LoginPayload, LoginResponse
from loginguard.security import (
    TRUSTED_SESSION_COOKIE,
    TRUSTED_SESSION_EXPIRE_DAYS,
    create_access_token,
    create_trusted_session,
    trusted_session_subject,
)
from loginguard.security.credentials import CredentialStore
from loginguard.security.lifecycle import HookArgs, LoginGuard, Reject
from loginguard.security.logger import guard_logger as logger

CAPTCHA_HEADER = {"X-Captcha-Required": "true"}


# ---------------- Utilities ----------------
def _client_ip(request: Request) -> str:
    client = request.client
    return client.host if client and client.host else "0.0.0.0"


def _guard(request: Request) -> Optional[LoginGuard]:
    return request.app.state.guard


def _settings(request: Request) -> Settings:
    return request.app.state.settings


def _credentials(request: Request) -> CredentialStore:
    return request.app.state.credentials


def _is_trusted(request: Request, username: str, settings: Settings) -> bool:
    subject = trusted_session_subject(request.cookies.get(TRUSTED_SESSION_COOKIE), settings)
    return subject is not None and subject.lower() == username.strip().lower()


def _hook_args(request: Request, guard: LoginGuard, payload: LoginPayload) -> HookArgs:
    return HookArgs(
        user=payload.username,
        client_ip=_client_ip(request),
        request_fields={guard.challenge_field: payload.captcha_token or ""},
        trusted_session=_is_trusted(request, payload.username, guard.settings),
    )


# ---------------- Handlers ----------------
def login_form(request: Request) -> LoginFormResponse:
    """Tell the login page whether to show a challenge widget."""
    guard = _guard(request)
    if guard is None:
        return LoginFormResponse(captcha_required=False)
    args = guard.on_login_form(HookArgs(user="", client_ip=_client_ip(request)))
    challenge = args.extra.get("challenge")
    return LoginFormResponse(captcha_required=challenge is not None, challenge=challenge)


def _handle_login(request: Request, response: Response, payload: LoginPayload) -> LoginResponse:
    settings = _settings(request)
    guard = _guard(request)
    ip = _client_ip(request)
    logger.info(f"Login attempt for {payload.username} from IP {ip} Password:[REDACTED]")

    args: Optional[HookArgs] = None
    if guard is not None:
        outcome = guard.on_authenticate(_hook_args(request, guard, payload))
        if isinstance(outcome, Reject):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"error": outcome.reason.value, "message": outcome.user_message},
                headers=CAPTCHA_HEADER,
            )
        args = outcome.args

    if not _credentials(request).check(payload.username, payload.password):
        detail: Dict[str, object] = {"error": "invalid_credentials"}
        headers: Optional[Dict[str, str]] = None
        if guard is not None and args is not None:
            args = guard.on_login_failure(args)
            failed = args.extra.get("failed_attempts")
            if failed is not None:
                detail["failed_attempts"] = failed
                if failed >= settings.failed_attempts_threshold:
                    headers = CAPTCHA_HEADER
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=detail, headers=headers)

    if guard is not None and args is not None:
        guard.on_login_success(args)
    logger.info(f"Successful login for {payload.username} from IP {ip}")

    if payload.remember_me:
        response.set_cookie(
            TRUSTED_SESSION_COOKIE,
            create_trusted_session(payload.username, settings),
            max_age=TRUSTED_SESSION_EXPIRE_DAYS * 24 * 3600,
            httponly=True,
            samesite="lax",
        )
    return LoginResponse(access_token=create_access_token(payload.username, settings))


# ---------------- Router ----------------
def build_router(limiter: Optional[Limiter], login_rate_limit: str) -> APIRouter:
    router = APIRouter(prefix="/auth", tags=["auth"])

    router.add_api_route("/login-form", login_form, methods=["GET"], response_model=LoginFormResponse)

    def login(request: Request, response: Response, payload: LoginPayload) -> LoginResponse:
        return _handle_login(request, response, payload)

    if limiter:
        login = limiter.limit(login_rate_limit)(login)
    router.add_api_route("/login", login, methods=["POST"], response_model=LoginResponse)
    return router
