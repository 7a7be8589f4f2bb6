"""
Client for the CAPTCHA providers' ``siteverify`` endpoints.

Cloudflare Turnstile and Google reCAPTCHA share one protocol: a form-encoded
POST of ``secret``, ``response`` and ``remoteip`` answered by JSON such as
``{"success": false, "error-codes": ["invalid-input-response"]}``. Transport
problems never raise out of :meth:`CaptchaGateway.verify`; they come back as
a failed :class:`VerificationResult` whose error code names the problem.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

import requests

from loginguard.core.settings import Provider, Settings
from loginguard.errors import ConfigurationError, GatewayTransportError

SITEVERIFY_URLS: Dict[str, str] = {
    "turnstile": "https://challenges.cloudflare.com/turnstile/v0/siteverify",
    "recaptcha": "https://www.google.com/recaptcha/api/siteverify",
}

RESPONSE_FIELDS: Dict[str, str] = {
    "turnstile": "cf-turnstile-response",
    "recaptcha": "g-recaptcha-response",
}

MISSING_INPUT = "missing-input-response"
TIMEOUT = "timeout"
CONNECTION_ERROR = "connection-error"
HTTP_ERROR = "http-error"
INVALID_RESPONSE = "invalid-response"


@dataclass(frozen=True)
class VerificationResult:
    success: bool
    error_codes: List[str] = field(default_factory=list)

    @classmethod
    def from_json(cls, data: object) -> "VerificationResult":
        if not isinstance(data, dict) or not data:
            return cls(False, [INVALID_RESPONSE])
        success = data.get("success")
        if success is True:
            return cls(True)
        if success is not False:
            return cls(False, [INVALID_RESPONSE])
        codes = data.get("error-codes")
        if isinstance(codes, list):
            return cls(False, [str(code) for code in codes])
        return cls(False)


class VerificationGateway(Protocol):
    def verify(self, token: Optional[str], client_ip: str) -> VerificationResult: ...


class CaptchaGateway:
    def __init__(
        self,
        secret: Optional[str],
        *,
        provider: Provider = "turnstile",
        timeout: float = 5.0,
        proxy: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not secret:
            raise ConfigurationError(f"a {provider} secret key is required to verify challenges")
        if provider not in SITEVERIFY_URLS:
            raise ConfigurationError(f"unknown captcha provider: {provider}")
        self.provider = provider
        self.url = SITEVERIFY_URLS[provider]
        self._secret = secret
        self._timeout = timeout
        self._proxies = {"https": proxy} if proxy else None
        self._session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings, session: Optional[requests.Session] = None) -> "CaptchaGateway":
        return cls(
            settings.captcha_secret_key,
            provider=settings.captcha_provider,
            timeout=settings.captcha_verify_timeout,
            proxy=settings.captcha_proxy,
            session=session,
        )

    def _submit(self, params: Dict[str, str]) -> object:
        try:
            response = self._session.post(
                self.url,
                data=params,
                timeout=self._timeout,
                verify=True,
                proxies=self._proxies,
            )
        except requests.Timeout as exc:
            raise GatewayTransportError(TIMEOUT, str(exc)) from exc
        except requests.RequestException as exc:
            raise GatewayTransportError(CONNECTION_ERROR, str(exc)) from exc

        if response.status_code >= 400:
            raise GatewayTransportError(HTTP_ERROR, f"siteverify answered {response.status_code}")
        try:
            return response.json()
        except ValueError as exc:
            raise GatewayTransportError(INVALID_RESPONSE, "siteverify body is not JSON") from exc

    def verify(self, token: Optional[str], client_ip: str) -> VerificationResult:
        if not token:
            return VerificationResult(False, [MISSING_INPUT])

        params = {"secret": self._secret, "response": token, "remoteip": client_ip}
        try:
            data = self._submit(params)
        except GatewayTransportError as exc:
            return VerificationResult(False, [exc.code])
        return VerificationResult.from_json(data)


__all__ = [
    "SITEVERIFY_URLS",
    "RESPONSE_FIELDS",
    "VerificationResult",
    "VerificationGateway",
    "CaptchaGateway",
]
