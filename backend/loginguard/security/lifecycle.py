"""
Login lifecycle hooks.

The host calls four handlers around its own credential check:

* ``on_login_form``    - before rendering the form; may attach a challenge
* ``on_authenticate``  - before checking credentials; returns
  :class:`Proceed` or :class:`Reject`
* ``on_login_success`` - after a good password; forgets the address
* ``on_login_failure`` - after a bad password; counts the failure

Nothing here renders pages or ends requests. A :class:`Reject` tells the
host what to show; the host decides how.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Union

from loginguard.core.settings import Settings
from loginguard.errors import LedgerUnavailable
from loginguard.security.gateway import RESPONSE_FIELDS, VerificationGateway
from loginguard.security.logger import guard_logger as logger
from loginguard.security.policy import ChallengePolicy


class ChallengeState(str, enum.Enum):
    UNCHALLENGED = "unchallenged"
    CHALLENGE_REQUIRED = "challenge_required"
    CHALLENGE_PASSED = "challenge_passed"
    CHALLENGE_FAILED_OR_MISSING = "challenge_failed_or_missing"


class RejectReason(str, enum.Enum):
    MISSING_CHALLENGE_INPUT = "missing_challenge_input"
    CHALLENGE_FAILED = "challenge_failed"


LEDGER_UNAVAILABLE = "ledger-unavailable"

USER_MESSAGES = {
    RejectReason.MISSING_CHALLENGE_INPUT: "Please complete the challenge before signing in.",
    RejectReason.CHALLENGE_FAILED: "The challenge could not be verified. Please try again.",
}


@dataclass(frozen=True)
class HookArgs:
    user: str
    client_ip: str
    request_fields: Dict[str, str] = field(default_factory=dict)
    trusted_session: bool = False
    extra: Dict[str, Any] = field(default_factory=dict)

    def with_extra(self, **values: Any) -> "HookArgs":
        return replace(self, extra={**self.extra, **values})


@dataclass(frozen=True)
class Proceed:
    args: HookArgs
    state: ChallengeState


@dataclass(frozen=True)
class Reject:
    reason: RejectReason
    user_message: str
    error_codes: List[str] = field(default_factory=list)
    state: ChallengeState = ChallengeState.CHALLENGE_FAILED_OR_MISSING


Outcome = Union[Proceed, Reject]


class LoginGuard:
    def __init__(self, settings: Settings, policy: ChallengePolicy, gateway: VerificationGateway) -> None:
        settings.require_captcha_keys()
        self.settings = settings
        self.policy = policy
        self.gateway = gateway
        self.challenge_field = RESPONSE_FIELDS[settings.captcha_provider]

    def challenge_descriptor(self) -> Dict[str, str]:
        return {
            "provider": self.settings.captcha_provider,
            "site_key": self.settings.captcha_site_key or "",
            "field": self.challenge_field,
        }

    def on_login_form(self, args: HookArgs) -> HookArgs:
        if not self.policy.requires_challenge_for_render(args.client_ip):
            return args
        return args.with_extra(challenge=self.challenge_descriptor())

    def _reject(self, reason: RejectReason, error_codes: Optional[List[str]] = None) -> Reject:
        return Reject(reason=reason, user_message=USER_MESSAGES[reason], error_codes=list(error_codes or []))

    def on_authenticate(self, args: HookArgs) -> Outcome:
        try:
            required = self.policy.requires_challenge_for_auth(args.client_ip)
        except LedgerUnavailable:
            if self.settings.fail_open_on_store_error:
                logger.warning("Ledger unavailable, admitting %s unchallenged. [%s]", args.user, args.client_ip)
                return Proceed(args, ChallengeState.UNCHALLENGED)
            # fail closed: no token can settle an unknown state
            logger.warning("Ledger unavailable, rejecting login of %s. [%s]", args.user, args.client_ip)
            return self._reject(RejectReason.CHALLENGE_FAILED, [LEDGER_UNAVAILABLE])
        if not required:
            return Proceed(args, ChallengeState.UNCHALLENGED)

        if self.settings.trusted_session_bypass and args.trusted_session:
            logger.info("Challenge skipped for trusted session of %s. [%s]", args.user, args.client_ip)
            return Proceed(args, ChallengeState.CHALLENGE_PASSED)

        token = (args.request_fields.get(self.challenge_field) or "").strip()
        if not token:
            logger.info("Challenge error: empty input for %s. [%s]", args.user, args.client_ip)
            return self._reject(RejectReason.MISSING_CHALLENGE_INPUT)

        result = self.gateway.verify(token, args.client_ip)
        if result.success:
            logger.info("Challenge verification succeeded for %s. [%s]", args.user, args.client_ip)
            return Proceed(args, ChallengeState.CHALLENGE_PASSED)

        logger.info(
            "Challenge error: verification failed for %s. [%s] codes=%s",
            args.user,
            args.client_ip,
            ",".join(result.error_codes) or "-",
        )
        return self._reject(RejectReason.CHALLENGE_FAILED, result.error_codes)

    def on_login_success(self, args: HookArgs) -> HookArgs:
        try:
            self.policy.clear_trust(args.client_ip)
        except LedgerUnavailable:
            logger.warning("Could not clear ledger after login of %s. [%s]", args.user, args.client_ip, exc_info=True)
        return args

    def on_login_failure(self, args: HookArgs) -> HookArgs:
        try:
            record = self.policy.record_failure(args.client_ip)
        except LedgerUnavailable:
            logger.warning("Could not record failed login of %s. [%s]", args.user, args.client_ip, exc_info=True)
            return args
        logger.info("Failed login for %s, %d failure(s) on record. [%s]", args.user, record.hits, args.client_ip)
        return args.with_extra(failed_attempts=record.hits)


__all__ = [
    "ChallengeState",
    "RejectReason",
    "HookArgs",
    "Proceed",
    "Reject",
    "Outcome",
    "LEDGER_UNAVAILABLE",
    "LoginGuard",
]
