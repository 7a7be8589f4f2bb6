from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import BrokenStore, FakeGateway
from loginguard.errors import ConfigurationError
from loginguard.security.gateway import VerificationResult
from loginguard.security.lifecycle import (
    LEDGER_UNAVAILABLE,
    ChallengeState,
    HookArgs,
    LoginGuard,
    Proceed,
    Reject,
    RejectReason,
)
from loginguard.security.policy import ChallengePolicy

IP = "10.0.0.1"
FIELD = "cf-turnstile-response"


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def guard(settings, policy, gateway):
    return LoginGuard(settings, policy, gateway)


def _args(token=None, **kwargs):
    fields = {FIELD: token} if token is not None else {}
    return HookArgs(user="alice", client_ip=IP, request_fields=fields, **kwargs)


def _fail_logins(guard, times):
    for _ in range(times):
        guard.on_login_failure(_args())


def test_fresh_address_proceeds_unchallenged(guard, gateway):
    outcome = guard.on_authenticate(_args())
    assert isinstance(outcome, Proceed)
    assert outcome.state is ChallengeState.UNCHALLENGED
    assert gateway.calls == []


def test_missing_token_is_rejected_after_threshold(guard, gateway):
    # three failures inside a minute, fourth attempt without a token
    _fail_logins(guard, 3)

    outcome = guard.on_authenticate(_args())

    assert isinstance(outcome, Reject)
    assert outcome.reason is RejectReason.MISSING_CHALLENGE_INPUT
    assert outcome.state is ChallengeState.CHALLENGE_FAILED_OR_MISSING
    assert outcome.user_message
    assert gateway.calls == []


def test_blank_token_counts_as_missing(guard, gateway):
    _fail_logins(guard, 3)
    outcome = guard.on_authenticate(_args(token="   "))
    assert isinstance(outcome, Reject)
    assert outcome.reason is RejectReason.MISSING_CHALLENGE_INPUT
    assert gateway.calls == []


def test_valid_token_passes_then_success_clears_ledger(guard, gateway, store):
    _fail_logins(guard, 3)

    outcome = guard.on_authenticate(_args(token="good-token"))

    assert isinstance(outcome, Proceed)
    assert outcome.state is ChallengeState.CHALLENGE_PASSED
    assert gateway.calls == [("good-token", IP)]
    # passing the challenge alone does not reset anything
    assert store.get(IP).hits == 3

    guard.on_login_success(outcome.args)
    assert store.get(IP) is None


def test_passed_challenge_with_wrong_password_still_counts(guard, store):
    _fail_logins(guard, 3)
    outcome = guard.on_authenticate(_args(token="good-token"))
    assert isinstance(outcome, Proceed)

    args = guard.on_login_failure(outcome.args)

    assert args.extra["failed_attempts"] == 4
    assert store.get(IP).hits == 4


def test_gateway_rejection_carries_codes(guard, gateway):
    gateway.result = VerificationResult(False, ["invalid-input-response"])
    _fail_logins(guard, 3)

    outcome = guard.on_authenticate(_args(token="forged"))

    assert isinstance(outcome, Reject)
    assert outcome.reason is RejectReason.CHALLENGE_FAILED
    assert outcome.error_codes == ["invalid-input-response"]


def test_gateway_timeout_rejects(guard, gateway, caplog):
    gateway.result = VerificationResult(False, ["timeout"])
    _fail_logins(guard, 3)

    with caplog.at_level("INFO", logger="loginguard"):
        outcome = guard.on_authenticate(_args(token="slow-token"))

    assert isinstance(outcome, Reject)
    assert "timeout" in outcome.error_codes
    assert "codes=timeout" in caplog.text


def test_auth_check_is_reevaluated_after_render(guard):
    assert guard.on_login_form(_args()).extra.get("challenge") is None
    _fail_logins(guard, 3)
    assert isinstance(guard.on_authenticate(_args()), Reject)


def test_login_form_gets_challenge_descriptor(guard, settings):
    _fail_logins(guard, 3)
    args = guard.on_login_form(_args())
    assert args.extra["challenge"] == {
        "provider": "turnstile",
        "site_key": settings.captcha_site_key,
        "field": FIELD,
    }


def test_trusted_session_bypasses_only_when_enabled(settings, policy, gateway):
    strict = LoginGuard(settings, policy, gateway)
    relaxed = LoginGuard(settings.model_copy(update={"trusted_session_bypass": True}), policy, gateway)
    _fail_logins(strict, 3)

    assert isinstance(strict.on_authenticate(_args(trusted_session=True)), Reject)
    bypassed = relaxed.on_authenticate(_args(trusted_session=True))
    assert isinstance(bypassed, Proceed)
    assert bypassed.state is ChallengeState.CHALLENGE_PASSED
    assert gateway.calls == []
    assert isinstance(relaxed.on_authenticate(_args(trusted_session=False)), Reject)


def test_recaptcha_provider_reads_its_field(settings, policy, gateway):
    guard = LoginGuard(settings.model_copy(update={"captcha_provider": "recaptcha"}), policy, gateway)
    _fail_logins(guard, 3)
    outcome = guard.on_authenticate(
        HookArgs(user="alice", client_ip=IP, request_fields={"g-recaptcha-response": "tok"})
    )
    assert isinstance(outcome, Proceed)


def test_ledger_outage_fails_closed(settings, clock, gateway):
    policy = ChallengePolicy(BrokenStore(), threshold=3, expire_seconds=1800, clock=clock)
    guard = LoginGuard(settings, policy, gateway)

    missing = guard.on_authenticate(_args())
    assert isinstance(missing, Reject)
    assert missing.reason is RejectReason.CHALLENGE_FAILED
    assert missing.error_codes == [LEDGER_UNAVAILABLE]

    with_token = guard.on_authenticate(_args(token="good-token"))
    assert isinstance(with_token, Reject)
    assert with_token.reason is RejectReason.CHALLENGE_FAILED
    assert with_token.error_codes == [LEDGER_UNAVAILABLE]
    assert gateway.calls == []

    trusted = LoginGuard(settings.model_copy(update={"trusted_session_bypass": True}), policy, gateway)
    assert isinstance(trusted.on_authenticate(_args(trusted_session=True)), Reject)


def test_ledger_outage_can_be_configured_open(settings, clock, gateway):
    policy = ChallengePolicy(BrokenStore(), threshold=3, expire_seconds=1800, clock=clock)
    guard = LoginGuard(settings.model_copy(update={"fail_open_on_store_error": True}), policy, gateway)
    outcome = guard.on_authenticate(_args())
    assert isinstance(outcome, Proceed)
    assert outcome.state is ChallengeState.UNCHALLENGED


def test_ledger_outage_does_not_break_post_login_hooks(settings, clock, gateway):
    policy = ChallengePolicy(BrokenStore(), threshold=3, expire_seconds=1800, clock=clock)
    guard = LoginGuard(settings, policy, gateway)
    args = _args()

    assert guard.on_login_failure(args) == args
    assert guard.on_login_success(args) == args
    assert guard.on_login_form(args) == args


@pytest.mark.parametrize("missing", ["captcha_secret_key", "captcha_site_key"])
def test_missing_keys_refuse_activation(settings, policy, gateway, missing):
    with pytest.raises(ConfigurationError):
        LoginGuard(settings.model_copy(update={missing: None}), policy, gateway)


def test_login_success_after_sweeper_shutdown(settings, store, clock, gateway):
    executor = ThreadPoolExecutor(max_workers=1)
    policy = ChallengePolicy(store, threshold=3, expire_seconds=1800, clock=clock, sweep_executor=executor)
    guard = LoginGuard(settings, policy, gateway)
    _fail_logins(guard, 3)
    executor.shutdown()

    args = _args()
    assert guard.on_login_success(args) == args
    assert store.get(IP) is None
