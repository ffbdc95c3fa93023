from __future__ import annotations

import asyncio
from typing import Any

import pytest

from core.domain.errors import CredentialError, HostSdkError
from core.domain.models import CredentialOutcome
from core.services.credentials import (
    GENERIC_TOKEN_MESSAGE,
    MISSING_AUTHORIZATION_MESSAGE,
    acquire_credential,
)


class ScriptedTokenSdk:
    """Answers `get_access_token` from a script of tokens and exceptions."""

    generation = "scripted"

    def __init__(self, *answers: Any) -> None:
        self._answers = list(answers)
        self.calls: list[str | None] = []

    async def get_access_token(self, scope: str | None = None) -> str | None:
        self.calls.append(scope)
        answer = self._answers.pop(0) if len(self._answers) > 1 else self._answers[0]
        if isinstance(answer, BaseException):
            raise answer
        return answer


def test_first_token_is_returned() -> None:
    sdk = ScriptedTokenSdk("abc")

    credential = asyncio.run(acquire_credential(sdk, 3, backoff_seconds=0))

    assert credential.token == "abc"
    assert credential.outcome is CredentialOutcome.SUCCESS
    assert credential.attempts == 1
    assert sdk.calls == [None]


def test_empty_token_is_retried() -> None:
    sdk = ScriptedTokenSdk("", "   ", "abc")

    credential = asyncio.run(acquire_credential(sdk, 3, backoff_seconds=0))

    assert credential.token == "abc"
    assert credential.attempts == 3
    assert len(sdk.calls) == 3


def test_server_error_is_not_retried() -> None:
    sdk = ScriptedTokenSdk(HostSdkError("session token service failed", status=500), "late-token")

    with pytest.raises(CredentialError) as excinfo:
        asyncio.run(acquire_credential(sdk, 3, backoff_seconds=0))

    assert len(sdk.calls) == 1
    assert excinfo.value.retryable is False
    assert excinfo.value.user_message == GENERIC_TOKEN_MESSAGE


def test_server_error_on_scoped_call_is_not_retried() -> None:
    sdk = ScriptedTokenSdk(HostSdkError("session token service failed", status=500), "late-token")

    with pytest.raises(CredentialError):
        asyncio.run(acquire_credential(sdk, 3, scope="vso.code_write", backoff_seconds=0))

    assert sdk.calls == ["vso.code_write"]


def test_rejected_scope_falls_back_to_unscoped_call() -> None:
    sdk = ScriptedTokenSdk(HostSdkError("scope not supported", status=400), "unscoped-token")

    credential = asyncio.run(acquire_credential(sdk, 3, scope="vso.code_write", backoff_seconds=0))

    assert credential.token == "unscoped-token"
    assert sdk.calls == ["vso.code_write", None]


def test_exhausted_authorization_failures_ask_for_approval() -> None:
    sdk = ScriptedTokenSdk(HostSdkError("Forbidden", status=403))

    with pytest.raises(CredentialError) as excinfo:
        asyncio.run(acquire_credential(sdk, 3, backoff_seconds=0))

    assert len(sdk.calls) == 3
    assert excinfo.value.user_message == MISSING_AUTHORIZATION_MESSAGE


def test_exhausted_empty_tokens_report_generic_failure() -> None:
    sdk = ScriptedTokenSdk(None)

    with pytest.raises(CredentialError) as excinfo:
        asyncio.run(acquire_credential(sdk, 2, backoff_seconds=0))

    assert len(sdk.calls) == 2
    assert excinfo.value.user_message == GENERIC_TOKEN_MESSAGE
    assert "2 attempt(s)" in excinfo.value.message


def test_each_attempt_outcome_is_reported() -> None:
    sdk = ScriptedTokenSdk(HostSdkError("throttled", status=429), "", "abc")
    outcomes: list[CredentialOutcome] = []

    asyncio.run(acquire_credential(sdk, 3, backoff_seconds=0, on_outcome=outcomes.append))

    assert outcomes == [
        CredentialOutcome.RETRYABLE_FAILURE,
        CredentialOutcome.RETRYABLE_FAILURE,
        CredentialOutcome.SUCCESS,
    ]


def test_server_error_is_reported_as_terminal() -> None:
    sdk = ScriptedTokenSdk(HostSdkError("session token service failed", status=500))
    outcomes: list[CredentialOutcome] = []

    with pytest.raises(CredentialError):
        asyncio.run(acquire_credential(sdk, 3, backoff_seconds=0, on_outcome=outcomes.append))

    assert outcomes == [CredentialOutcome.TERMINAL_FAILURE]


def test_exhausted_attempts_end_with_terminal_outcome() -> None:
    sdk = ScriptedTokenSdk(None)
    outcomes: list[CredentialOutcome] = []

    with pytest.raises(CredentialError):
        asyncio.run(acquire_credential(sdk, 2, backoff_seconds=0, on_outcome=outcomes.append))

    assert outcomes == [
        CredentialOutcome.RETRYABLE_FAILURE,
        CredentialOutcome.RETRYABLE_FAILURE,
        CredentialOutcome.TERMINAL_FAILURE,
    ]
