"""Scoped credential acquisition with bounded retry.

Rules:
- A scope hint is tried first; if the host rejects the scoped call the
  unscoped call is used instead.
- Empty tokens are retryable; linear backoff between attempts.
- A 500 from the host's session-token service is terminal: retrying only
  repeats the server-side failure.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from core.domain.errors import CredentialError, HostSdkError
from core.domain.models import Credential, CredentialOutcome
from core.interfaces.host_sdk import HostSdk

logger = logging.getLogger(__name__)

_NON_RETRYABLE_STATUSES = frozenset({500})
_AUTHORIZATION_STATUSES = frozenset({401, 403})
_AUTHORIZATION_HINTS = ("scope", "authoriz", "permission", "forbidden", "unauthorized")

MISSING_AUTHORIZATION_MESSAGE = (
    "Azure DevOps did not authorize this extension for the requested scope. "
    "Ask a collection administrator to approve the extension permissions, then reload."
)
GENERIC_TOKEN_MESSAGE = "Failed to acquire access token from Azure DevOps. Reload the page and try again."


def _is_authorization_failure(error: BaseException | None) -> bool:
    if error is None:
        return False
    if isinstance(error, HostSdkError) and error.status in _AUTHORIZATION_STATUSES:
        return True
    text = str(error).lower()
    return any(hint in text for hint in _AUTHORIZATION_HINTS)


def _is_non_retryable(error: BaseException) -> bool:
    return isinstance(error, HostSdkError) and error.status in _NON_RETRYABLE_STATUSES


async def _request_token(host_sdk: HostSdk, scope: str | None) -> str | None:
    if scope:
        try:
            return await host_sdk.get_access_token(scope)
        except HostSdkError as exc:
            if _is_non_retryable(exc):
                raise
            logger.info("Scoped token request rejected (%s); retrying without scope", exc)
    return await host_sdk.get_access_token()


def _terminal(error: BaseException | None, attempts: int) -> CredentialError:
    message = f"Access token unavailable after {attempts} attempt(s)"
    if error is not None:
        message = f"{message}: {error}"
    user_message = (
        MISSING_AUTHORIZATION_MESSAGE if _is_authorization_failure(error) else GENERIC_TOKEN_MESSAGE
    )
    return CredentialError(message, retryable=False, user_message=user_message)


async def acquire_credential(
    host_sdk: HostSdk,
    max_attempts: int = 3,
    *,
    scope: str | None = None,
    backoff_seconds: float = 0.75,
    on_outcome: Callable[[CredentialOutcome], None] | None = None,
) -> Credential:
    """Obtain an access token from the host SDK.

    `on_outcome` sees the classification of every attempt.
    Raises `CredentialError(retryable=False)` once attempts are exhausted or
    the failure is classified as terminal.
    """

    attempts = max(1, max_attempts)
    last_error: BaseException | None = None

    def _record(outcome: CredentialOutcome) -> None:
        if on_outcome is not None:
            on_outcome(outcome)

    for attempt in range(1, attempts + 1):
        try:
            token = await _request_token(host_sdk, scope)
        except HostSdkError as exc:
            last_error = exc
            if _is_non_retryable(exc):
                logger.error("Host token service failed with %s; not retrying", exc.status)
                _record(CredentialOutcome.TERMINAL_FAILURE)
                raise _terminal(exc, attempt) from exc
            outcome = CredentialOutcome.RETRYABLE_FAILURE
        else:
            if token and token.strip():
                _record(CredentialOutcome.SUCCESS)
                return Credential(token=token.strip(), outcome=CredentialOutcome.SUCCESS, attempts=attempt)
            last_error = CredentialError("Azure DevOps did not provide an access token.", retryable=True)
            outcome = CredentialOutcome.RETRYABLE_FAILURE

        logger.warning("Token attempt %d/%d failed (%s): %s", attempt, attempts, outcome.value, last_error)
        _record(outcome)
        if attempt < attempts:
            await asyncio.sleep(backoff_seconds * attempt)

    _record(CredentialOutcome.TERMINAL_FAILURE)
    raise _terminal(last_error, attempts)
