"""Frame bootstrap and provisioning orchestration.

The entry-points for a host frame (or any other front-end) live here so
side-effects such as status text and load notifications stay out of the
individual services.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any

import httpx

from adapters.host_sdk import SdkLoader
from core.domain.errors import (
    BootstrapTimeout,
    CredentialError,
    MissingContext,
    PipelineGeneratorError,
    SdkUnavailable,
)
from core.domain.messages import BootstrapPayload, BootstrapState
from core.domain.models import UNKNOWN_BRANCH, PipelineTemplateValues, ProvisionResult
from core.interfaces.host_sdk import ScriptRuntime
from core.interfaces.messaging import MessageEvent, WindowHandle
from core.services.bootstrap_protocol import BootstrapSender, await_bootstrap
from core.services.context_resolver import (
    derive_host_base,
    require_project,
    resolve_host_context,
    resolve_identity,
)
from core.services.credentials import acquire_credential
from core.services.provisioning import provision
from core.session import Session

logger = logging.getLogger(__name__)

INIT_OPTIONS = {"usePlatformScripts": True, "explicitNotifyLoaded": True}
FRAME_FAILED_MESSAGE = "Failed to initialize extension frame. Check extension permissions and reload."


async def start_frame(
    session: Session,
    runtime: ScriptRuntime,
    *,
    frame_url: str,
    frame_origin: str,
    referrer: str | None = None,
    action_context: Mapping[str, Any] | None = None,
    query_params: Mapping[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> bool:
    """Load the SDK, resolve context and acquire a credential.

    Returns False (with an error status on the session) when the frame cannot
    be used; the host is told through `notifyLoadFailed`.
    """

    settings = session.settings
    host_base = derive_host_base(referrer, frame_origin)
    if session.sdk_loader is None:
        session.sdk_loader = SdkLoader(
            runtime,
            frame_url=frame_url,
            host_base_uri=host_base,
            settings=settings,
            transport=transport,
        )

    try:
        sdk = await session.sdk_loader.load()
    except SdkUnavailable as exc:
        logger.error("Failed to initialize extension frame: %s (last error: %s)", exc, exc.last_error)
        session.set_status(FRAME_FAILED_MESSAGE, error=True)
        return False

    session.host_sdk = sdk
    try:
        await sdk.init(dict(INIT_OPTIONS))
        await sdk.ready(timeout=settings.sdk_ready_timeout_seconds)

        session.host_context = resolve_host_context(sdk, host_base_uri=host_base)
        session.identity = resolve_identity(action_context, query_params, sdk, settings)
        require_project(session.identity)

        session.credential = await acquire_credential(
            sdk,
            settings.token_max_attempts,
            scope=settings.token_scope,
            backoff_seconds=settings.token_backoff_seconds,
            on_outcome=session.record_credential_outcome,
        )
    except MissingContext as exc:
        session.set_status(exc.user_message, error=True)
        sdk.notify_load_failed("Missing project context")
        return False
    except CredentialError as exc:
        logger.error("Failed to acquire Azure DevOps access token: %s", exc)
        session.set_status(exc.user_message, error=True)
        sdk.notify_load_failed("Access token unavailable")
        return False
    except PipelineGeneratorError as exc:
        logger.error("Failed to initialize extension frame: %s", exc)
        session.set_status(FRAME_FAILED_MESSAGE, error=True)
        sdk.notify_load_failed(exc.message or "Initialization failed")
        return False

    session.set_status(f"Target branch: {session.identity.source_branch}")
    sdk.notify_load_succeeded()
    return True


async def run_provisioning(
    session: Session,
    values: PipelineTemplateValues,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProvisionResult | None:
    """Provision for the session identity, reporting the outcome as status text."""

    if session.credential is None:
        session.set_status("Access token unavailable. Reload the extension and try again.", error=True)
        return None
    if session.collection_uri is None:
        session.set_status("Host context is not resolved yet. Reload the extension and try again.", error=True)
        return None

    session.set_status("Working on repository...")
    try:
        result = await provision(
            session.identity,
            session.credential,
            values,
            collection_uri=session.collection_uri,
            settings=session.settings,
            transport=transport,
        )
    except PipelineGeneratorError as exc:
        logger.error("Provisioning failed: %s", exc)
        session.set_status(exc.user_message, error=True)
        return None

    session.set_status(result.summary())
    return result


def bootstrap_payload_for(session: Session) -> BootstrapPayload:
    identity = session.identity
    return BootstrapPayload(
        project_id=identity.project_id,
        project_name=identity.project_name,
        repository_id=identity.repository_id,
        repository_name=identity.repository_name,
        branch=identity.source_branch if identity.source_branch != UNKNOWN_BRANCH else None,
        collection_uri=session.collection_uri,
        access_token=session.credential.token if session.credential else None,
    )


async def hand_off_context(
    session: Session,
    target: WindowHandle,
    target_origin: str,
    inbox: asyncio.Queue[MessageEvent],
) -> BootstrapState:
    """Send the resolved context to a freshly opened generator window."""

    sender = BootstrapSender(
        interval_seconds=session.settings.bootstrap_interval_seconds,
        max_attempts=session.settings.bootstrap_max_attempts,
    )
    state = await sender.send(target, target_origin, bootstrap_payload_for(session), inbox)
    logger.info("Bootstrap hand-off finished as %s after %d transmission(s)", state.value, sender.attempts)
    return state


async def receive_context(
    session: Session,
    expected_origin: str,
    inbox: asyncio.Queue[MessageEvent],
) -> BootstrapPayload | None:
    """Wait for the opener's hand-off in a generator window.

    Bounded by `bootstrap_timeout_seconds`; a timeout is reported as status text.
    """

    try:
        payload = await await_bootstrap(
            session,
            expected_origin,
            inbox,
            timeout=session.settings.bootstrap_timeout_seconds,
        )
    except BootstrapTimeout as exc:
        logger.warning("Bootstrap hand-off not received: %s", exc)
        session.set_status(exc.user_message, error=True)
        return None

    if session.credential is not None:
        session.record_credential_outcome(session.credential.outcome)
    session.set_status(f"Target branch: {session.identity.source_branch}")
    return payload
