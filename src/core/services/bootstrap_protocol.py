"""Cross-window bootstrap handshake.

The opener and the generator window can finish initializing in either order
and a message posted before the other side attaches its listener is lost,
so the sender retransmits the same envelope until it is acknowledged.

Sender states: SENDING -> ACKED | ABANDONED.
"""

from __future__ import annotations

import asyncio
import logging
import time

from core.domain.errors import BootstrapTimeout
from core.domain.messages import BootstrapEnvelope, BootstrapPayload, BootstrapState, MessageKind
from core.domain.models import Credential, HostContext, strip_heads_prefix
from core.interfaces.messaging import MessageEvent, WindowHandle
from core.services.context_resolver import choose_target_branch, clean_value, derive_host_base
from core.session import Session

logger = logging.getLogger(__name__)


class BootstrapSender:
    """Retransmits a bootstrap envelope on a fixed interval until acknowledged."""

    def __init__(self, *, interval_seconds: float = 0.4, max_attempts: int = 25) -> None:
        self.interval_seconds = interval_seconds
        self.max_attempts = max_attempts
        self.state = BootstrapState.SENDING
        self.attempts = 0

    def _is_ack_from(self, event: MessageEvent, target: WindowHandle, target_origin: str) -> bool:
        if event.origin != target_origin or event.source is not target:
            return False
        envelope = BootstrapEnvelope.parse(event.data)
        return envelope is not None and envelope.type is MessageKind.BOOTSTRAP_ACK

    async def _wait_for_ack(
        self,
        inbox: asyncio.Queue[MessageEvent],
        target: WindowHandle,
        target_origin: str,
    ) -> bool:
        deadline = time.monotonic() + self.interval_seconds
        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return False
            try:
                event = await asyncio.wait_for(inbox.get(), timeout=remaining)
            except asyncio.TimeoutError:
                return False
            if self._is_ack_from(event, target, target_origin):
                return True

    async def send(
        self,
        target: WindowHandle,
        target_origin: str,
        payload: BootstrapPayload,
        inbox: asyncio.Queue[MessageEvent],
    ) -> BootstrapState:
        wire = BootstrapEnvelope.bootstrap(payload).to_wire()
        self.state = BootstrapState.SENDING
        self.attempts = 0

        while self.state is BootstrapState.SENDING:
            if target.closed:
                logger.info("Bootstrap target closed after %d transmission(s)", self.attempts)
                self.state = BootstrapState.ABANDONED
                break
            if self.attempts >= self.max_attempts:
                logger.warning("Bootstrap not acknowledged after %d transmission(s)", self.attempts)
                self.state = BootstrapState.ABANDONED
                break

            target.post_message(wire, target_origin)
            self.attempts += 1
            if await self._wait_for_ack(inbox, target, target_origin):
                self.state = BootstrapState.ACKED

        return self.state


def apply_payload(session: Session, payload: BootstrapPayload) -> None:
    """Merge a payload into the session; only non-empty fields overwrite."""

    session.identity = session.identity.merged_with(
        project_id=payload.project_id,
        project_name=payload.project_name,
        repository_id=payload.repository_id,
        repository_name=payload.repository_name,
    )
    branch = clean_value(payload.branch)
    if branch is not None:
        source_branch = strip_heads_prefix(branch)
        session.identity = session.identity.merged_with(
            source_branch=source_branch,
            target_branch=choose_target_branch(source_branch, session.settings),
        )
    if payload.access_token and payload.access_token.strip():
        session.credential = Credential(token=payload.access_token.strip())
    collection_uri = clean_value(payload.collection_uri)
    if collection_uri is not None:
        collection_uri = collection_uri.rstrip("/") + "/"
        if session.host_context is None:
            session.host_context = HostContext(
                origin_base_uri=derive_host_base(collection_uri, collection_uri.rstrip("/")),
                collection_uri=collection_uri,
            )
        else:
            session.host_context = session.host_context.model_copy(update={"collection_uri": collection_uri})


class BootstrapReceiver:
    """Accepts bootstrap envelopes from one origin and acknowledges each of them."""

    def __init__(self, session: Session, expected_origin: str) -> None:
        self.session = session
        self.expected_origin = expected_origin
        self.applied = 0

    def handle(self, event: MessageEvent) -> BootstrapPayload | None:
        if event.origin != self.expected_origin:
            logger.debug("Ignoring message from unexpected origin %s", event.origin)
            return None
        envelope = BootstrapEnvelope.parse(event.data)
        if envelope is None or envelope.type is not MessageKind.BOOTSTRAP or envelope.payload is None:
            return None

        apply_payload(self.session, envelope.payload)
        self.applied += 1
        if event.source is not None:
            event.source.post_message(BootstrapEnvelope.ack().to_wire(), event.origin)
        return envelope.payload

    async def await_bootstrap(
        self,
        inbox: asyncio.Queue[MessageEvent],
        timeout: float,
    ) -> BootstrapPayload:
        """Return the first payload applied from `inbox`, or raise `BootstrapTimeout`."""

        async def _next_payload() -> BootstrapPayload:
            while True:
                event = await inbox.get()
                payload = self.handle(event)
                if payload is not None:
                    return payload

        try:
            return await asyncio.wait_for(_next_payload(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise BootstrapTimeout(
                f"No bootstrap message from {self.expected_origin} within {timeout:g}s."
            ) from exc


async def await_bootstrap(
    session: Session,
    expected_origin: str,
    inbox: asyncio.Queue[MessageEvent],
    *,
    timeout: float | None = None,
) -> BootstrapPayload:
    if timeout is None:
        timeout = session.settings.bootstrap_timeout_seconds
    receiver = BootstrapReceiver(session, expected_origin)
    return await receiver.await_bootstrap(inbox, timeout)
