"""Adapters for each host SDK generation.

Host SDK globals come in two shapes:
- legacy `VSS` (callback `ready`, `getWebContext`, token objects with `.token`)
- the extension SDK (`ready()` returns a promise, `getHost`/`getHostContext`)

Raw globals are never mutated; whatever a generation lacks is synthesized
by the adapter (host context from web context and vice versa, no-op load
notifications).
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from typing import Any, Awaitable, Callable

from core.domain.errors import HostSdkError, SdkUnavailable
from core.interfaces.host_sdk import CONTEXT_CAPABILITIES, REQUIRED_CAPABILITIES

logger = logging.getLogger(__name__)


def _capability(raw: Any, name: str) -> Callable[..., Any] | None:
    if raw is None:
        return None
    value = raw.get(name) if isinstance(raw, Mapping) else getattr(raw, name, None)
    return value if callable(value) else None


def _as_dict(value: Any) -> dict[str, Any]:
    return dict(value) if isinstance(value, Mapping) else {}


async def _resolve(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


def _status_of(exc: BaseException) -> int | None:
    for attr in ("status", "statusCode", "status_code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def has_core_capabilities(raw: Any) -> bool:
    """True when `raw` exposes init, ready, getService and a context getter."""

    if raw is None:
        return False
    if not all(_capability(raw, name) for name in REQUIRED_CAPABILITIES):
        return False
    return any(_capability(raw, name) for name in CONTEXT_CAPABILITIES)


class _BaseSdkAdapter(ABC):
    generation = "unknown"

    def __init__(self, raw: Any, *, fallback_host_uri: str | None = None) -> None:
        self._raw = raw
        self._fallback_host_uri = fallback_host_uri

    @property
    def raw(self) -> Any:
        return self._raw

    def _call(self, name: str, *args: Any) -> Any:
        fn = _capability(self._raw, name)
        if fn is None:
            raise HostSdkError(f"Host SDK does not provide {name}().")
        return fn(*args)

    async def init(self, options: dict[str, Any] | None = None) -> None:
        await _resolve(self._call("init", options or {}))

    async def ready(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._wait_ready(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise SdkUnavailable(
                f"Host SDK did not signal readiness within {timeout:g}s.",
                last_error=exc,
            ) from exc

    @abstractmethod
    async def _wait_ready(self) -> None: ...

    def get_web_context(self) -> dict[str, Any]:
        fn = _capability(self._raw, "getWebContext")
        if fn is not None:
            return _as_dict(fn())
        return {"host": self.get_host_context()["host"]}

    def _raw_host(self) -> dict[str, Any]:
        fn = _capability(self._raw, "getHostContext")
        if fn is not None:
            return _as_dict(_as_dict(fn()).get("host"))
        return {}

    def get_host_context(self) -> dict[str, Any]:
        web_fn = _capability(self._raw, "getWebContext")
        web = _as_dict(web_fn()) if web_fn is not None else {}
        web_host = _as_dict(web.get("host"))
        collection = _as_dict(web.get("collection"))
        host_from_web = web_host or collection
        host = self._raw_host() or host_from_web

        return {
            "host": {
                "name": host.get("name") or collection.get("name"),
                "uri": host.get("uri") or host_from_web.get("uri") or self._fallback_host_uri,
                "relativeUri": host.get("relativeUri") or "/",
                "hostType": host.get("hostType") or host.get("type") or web_host.get("hostType"),
                "id": host.get("id") or web_host.get("id"),
            }
        }

    async def get_access_token(self, scope: str | None = None) -> str | None:
        try:
            result = self._call("getAccessToken", scope) if scope else self._call("getAccessToken")
            token = await _resolve(result)
        except HostSdkError:
            raise
        except Exception as exc:
            raise HostSdkError(str(exc) or type(exc).__name__, status=_status_of(exc)) from exc

        if isinstance(token, str):
            return token
        if isinstance(token, Mapping):
            value = token.get("token")
        else:
            value = getattr(token, "token", None)
        return value if isinstance(value, str) else None

    async def get_service(self, service_id: str) -> Any:
        return await _resolve(self._call("getService", service_id))

    def register(self, action_id: str, execute: Callable[[dict[str, Any]], Awaitable[Any]]) -> None:
        self._call("register", action_id, {"execute": execute})

    def notify_load_succeeded(self) -> None:
        fn = _capability(self._raw, "notifyLoadSucceeded")
        if fn is not None:
            fn()

    def notify_load_failed(self, message: str) -> None:
        fn = _capability(self._raw, "notifyLoadFailed")
        if fn is not None:
            fn(message)


class LegacyVssAdapter(_BaseSdkAdapter):
    """`VSS` global: `ready(callback)`, sometimes also returning a promise."""

    generation = "vss-legacy"

    async def _wait_ready(self) -> None:
        loop = asyncio.get_running_loop()
        signalled: asyncio.Future[None] = loop.create_future()

        def _on_ready(*_: Any) -> None:
            if not signalled.done():
                signalled.set_result(None)

        result = self._call("ready", _on_ready)
        if inspect.isawaitable(result):
            await result
            return
        await signalled


class ModernSdkAdapter(_BaseSdkAdapter):
    """Extension SDK global: promise-returning `ready()` and `getHost()`."""

    generation = "extension-sdk"

    async def _wait_ready(self) -> None:
        await _resolve(self._call("ready"))

    def _raw_host(self) -> dict[str, Any]:
        host = super()._raw_host()
        if host:
            return host
        fn = _capability(self._raw, "getHost")
        return _as_dict(fn()) if fn is not None else {}


def normalize_sdk(raw: Any, *, fallback_host_uri: str | None = None) -> _BaseSdkAdapter:
    """Pick the adapter matching the raw SDK generation."""

    if raw is None:
        raise SdkUnavailable("No host SDK object to normalize.")
    if _capability(raw, "getWebContext") is not None:
        adapter: _BaseSdkAdapter = LegacyVssAdapter(raw, fallback_host_uri=fallback_host_uri)
    else:
        adapter = ModernSdkAdapter(raw, fallback_host_uri=fallback_host_uri)
    logger.debug("Normalized host SDK as %s", adapter.generation)
    return adapter
