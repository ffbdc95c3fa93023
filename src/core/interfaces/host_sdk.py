"""Host SDK contracts.

Why Protocol:
- The Core depends on one stable capability interface regardless of which
  host SDK generation was loaded.
- `ScriptRuntime` is the browser collaborator that evaluates script text
  and exposes the resulting global; tests replace it with a fake.
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Protocol, runtime_checkable

# Raw capability names a loaded SDK global must expose to be usable.
REQUIRED_CAPABILITIES = ("init", "ready", "getService")
CONTEXT_CAPABILITIES = ("getWebContext", "getHostContext")


@runtime_checkable
class HostSdk(Protocol):
    """Normalized host SDK surface consumed by every component."""

    generation: str

    def init(self, options: dict[str, Any] | None = None) -> Awaitable[None]:
        ...

    async def ready(self, timeout: float) -> None:
        """Wait until the host signals readiness, raising `SdkUnavailable` after `timeout`."""

        ...

    def get_web_context(self) -> dict[str, Any]:
        ...

    def get_host_context(self) -> dict[str, Any]:
        ...

    async def get_access_token(self, scope: str | None = None) -> str | None:
        ...

    async def get_service(self, service_id: str) -> Any:
        ...

    def register(self, action_id: str, execute: Callable[[dict[str, Any]], Awaitable[Any]]) -> None:
        ...

    def notify_load_succeeded(self) -> None:
        ...

    def notify_load_failed(self, message: str) -> None:
        ...


@runtime_checkable
class ScriptRuntime(Protocol):
    """Evaluates SDK scripts in the frame and exposes the resulting global."""

    def ambient_sdk(self) -> Any | None:
        """SDK global already present in this frame or its parent, if any."""

        ...

    async def load_script(self, url: str, source: str) -> Any | None:
        """Evaluate `source` (fetched from `url`) and return the SDK global it installed."""

        ...
