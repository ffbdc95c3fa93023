"""Cross-document messaging contracts.

A `WindowHandle` is whatever the host gives us for another window (opened
child or opener). Inbound messages arrive as `MessageEvent`s on an
`asyncio.Queue` fed by the frame's message listener.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class WindowHandle(Protocol):
    @property
    def closed(self) -> bool:
        ...

    def post_message(self, data: dict[str, Any], target_origin: str) -> None:
        ...


@dataclass(frozen=True)
class MessageEvent:
    data: Any
    origin: str
    source: WindowHandle | None = None
