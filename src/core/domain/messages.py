"""Cross-window bootstrap wire format.

Envelopes are exchanged as JSON-compatible dicts through the browser's
cross-document messaging primitive:

    {"type": "pipeline-bootstrap", "version": 1, "payload": {...}}
    {"type": "pipeline-bootstrap-ack", "version": 1}
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, ValidationError
from pydantic.config import ConfigDict

PROTOCOL_VERSION = 1


class MessageKind(str, Enum):
    BOOTSTRAP = "pipeline-bootstrap"
    BOOTSTRAP_ACK = "pipeline-bootstrap-ack"


class BootstrapState(str, Enum):
    SENDING = "sending"
    ACKED = "acked"
    ABANDONED = "abandoned"


class BootstrapPayload(BaseModel):
    """Resolved context handed from the opener to the generator window."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    project_id: str | None = Field(default=None, alias="projectId")
    project_name: str | None = Field(default=None, alias="projectName")
    repository_id: str | None = Field(default=None, alias="repoId")
    repository_name: str | None = Field(default=None, alias="repoName")
    branch: str | None = None
    collection_uri: str | None = Field(default=None, alias="collectionUri")
    access_token: str | None = Field(default=None, alias="accessToken", repr=False)


class BootstrapEnvelope(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: MessageKind
    version: int = PROTOCOL_VERSION
    payload: BootstrapPayload | None = None

    @classmethod
    def bootstrap(cls, payload: BootstrapPayload) -> "BootstrapEnvelope":
        return cls(type=MessageKind.BOOTSTRAP, payload=payload)

    @classmethod
    def ack(cls) -> "BootstrapEnvelope":
        return cls(type=MessageKind.BOOTSTRAP_ACK)

    @classmethod
    def parse(cls, data: Any) -> "BootstrapEnvelope | None":
        """Validate inbound data; anything that is not one of our envelopes yields None."""

        if not isinstance(data, dict):
            return None
        try:
            envelope = cls.model_validate(data)
        except ValidationError:
            return None
        if envelope.version != PROTOCOL_VERSION:
            return None
        return envelope

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
