"""Per-session state threaded through every component.

Created once at frame startup (or per CLI invocation). Only the active
resolution/bootstrap flow writes `identity` and `credential`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from core.config import AppSettings
from core.domain.models import Credential, CredentialOutcome, HostContext, ResolvedIdentity
from core.interfaces.host_sdk import HostSdk

if TYPE_CHECKING:
    from adapters.host_sdk import SdkLoader


@dataclass
class Session:
    settings: AppSettings = field(default_factory=AppSettings)
    sdk_loader: "SdkLoader | None" = None
    host_sdk: HostSdk | None = None
    host_context: HostContext | None = None
    identity: ResolvedIdentity = field(default_factory=ResolvedIdentity)
    credential: Credential | None = None
    credential_outcome: CredentialOutcome | None = None
    status_message: str | None = None
    status_is_error: bool = False

    def record_credential_outcome(self, outcome: CredentialOutcome) -> None:
        self.credential_outcome = outcome

    def set_status(self, message: str, *, error: bool = False) -> None:
        self.status_message = message
        self.status_is_error = error

    @property
    def collection_uri(self) -> str | None:
        return self.host_context.collection_uri if self.host_context else None
