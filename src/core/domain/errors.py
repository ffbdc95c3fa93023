"""Error taxonomy.

Services raise these; only the session flow and the CLI turn them into
user-facing messages.
"""

from __future__ import annotations


class PipelineGeneratorError(Exception):
    """Base class for every failure the application reports to the user."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    @property
    def user_message(self) -> str:
        return self.message


class SdkUnavailable(PipelineGeneratorError):
    """No candidate source produced a usable host SDK."""

    def __init__(self, message: str, *, last_error: BaseException | None = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class HostSdkError(PipelineGeneratorError):
    """A host SDK call failed; `status` carries the HTTP-equivalent code when known."""

    def __init__(self, message: str, *, status: int | None = None) -> None:
        super().__init__(message)
        self.status = status


class MissingContext(PipelineGeneratorError):
    """No project identifier could be resolved."""


class CredentialError(PipelineGeneratorError):
    def __init__(self, message: str, *, retryable: bool, user_message: str | None = None) -> None:
        super().__init__(message)
        self.retryable = retryable
        self._user_message = user_message or message

    @property
    def user_message(self) -> str:
        return self._user_message


class HttpError(PipelineGeneratorError):
    """Non-success REST response. `detail` is already sanitized of markup."""

    def __init__(self, operation: str, status: int, detail: str = "") -> None:
        message = f"Failed to {operation} ({status})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)
        self.operation = operation
        self.status = status
        self.detail = detail


class PushConflict(HttpError):
    """The branch moved between reading its tip and pushing."""


class ConfigurationDriftError(PipelineGeneratorError):
    """An existing pipeline definition differs from the desired configuration."""

    def __init__(self, pipeline_name: str, fields: list[str]) -> None:
        super().__init__(f"Pipeline {pipeline_name} drifted on: {', '.join(fields)}")
        self.pipeline_name = pipeline_name
        self.fields = fields


class BootstrapTimeout(PipelineGeneratorError):
    """No bootstrap envelope arrived before the receive deadline."""
