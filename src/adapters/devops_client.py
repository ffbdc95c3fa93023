"""Azure DevOps REST adapter (git + pipelines).

One `DevOpsClient` per provisioning run, bound to a project and a
credential. Every non-success response becomes an `HttpError` whose detail
has been stripped of markup; mutating calls are counted in `write_calls`.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import quote

import httpx

from adapters.http_client import auth_headers, build_async_client, sanitize_error_body
from core.config import AppSettings
from core.domain.errors import CredentialError, HttpError, MissingContext, PushConflict
from core.domain.models import (
    ZERO_OBJECT_ID,
    BranchTip,
    Credential,
    PipelineConfiguration,
    PipelineDefinition,
    PipelineRepository,
    RepositoryRef,
)

logger = logging.getLogger(__name__)

_MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _error_detail(response: httpx.Response, max_chars: int) -> str:
    try:
        data = response.json()
    except ValueError:
        data = None
    if isinstance(data, dict) and isinstance(data.get("message"), str):
        return sanitize_error_body(data["message"], max_chars=max_chars)
    return sanitize_error_body(response.text, max_chars=max_chars)


def _definition_from_build(raw: dict[str, Any]) -> PipelineDefinition:
    """Map a build definition (`_apis/build/definitions/{id}`) to `PipelineDefinition`."""

    process = raw.get("process") if isinstance(raw.get("process"), dict) else {}
    repository = raw.get("repository") if isinstance(raw.get("repository"), dict) else {}
    configuration = None
    if repository.get("id"):
        configuration = PipelineConfiguration(
            path=str(process.get("yamlFilename") or ""),
            repository=PipelineRepository(
                id=str(repository["id"]),
                name=repository.get("name"),
                type=str(repository.get("type") or "TfsGit"),
                default_branch=repository.get("defaultBranch"),
            ),
        )
    return PipelineDefinition(
        id=raw.get("id"),
        name=str(raw.get("name") or ""),
        folder=raw.get("path"),
        revision=raw.get("revision"),
        configuration=configuration,
    )


class DevOpsClient:
    def __init__(
        self,
        *,
        collection_uri: str,
        project_id: str | None,
        credential: Credential | None,
        settings: AppSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not project_id:
            raise MissingContext("Project context is required before calling the REST API.")
        if credential is None or not credential.token:
            raise CredentialError("Access token unavailable. Reload the extension and try again.", retryable=False)

        self._settings = settings or AppSettings()
        self.project_id = project_id
        self.collection_uri = collection_uri.rstrip("/") + "/"
        self.write_calls = 0
        self._client = build_async_client(
            self._settings,
            base_url=self.collection_uri,
            extra_headers=auth_headers(credential),
            transport=transport,
        )

    async def __aenter__(self) -> "DevOpsClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _path(self, path: str) -> str:
        return f"{quote(self.project_id, safe='')}/_apis/{path}"

    async def _request(
        self,
        method: str,
        path: str,
        operation: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        api_version: str | None = None,
        allow_not_found: bool = False,
        conflict_error: type[HttpError] = HttpError,
    ) -> httpx.Response:
        query = dict(params or {})
        query["api-version"] = api_version or self._settings.git_api_version
        if method.upper() in _MUTATING_METHODS:
            self.write_calls += 1

        response = await self._client.request(method, self._path(path), params=query, json=json)
        if allow_not_found and response.status_code == 404:
            return response
        if not response.is_success:
            detail = _error_detail(response, self._settings.error_excerpt_max_chars)
            error_cls = conflict_error if response.status_code == 409 else HttpError
            raise error_cls(operation, response.status_code, detail)
        return response

    # Repositories -----------------------------------------------------------

    async def list_repositories(self) -> list[RepositoryRef]:
        response = await self._request("GET", "git/repositories", "list repositories")
        return [RepositoryRef.model_validate(item) for item in response.json().get("value") or []]

    async def create_repository(self, name: str) -> RepositoryRef:
        response = await self._request(
            "POST",
            "git/repositories",
            "create repository",
            json={"name": name, "project": {"id": self.project_id}},
        )
        return RepositoryRef.model_validate(response.json())

    async def update_default_branch(self, repository_id: str, ref_name: str) -> RepositoryRef:
        response = await self._request(
            "PATCH",
            f"git/repositories/{repository_id}",
            "update default branch",
            json={"defaultBranch": ref_name},
        )
        return RepositoryRef.model_validate(response.json())

    # Refs, pushes, items ----------------------------------------------------

    async def get_branch_tip(self, repository_id: str, branch: str) -> BranchTip:
        response = await self._request(
            "GET",
            f"git/repositories/{repository_id}/refs",
            "query branch",
            params={"filter": f"heads/{branch}"},
            allow_not_found=True,
        )
        if response.status_code == 404:
            return BranchTip(branch_name=branch, object_id=ZERO_OBJECT_ID)

        refs = response.json().get("value") or []
        wanted = f"refs/heads/{branch}"
        # `filter` is a prefix match; `heads/main` also returns `heads/main-old`.
        for ref in refs:
            if ref.get("name") == wanted and ref.get("objectId"):
                return BranchTip(branch_name=branch, object_id=ref["objectId"])
        return BranchTip(branch_name=branch, object_id=ZERO_OBJECT_ID)

    async def get_item_content(self, repository_id: str, path: str, branch: str) -> str | None:
        response = await self._request(
            "GET",
            f"git/repositories/{repository_id}/items",
            "read repository item",
            params={
                "path": path,
                "includeContent": "true",
                "versionDescriptor.version": branch,
                "versionDescriptor.versionType": "branch",
                "$format": "json",
            },
            allow_not_found=True,
        )
        if response.status_code == 404:
            return None
        content = response.json().get("content")
        return content if isinstance(content, str) else None

    async def create_push(
        self,
        repository_id: str,
        tip: BranchTip,
        *,
        path: str,
        content: str,
        comment: str,
        change_type: str = "add",
    ) -> dict[str, Any]:
        body = {
            "refUpdates": [{"name": tip.ref_name, "oldObjectId": tip.object_id}],
            "commits": [
                {
                    "comment": comment,
                    "changes": [
                        {
                            "changeType": change_type,
                            "item": {"path": path},
                            "newContent": {"content": content, "contentType": "rawtext"},
                        }
                    ],
                }
            ],
        }
        response = await self._request(
            "POST",
            f"git/repositories/{repository_id}/pushes",
            "push scaffold",
            json=body,
            conflict_error=PushConflict,
        )
        return response.json()

    async def list_items(self, repository_id: str, branch: str | None = None) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"recursionLevel": "Full", "includeContentMetadata": "true"}
        if branch:
            params["versionDescriptor.version"] = branch
            params["versionDescriptor.versionType"] = "branch"
        response = await self._request(
            "GET",
            f"git/repositories/{repository_id}/items",
            "scan repository for Dockerfiles",
            params=params,
        )
        return [item for item in response.json().get("value") or [] if isinstance(item, dict)]

    # Agent queues and service endpoints ------------------------------------

    async def list_agent_queues(self) -> list[str]:
        response = await self._request("GET", "distributedtask/queues", "load pools")
        names = [queue.get("name") for queue in response.json().get("value") or []]
        return list(dict.fromkeys(name for name in names if name))

    async def list_container_registries(self) -> list[str]:
        response = await self._request(
            "GET",
            "serviceendpoint/endpoints",
            "load container registries",
            params={"type": "dockerregistry", "projectIds": self.project_id},
            api_version=self._settings.endpoints_api_version,
        )
        names = [endpoint.get("name") or endpoint.get("id") for endpoint in response.json().get("value") or []]
        return [str(name) for name in names if name]

    # Pipelines ----------------------------------------------------------------

    async def list_pipelines(self) -> list[PipelineDefinition]:
        response = await self._request("GET", "pipelines", "list pipelines")
        return [PipelineDefinition.model_validate(item) for item in response.json().get("value") or []]

    async def find_pipeline(self, name: str) -> PipelineDefinition | None:
        for pipeline in await self.list_pipelines():
            if pipeline.name == name:
                return pipeline
        return None

    async def get_pipeline_definition(self, pipeline_id: int) -> tuple[PipelineDefinition, dict[str, Any]]:
        """Full definition plus the raw build definition needed for an update."""

        response = await self._request(
            "GET",
            f"build/definitions/{pipeline_id}",
            "get pipeline definition",
        )
        raw = response.json()
        return _definition_from_build(raw), raw

    async def create_pipeline(self, definition: PipelineDefinition) -> PipelineDefinition:
        if definition.configuration is None:
            raise ValueError("A pipeline needs a configuration to be created.")
        configuration = definition.configuration
        body = {
            "name": definition.name,
            "folder": definition.folder or "\\",
            "configuration": {
                "type": configuration.type,
                "path": configuration.path,
                "repository": {
                    "id": configuration.repository.id,
                    "name": configuration.repository.name,
                    "type": configuration.repository.type,
                },
            },
        }
        response = await self._request("POST", "pipelines", "create pipeline", json=body)
        created = PipelineDefinition.model_validate(response.json())
        return created.model_copy(update={"configuration": created.configuration or configuration})

    async def update_pipeline(
        self,
        raw: dict[str, Any],
        desired: PipelineDefinition,
    ) -> PipelineDefinition:
        if desired.configuration is None or raw.get("id") is None:
            raise ValueError("Updating a pipeline needs its id and a desired configuration.")
        configuration = desired.configuration
        body = dict(raw)
        body["process"] = {**(raw.get("process") or {}), "type": 2, "yamlFilename": configuration.path}
        body["repository"] = {
            **(raw.get("repository") or {}),
            "id": configuration.repository.id,
            "name": configuration.repository.name,
            "type": "TfsGit",
            "defaultBranch": configuration.repository.default_branch,
        }
        response = await self._request(
            "PUT",
            f"build/definitions/{raw['id']}",
            "update pipeline",
            json=body,
        )
        return _definition_from_build(response.json())
