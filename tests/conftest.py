from __future__ import annotations

import asyncio
import json
import os
from typing import Any, Callable

import httpx
import pytest

from core.config import AppSettings
from core.domain.models import ZERO_OBJECT_ID

COLLECTION_URI = "https://dev.azure.com/contoso/"
PROJECT_ID = "proj-1"


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("PIPELINE_GEN_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture
def settings() -> AppSettings:
    return AppSettings(
        _env_file=None,
        sdk_gallery_url="https://gallery.example/VSS.SDK.min.js",
        sdk_ready_timeout_seconds=0.5,
        token_backoff_seconds=0,
        bootstrap_interval_seconds=0.02,
        bootstrap_max_attempts=5,
    )


class FakeDevOps:
    """In-memory git + pipelines backend served through `httpx.MockTransport`."""

    def __init__(self) -> None:
        self.repos: dict[str, dict[str, Any]] = {}
        self.tips: dict[tuple[str, str], str] = {}
        self.files: dict[tuple[str, str, str], str] = {}
        self.definitions: dict[int, dict[str, Any]] = {}
        self.queues = ["Default", "Azure Pipelines"]
        self.registries = ["DockerReg", "Harbor"]
        self.failures: dict[tuple[str, str], tuple[int, Any]] = {}
        self.requests: list[httpx.Request] = []
        self._counter = 0

    # Seeding ---------------------------------------------------------------

    def add_repo(self, name: str, default_branch: str | None = None) -> dict[str, Any]:
        self._counter += 1
        repo = {"id": f"repo-{self._counter}", "name": name, "url": f"{COLLECTION_URI}_git/{name}"}
        if default_branch:
            repo["defaultBranch"] = default_branch
        self.repos[repo["id"]] = repo
        return repo

    def add_file(self, repo_id: str, branch: str, path: str, content: str) -> None:
        self._counter += 1
        self.files[(repo_id, branch, path)] = content
        self.tips[(repo_id, branch)] = f"{self._counter:040x}"

    def add_definition(self, name: str, *, repo_id: str, path: str, default_branch: str) -> dict[str, Any]:
        definition_id = len(self.definitions) + 1
        definition = {
            "id": definition_id,
            "name": name,
            "path": "\\",
            "revision": 1,
            "process": {"type": 2, "yamlFilename": path},
            "repository": {"id": repo_id, "type": "TfsGit", "defaultBranch": default_branch},
        }
        self.definitions[definition_id] = definition
        return definition

    def fail(self, method: str, route: str, status: int, body: Any) -> None:
        self.failures[(method, route)] = (status, body)

    # Inspection ------------------------------------------------------------

    @property
    def writes(self) -> list[tuple[str, str]]:
        return [(r.method, self._route(r)) for r in self.requests if r.method != "GET"]

    def calls(self, method: str, route_suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == method and self._route(r).endswith(route_suffix)]

    # Transport -------------------------------------------------------------

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    @staticmethod
    def _route(request: httpx.Request) -> str:
        return request.url.path.split("/_apis/", 1)[1]

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        route = self._route(request)
        params = request.url.params
        body = json.loads(request.content) if request.content else None
        parts = route.split("/")

        for (method, failing_route), (status, failure) in self.failures.items():
            if method == request.method and route.endswith(failing_route):
                if isinstance(failure, str):
                    return httpx.Response(status, text=failure, headers={"content-type": "text/html"})
                return httpx.Response(status, json=failure)

        if route == "git/repositories":
            if request.method == "GET":
                return httpx.Response(200, json={"value": list(self.repos.values())})
            repo = self.add_repo(body["name"])
            return httpx.Response(201, json=repo)

        if parts[:2] == ["git", "repositories"] and len(parts) == 3:
            repo = self.repos[parts[2]]
            repo["defaultBranch"] = body["defaultBranch"]
            return httpx.Response(200, json=repo)

        if parts[:2] == ["git", "repositories"] and parts[3] == "refs":
            prefix = "refs/" + params["filter"]
            refs = [
                {"name": f"refs/heads/{branch}", "objectId": object_id}
                for (repo_id, branch), object_id in self.tips.items()
                if repo_id == parts[2] and f"refs/heads/{branch}".startswith(prefix)
            ]
            return httpx.Response(200, json={"value": refs, "count": len(refs)})

        if parts[:2] == ["git", "repositories"] and parts[3] == "items":
            branch = params.get("versionDescriptor.version")
            if params.get("includeContent") == "true":
                content = self.files.get((parts[2], branch, params["path"]))
                if content is None:
                    return httpx.Response(404, json={"message": "TF401174: The item could not be found."})
                return httpx.Response(200, json={"path": params["path"], "content": content})
            items = [
                {"path": path, "isFolder": False}
                for (repo_id, file_branch, path) in self.files
                if repo_id == parts[2] and (branch is None or file_branch == branch)
            ]
            return httpx.Response(200, json={"value": [{"path": "/", "isFolder": True}, *items]})

        if parts[:2] == ["git", "repositories"] and parts[3] == "pushes":
            ref_update = body["refUpdates"][0]
            branch = ref_update["name"][len("refs/heads/") :]
            current = self.tips.get((parts[2], branch), ZERO_OBJECT_ID)
            if ref_update["oldObjectId"] != current:
                return httpx.Response(
                    409,
                    json={"message": "TF401028: The reference has already been updated by another client."},
                )
            change = body["commits"][0]["changes"][0]
            self.add_file(parts[2], branch, change["item"]["path"], change["newContent"]["content"])
            commit_id = self.tips[(parts[2], branch)]
            return httpx.Response(201, json={"commits": [{"commitId": commit_id}], "refUpdates": [ref_update]})

        if route == "distributedtask/queues":
            return httpx.Response(200, json={"value": [{"id": i, "name": n} for i, n in enumerate(self.queues)]})

        if route == "serviceendpoint/endpoints":
            return httpx.Response(200, json={"value": [{"id": n.lower(), "name": n} for n in self.registries]})

        if route == "pipelines":
            if request.method == "GET":
                value = [{"id": d["id"], "name": d["name"], "folder": d["path"]} for d in self.definitions.values()]
                return httpx.Response(200, json={"value": value})
            configuration = body["configuration"]
            repo = self.repos[configuration["repository"]["id"]]
            definition = self.add_definition(
                body["name"],
                repo_id=repo["id"],
                path=configuration["path"],
                default_branch=repo.get("defaultBranch", "refs/heads/main"),
            )
            return httpx.Response(
                200,
                json={"id": definition["id"], "name": body["name"], "folder": body["folder"], "revision": 1},
            )

        if parts[:2] == ["build", "definitions"]:
            definition = self.definitions[int(parts[2])]
            if request.method == "PUT":
                definition.update(
                    {
                        "process": body["process"],
                        "repository": body["repository"],
                        "revision": definition["revision"] + 1,
                    }
                )
            return httpx.Response(200, json=definition)

        return httpx.Response(404, json={"message": f"no route for {request.method} {route}"})


@pytest.fixture
def backend() -> FakeDevOps:
    return FakeDevOps()


class FakeWindow:
    def __init__(self, *, close_after: int | None = None, on_post: Callable[..., None] | None = None) -> None:
        self.posts: list[tuple[dict[str, Any], str]] = []
        self._closed = False
        self._close_after = close_after
        self._on_post = on_post

    @property
    def closed(self) -> bool:
        return self._closed

    def close(self) -> None:
        self._closed = True

    def post_message(self, data: dict[str, Any], target_origin: str) -> None:
        self.posts.append((data, target_origin))
        if self._close_after is not None and len(self.posts) >= self._close_after:
            self._closed = True
        if self._on_post is not None:
            self._on_post(self, data, target_origin)


@pytest.fixture
def make_window() -> Callable[..., FakeWindow]:
    return FakeWindow


def raw_legacy_sdk(
    *,
    web_context: dict[str, Any] | None = None,
    token: Any = "token-123",
    calls: list[tuple[str, tuple[Any, ...]]] | None = None,
    service: Any = None,
) -> dict[str, Any]:
    """`VSS`-shaped global as a mapping of callables."""

    log = calls if calls is not None else []

    def _record(name: str, result: Any = None) -> Callable[..., Any]:
        def _fn(*args: Any) -> Any:
            log.append((name, args))
            if name == "ready" and args:
                args[0]()
            if isinstance(result, BaseException):
                raise result
            return result

        return _fn

    return {
        "init": _record("init"),
        "ready": _record("ready"),
        "getService": _record("getService", service),
        "getWebContext": lambda: dict(web_context or {}),
        "getAccessToken": _record("getAccessToken", token),
        "register": _record("register"),
        "notifyLoadSucceeded": _record("notifyLoadSucceeded"),
        "notifyLoadFailed": _record("notifyLoadFailed"),
    }


class FakeRuntime:
    """Script runtime whose evaluated globals are looked up by URL."""

    def __init__(self, *, ambient: Any = None, globals_by_url: dict[str, Any] | None = None) -> None:
        self.ambient = ambient
        self.globals_by_url = globals_by_url or {}
        self.loaded: list[str] = []

    def ambient_sdk(self) -> Any:
        return self.ambient

    async def load_script(self, url: str, source: str) -> Any:
        self.loaded.append(url)
        await asyncio.sleep(0)
        return self.globals_by_url.get(url)


@pytest.fixture
def make_runtime() -> Callable[..., FakeRuntime]:
    return FakeRuntime


@pytest.fixture
def legacy_sdk() -> Callable[..., dict[str, Any]]:
    return raw_legacy_sdk
