"""`generate-pipeline-action` contribution.

Runs in the host's context menu frame: on execute it turns the invocation
context into generator-page query hints and opens that page through the
host page-layout service, falling back to a plain window opener.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Callable
from urllib.parse import urlencode

from core.interfaces.host_sdk import HostSdk

logger = logging.getLogger(__name__)

ACTION_ID = "generate-pipeline-action"
PAGE_LAYOUT_SERVICE = "ms.vss-features.host-page-layout-service"


def _get(source: Any, *path: str) -> Any:
    current = source
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def build_generator_url(base_uri: str, context: Mapping[str, Any]) -> str:
    """Generator page URL carrying branch/project/repository hints."""

    branch = _get(context, "branch", "name") or _get(context, "gitRef", "name") or "Unknown branch"
    project = _get(context, "project") or _get(context, "gitRepository", "project") or {}
    project_id = _get(project, "id") or context.get("projectId") or ""
    project_name = _get(project, "name") or project_id
    repo_id = _get(context, "gitRepository", "id") or ""
    repo_name = _get(context, "gitRepository", "name")

    params = {
        "branch": branch,
        "projectId": project_id,
        "projectName": project_name,
        "repoId": repo_id,
    }
    if repo_name:
        params["repoName"] = repo_name
    separator = "" if base_uri.endswith("/") else "/"
    return f"{base_uri}{separator}index.html?{urlencode(params)}"


async def open_generator(
    host_sdk: HostSdk,
    url: str,
    fallback_open: Callable[[str], Any],
) -> str:
    """Open `url` with the host page-layout service; returns which opener was used."""

    try:
        service = await host_sdk.get_service(PAGE_LAYOUT_SERVICE)
    except Exception as exc:
        logger.warning("Page layout service unavailable: %s", exc)
        service = None

    open_window = None
    if service is not None:
        open_window = service.get("openWindow") if isinstance(service, Mapping) else getattr(service, "openWindow", None)
    if callable(open_window):
        open_window(url, {})
        return "host"
    fallback_open(url)
    return "window"


def register_generate_action(
    host_sdk: HostSdk,
    *,
    extension_base_uri: str,
    fallback_open: Callable[[str], Any],
) -> None:
    async def execute(context: dict[str, Any]) -> str:
        url = build_generator_url(extension_base_uri, context or {})
        logger.info("Opening pipeline generator at %s", url)
        return await open_generator(host_sdk, url, fallback_open)

    host_sdk.register(ACTION_ID, execute)
