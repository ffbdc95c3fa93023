"""Defaults and discovered choices for the pipeline form.

Pure helpers (environment detection, Dockerfile directory normalization,
option merging) plus `discover_form_options`, which queries the backend and
degrades to configured defaults when a lookup fails.
"""

from __future__ import annotations

import logging
import re
from typing import Iterable, Mapping

from adapters.devops_client import DevOpsClient
from core.config import AppSettings
from core.domain.errors import HttpError
from core.domain.models import FormOptions, PipelineTemplateValues, ResolvedIdentity

logger = logging.getLogger(__name__)

_DOCKERFILE_SUFFIX_RE = re.compile(r"/?Dockerfile$", re.IGNORECASE)


def merge_with_defaults(defaults: Iterable[str], values: Iterable[str]) -> list[str]:
    """Defaults first, then discovered values; empties and duplicates dropped."""

    return list(dict.fromkeys(value for value in [*defaults, *values] if value))


def detect_environment(branch: str | None, environments: Iterable[str]) -> str | None:
    """`master`/`main` map to `pro`; otherwise the first environment key contained in the branch."""

    if not branch:
        return None
    lower = branch.lower()
    if "master" in lower or "main" in lower:
        return "pro"
    for key in environments:
        if key and key.lower() in lower:
            return key.lower()
    return None


def server_for_environment(environment: str | None, servers: Mapping[str, str]) -> str | None:
    if not environment:
        return None
    return servers.get(environment.lower())


def service_name_from(name: str | None) -> str | None:
    if not name:
        return None
    normalized = str(name).strip().lower()
    return normalized or None


def normalize_dockerfile_dir(path: str | None) -> str:
    """`/src/Api/Dockerfile` -> `src/Api`; a root Dockerfile yields `.`."""

    normalized = (path or "").replace("\\", "/")
    without_file = _DOCKERFILE_SUFFIX_RE.sub("", normalized)
    trimmed = without_file.lstrip("/")
    return trimmed or "."


def dockerfile_dirs(items: Iterable[Mapping[str, object]], manifest: str = "Dockerfile") -> list[str]:
    pattern = re.compile(rf"(?:^|[/\\]){re.escape(manifest)}$", re.IGNORECASE)
    out: list[str] = []
    for item in items:
        if item.get("isFolder"):
            continue
        path = str(item.get("path") or item.get("serverItem") or "")
        if pattern.search(path):
            out.append(normalize_dockerfile_dir(path))
    return list(dict.fromkeys(out))


def default_template_values(
    identity: ResolvedIdentity,
    settings: AppSettings,
    *,
    options: FormOptions | None = None,
    **overrides: str | None,
) -> PipelineTemplateValues:
    """Fill every template value from overrides, discovered options, then settings."""

    options = options or FormOptions()
    environment = (
        overrides.get("environment")
        or options.environment
        or detect_environment(identity.source_branch, settings.environment_servers)
        or settings.default_environment
    )
    values = {
        "pool": overrides.get("pool") or settings.default_pool,
        "service": overrides.get("service")
        or options.service
        or service_name_from(identity.repository_name or identity.project_name)
        or "api",
        "environment": environment,
        "dockerfile_dir": overrides.get("dockerfile_dir")
        or (options.dockerfile_dirs[0] if options.dockerfile_dirs else None)
        or settings.default_dockerfile_dir,
        "repository_address": overrides.get("repository_address") or settings.default_repository_address,
        "container_registry_service": overrides.get("container_registry_service")
        or settings.default_container_registry_service,
        "komodo_server": overrides.get("komodo_server")
        or server_for_environment(environment, settings.environment_servers)
        or settings.default_komodo_server,
    }
    return PipelineTemplateValues.model_validate(values)


async def discover_form_options(
    client: DevOpsClient,
    identity: ResolvedIdentity,
    settings: AppSettings | None = None,
) -> FormOptions:
    """Pools, registries and Dockerfile directories for the form, never failing on lookups."""

    settings = settings or AppSettings()
    warnings: list[str] = []

    try:
        queues = await client.list_agent_queues()
    except HttpError as exc:
        logger.warning("Agent queues unavailable: %s", exc)
        queues = []
    try:
        registries = await client.list_container_registries()
    except HttpError as exc:
        logger.warning("Container registries unavailable: %s", exc)
        registries = []

    dirs: list[str] = []
    if identity.repository_id:
        branch = identity.source_branch if identity.source_branch != "unknown" else None
        try:
            items = await client.list_items(identity.repository_id, branch)
            dirs = dockerfile_dirs(items, settings.build_manifest_filename)
        except HttpError as exc:
            logger.warning("Dockerfile scan failed: %s", exc)
            warnings.append("Could not auto-detect Dockerfile location. Please fill it manually.")
        else:
            if not dirs:
                warnings.append("No Dockerfile was found in this branch. Please provide the directory manually.")

    environment = detect_environment(identity.source_branch, settings.environment_servers)
    return FormOptions(
        pools=merge_with_defaults(settings.pool_options, queues),
        registries=merge_with_defaults(settings.registry_options, registries),
        dockerfile_dirs=dirs,
        environment=environment,
        komodo_server=server_for_environment(environment, settings.environment_servers),
        service=service_name_from(identity.repository_name or identity.project_name),
        warnings=warnings,
    )
