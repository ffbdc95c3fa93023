"""Project/repository/branch resolution.

Sources, highest precedence first:
- query-string hints placed on the generator URL by the menu action
- the action-invocation context (branch/repository context menus)
- the host's ambient web context

Each field takes the first non-empty, non-placeholder value on its own, so a
malformed source only loses the fields it was supposed to provide.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Iterable
from urllib.parse import urlsplit

from core.config import AppSettings
from core.domain.errors import MissingContext
from core.domain.models import UNKNOWN_BRANCH, HostContext, ResolvedIdentity, strip_heads_prefix
from core.interfaces.host_sdk import HostSdk

logger = logging.getLogger(__name__)

_PLACEHOLDERS = frozenset({"undefined", "null", "none", "unknown branch", "(unknown branch)"})

# Action-context paths that may carry the branch, in lookup order.
_BRANCH_ALIASES: tuple[tuple[str, ...], ...] = (
    ("branch", "name"),
    ("branch",),
    ("gitRef", "name"),
    ("ref",),
    ("refName",),
    ("sourceBranch",),
    ("branchName",),
)

# Version-control prefixes used by `version` query values (GBmain, GTv1.0, GCabc...).
_VERSION_BRANCH_PREFIX = "GB"


def clean_value(value: Any) -> str | None:
    """Return `value` stripped, or None for empty and placeholder values."""

    if not isinstance(value, str):
        return None
    text = value.strip()
    if not text or text.lower() in _PLACEHOLDERS:
        return None
    return text


def _dig(source: Any, path: Iterable[str]) -> Any:
    current = source
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _first(*candidates: Any) -> str | None:
    for candidate in candidates:
        value = clean_value(candidate)
        if value is not None:
            return value
    return None


def branch_from_version(version: str | None) -> str | None:
    """`GBrelease/1.0` -> `release/1.0`; non-branch versions yield None."""

    value = clean_value(version)
    if value is None:
        return None
    if value.startswith(_VERSION_BRANCH_PREFIX):
        value = value[len(_VERSION_BRANCH_PREFIX) :]
    elif value[:2] in ("GT", "GC"):
        return None
    return clean_value(strip_heads_prefix(value))


def _safe_web_context(host_sdk: HostSdk | None) -> dict[str, Any]:
    if host_sdk is None:
        return {}
    try:
        context = host_sdk.get_web_context()
    except Exception as exc:
        logger.warning("Host web context unavailable: %s", exc)
        return {}
    return context if isinstance(context, Mapping) else {}


def resolve_branch(
    raw_context: Mapping[str, Any],
    query_params: Mapping[str, str],
    web_context: Mapping[str, Any],
) -> str:
    """Resolve the source branch name. Never raises; falls back to `unknown`."""

    aliases = [_dig(raw_context, path) for path in _BRANCH_ALIASES]
    branch = _first(query_params.get("branch"), *aliases)
    if branch is None:
        branch = branch_from_version(query_params.get("version"))
    if branch is None:
        branch = _first(
            _dig(web_context, ("repository", "defaultBranch")),
            _dig(raw_context, ("gitRepository", "defaultBranch")),
            _dig(raw_context, ("repository", "defaultBranch")),
        )
    if branch is None:
        return UNKNOWN_BRANCH
    return strip_heads_prefix(branch)


def choose_target_branch(source_branch: str, settings: AppSettings) -> str:
    if settings.branch_strategy == "canonical" or source_branch == UNKNOWN_BRANCH:
        return settings.canonical_branch
    return source_branch


def resolve_identity(
    raw_context: Mapping[str, Any] | None,
    query_params: Mapping[str, str] | None,
    host_sdk: HostSdk | None,
    settings: AppSettings | None = None,
) -> ResolvedIdentity:
    settings = settings or AppSettings()
    raw_context = raw_context if isinstance(raw_context, Mapping) else {}
    query_params = query_params or {}
    web = _safe_web_context(host_sdk)

    action_project = _dig(raw_context, ("project",)) or _dig(raw_context, ("gitRepository", "project"))
    action_repo = _dig(raw_context, ("gitRepository",)) or _dig(raw_context, ("repository",))

    project_id = _first(
        query_params.get("projectId"),
        _dig(action_project, ("id",)),
        raw_context.get("projectId"),
        _dig(web, ("project", "id")),
    )
    project_name = _first(
        query_params.get("projectName"),
        _dig(action_project, ("name",)),
        _dig(web, ("project", "name")),
        project_id,
    )
    repository_id = _first(
        query_params.get("repoId"),
        _dig(action_repo, ("id",)),
        raw_context.get("repositoryId"),
        _dig(web, ("repository", "id")),
    )
    repository_name = _first(
        query_params.get("repoName"),
        _dig(action_repo, ("name",)),
        _dig(web, ("repository", "name")),
    )

    source_branch = resolve_branch(raw_context, query_params, web)
    identity = ResolvedIdentity(
        project_id=project_id,
        project_name=project_name,
        repository_id=repository_id,
        repository_name=repository_name,
        source_branch=source_branch,
        target_branch=choose_target_branch(source_branch, settings),
    )
    logger.debug("Resolved identity %s", identity)
    return identity


def require_project(identity: ResolvedIdentity) -> str:
    if not identity.project_id:
        raise MissingContext("Project context was not provided by the branch action or hub.")
    return identity.project_id


def derive_host_base(referrer: str | None, frame_origin: str) -> str:
    """Host origin from the document referrer, keeping an on-premises `/tfs` virtual dir."""

    if not referrer:
        return frame_origin.rstrip("/")
    parts = urlsplit(referrer)
    if not parts.scheme or not parts.netloc:
        return frame_origin.rstrip("/")
    origin = f"{parts.scheme}://{parts.netloc}"
    segments = [segment for segment in parts.path.split("/") if segment]
    if segments and segments[0].lower() == "tfs":
        return f"{origin}/tfs"
    return origin


def resolve_host_context(host_sdk: HostSdk | None, *, host_base_uri: str) -> HostContext:
    web = _safe_web_context(host_sdk)
    host: Mapping[str, Any] = {}
    if host_sdk is not None:
        try:
            host = _dig(host_sdk.get_host_context(), ("host",)) or {}
        except Exception as exc:
            logger.warning("Host context unavailable: %s", exc)
        if not isinstance(host, Mapping):
            host = {}

    collection_uri = _first(_dig(web, ("collection", "uri")), _dig(host, ("uri",)), host_base_uri)
    return HostContext(
        origin_base_uri=host_base_uri,
        host_kind=str(host["hostType"]) if host.get("hostType") is not None else None,
        collection_uri=collection_uri or host_base_uri,
    )
