"""Idempotent provisioning of the generated repository and pipeline.

Steps (each safe to re-run):
1. ensure the target repository exists (never renamed or mutated)
2. read the branch tip
3. push the rendered template with `oldObjectId` = the tip just read
4. point the repository default branch at the target branch
5. create or update the pipeline definition, only when it differs

There is no rollback: a run that fails after step 3 leaves a pushed
template that the next run reconciles.
"""

from __future__ import annotations

import logging
import re

import httpx

from adapters.devops_client import DevOpsClient
from adapters.template_renderer import render_pipeline_template
from core.config import AppSettings
from core.domain.errors import ConfigurationDriftError, MissingContext
from core.domain.models import (
    Credential,
    PipelineConfiguration,
    PipelineDefinition,
    PipelineRepository,
    PipelineTemplateValues,
    ProvisionResult,
    RepositoryRef,
    ResolvedIdentity,
    strip_heads_prefix,
)

logger = logging.getLogger(__name__)

_NON_ALNUM_RE = re.compile(r"[^A-Za-z0-9]")


def sanitize_project_name(name: str) -> str:
    return _NON_ALNUM_RE.sub("_", name)


def target_repository_name(project_name: str | None, settings: AppSettings) -> str:
    return f"{sanitize_project_name(project_name or 'project')}{settings.target_repository_suffix}"


def pipeline_name_for(repository_name: str, settings: AppSettings) -> str:
    return f"{repository_name}{settings.pipeline_name_suffix}"


def _normalize_path(path: str | None) -> str:
    return "/" + (path or "").replace("\\", "/").lstrip("/")


def _normalize_ref(ref: str | None) -> str:
    return strip_heads_prefix(ref or "")


def pipeline_drift(existing: PipelineDefinition, desired: PipelineDefinition) -> list[str]:
    """Names of the configuration fields where `existing` differs from `desired`."""

    if desired.configuration is None:
        return []
    if existing.configuration is None:
        return ["path", "repository.id", "repository.defaultBranch"]

    have, want = existing.configuration, desired.configuration
    fields: list[str] = []
    if _normalize_path(have.path) != _normalize_path(want.path):
        fields.append("path")
    if have.repository.id.lower() != want.repository.id.lower():
        fields.append("repository.id")
    if _normalize_ref(have.repository.default_branch) != _normalize_ref(want.repository.default_branch):
        fields.append("repository.defaultBranch")
    return fields


def check_pipeline_drift(existing: PipelineDefinition, desired: PipelineDefinition) -> None:
    fields = pipeline_drift(existing, desired)
    if fields:
        raise ConfigurationDriftError(desired.name, fields)


class ProvisioningEngine:
    def __init__(self, client: DevOpsClient, settings: AppSettings | None = None) -> None:
        self._client = client
        self._settings = settings or AppSettings()

    async def ensure_repository(self, identity: ResolvedIdentity) -> RepositoryRef:
        name = target_repository_name(identity.project_name or identity.project_id, self._settings)
        for repository in await self._client.list_repositories():
            if repository.name == name:
                logger.info("Repository %s already exists", name)
                return repository
        logger.info("Creating repository %s", name)
        return await self._client.create_repository(name)

    async def push_template(
        self,
        repository: RepositoryRef,
        branch: str,
        content: str,
    ) -> tuple[bool, bool, str | None]:
        """Push `content` unless the branch already holds it.

        Returns (pushed, branch_created, commit_id).
        """

        path = self._settings.template_path
        # Tip is read right before the write; never reuse one from an earlier request.
        tip = await self._client.get_branch_tip(repository.id, branch)

        change_type = "add"
        if not tip.is_new_branch:
            current = await self._client.get_item_content(repository.id, path, branch)
            if current == content:
                logger.info("%s on %s is up to date", path, branch)
                return False, False, None
            if current is not None:
                change_type = "edit"

        push = await self._client.create_push(
            repository.id,
            tip,
            path=path,
            content=content,
            comment=self._settings.commit_comment,
            change_type=change_type,
        )
        commits = push.get("commits") or []
        commit_id = commits[0].get("commitId") if commits and isinstance(commits[0], dict) else None
        if tip.is_new_branch:
            logger.info("Created branch %s with %s", branch, path)
        else:
            logger.info("Pushed %s to %s (%s)", path, branch, change_type)
        return True, tip.is_new_branch, commit_id

    async def ensure_default_branch(self, repository: RepositoryRef, branch: str) -> tuple[RepositoryRef, bool]:
        ref_name = f"refs/heads/{branch}"
        if repository.default_branch == ref_name:
            return repository, False
        logger.info("Setting default branch of %s to %s", repository.name, ref_name)
        updated = await self._client.update_default_branch(repository.id, ref_name)
        return updated, True

    def desired_pipeline(self, repository: RepositoryRef, branch: str) -> PipelineDefinition:
        return PipelineDefinition(
            name=pipeline_name_for(repository.name, self._settings),
            folder=self._settings.pipeline_folder,
            configuration=PipelineConfiguration(
                path=self._settings.template_path,
                repository=PipelineRepository(
                    id=repository.id,
                    name=repository.name,
                    default_branch=f"refs/heads/{branch}",
                ),
            ),
        )

    async def upsert_pipeline(
        self,
        desired: PipelineDefinition,
    ) -> tuple[PipelineDefinition, str, list[str]]:
        existing = await self._client.find_pipeline(desired.name)
        if existing is None or existing.id is None:
            logger.info("Creating pipeline %s", desired.name)
            return await self._client.create_pipeline(desired), "created", []

        definition, raw = await self._client.get_pipeline_definition(existing.id)
        try:
            check_pipeline_drift(definition, desired)
        except ConfigurationDriftError as drift:
            logger.info("%s; updating", drift.message)
            updated = await self._client.update_pipeline(raw, desired)
            return updated, "updated", drift.fields
        return definition, "unchanged", []

    async def provision(
        self,
        identity: ResolvedIdentity,
        values: PipelineTemplateValues,
    ) -> ProvisionResult:
        if not identity.project_id:
            raise MissingContext("Project context was not provided by the branch action or hub.")

        content = render_pipeline_template(values)
        repository = await self.ensure_repository(identity)
        branch = identity.target_branch

        pushed, branch_created, commit_id = await self.push_template(repository, branch, content)
        repository, default_updated = await self.ensure_default_branch(repository, branch)
        pipeline, action, drift_fields = await self.upsert_pipeline(self.desired_pipeline(repository, branch))

        return ProvisionResult(
            repository=repository,
            branch=branch,
            branch_created=branch_created,
            pushed=pushed,
            commit_id=commit_id,
            default_branch_updated=default_updated,
            pipeline=pipeline,
            pipeline_action=action,
            drift_fields=drift_fields,
            write_calls=self._client.write_calls,
        )


async def provision(
    identity: ResolvedIdentity,
    credential: Credential | None,
    values: PipelineTemplateValues,
    *,
    collection_uri: str,
    settings: AppSettings | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ProvisionResult:
    """Run every provisioning step for `identity` with a client bound to `credential`."""

    settings = settings or AppSettings()
    async with DevOpsClient(
        collection_uri=collection_uri,
        project_id=identity.project_id,
        credential=credential,
        settings=settings,
        transport=transport,
    ) as client:
        return await ProvisioningEngine(client, settings).provision(identity, values)
