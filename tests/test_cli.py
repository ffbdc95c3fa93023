from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest
from typer.testing import CliRunner

from cli import doctor
from cli import main as cli_main
from core.config import write_user_env_vars
from core.domain.errors import PushConflict
from core.domain.models import PipelineDefinition, ProvisionResult, RepositoryRef

runner = CliRunner()

RESULT = ProvisionResult(
    repository=RepositoryRef(id="repo-1", name="Contoso_Azure_DevOps", defaultBranch="refs/heads/main"),
    branch="main",
    branch_created=True,
    pushed=True,
    commit_id="a" * 40,
    default_branch_updated=True,
    pipeline=PipelineDefinition(id=7, name="Contoso_Azure_DevOps-pipeline"),
    pipeline_action="created",
    write_calls=4,
)


def test_render_prints_template() -> None:
    result = runner.invoke(
        cli_main.app,
        ["render", "--project-name", "Contoso", "--repo-name", "Orders", "--branch", "develop", "--pool", "Hosted"],
    )

    assert result.exit_code == 0, result.output
    assert "pool: Hosted\n" in result.output
    assert "service: orders\n" in result.output
    assert "environment: dev\n" in result.output


def test_provision_requires_connection_settings() -> None:
    result = runner.invoke(cli_main.app, ["provision", "--project-id", "p1", "--no-discover", "--quiet"])

    assert result.exit_code != 0


def test_provision_runs_and_exports(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    seen: dict[str, Any] = {}

    async def fake_provision(identity, credential, values, *, collection_uri, settings):
        seen.update(identity=identity, credential=credential, values=values, collection_uri=collection_uri)
        return RESULT

    monkeypatch.setattr(cli_main, "provision_identity", fake_provision)
    output = tmp_path / "out" / "result.json"

    result = runner.invoke(
        cli_main.app,
        [
            "provision",
            "--project-id", "p1",
            "--project-name", "Contoso",
            "--version", "GBrelease/2.0",
            "--org-url", "https://dev.azure.com/contoso",
            "--token", "pat",
            "--komodo-server", "QA-192.168.62.153",
            "--no-discover",
            "--quiet",
            "--output", str(output),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Contoso_Azure_DevOps" in result.output
    assert seen["identity"].source_branch == "release/2.0"
    assert seen["credential"].token == "pat"
    assert seen["values"].komodo_server == "QA-192.168.62.153"
    assert seen["collection_uri"] == "https://dev.azure.com/contoso"
    exported = json.loads(output.read_text(encoding="utf-8"))
    assert exported["pipeline_action"] == "created"
    assert exported["repository"]["name"] == "Contoso_Azure_DevOps"


def test_provision_failure_exits_with_error(monkeypatch: pytest.MonkeyPatch) -> None:
    async def failing_provision(*args: Any, **kwargs: Any) -> ProvisionResult:
        raise PushConflict("push scaffold", 409, "TF401028")

    monkeypatch.setattr(cli_main, "provision_identity", failing_provision)

    result = runner.invoke(
        cli_main.app,
        ["provision", "--project-id", "p1", "--org-url", "https://x/", "--token", "t", "--no-discover", "--quiet"],
    )

    assert result.exit_code == 1
    assert "Failed to push scaffold (409)" in result.output


def test_listen_self_test() -> None:
    result = runner.invoke(cli_main.app, ["listen", "--self-test"])

    assert result.exit_code == 0
    assert "Self-test passed" in result.output


@pytest.mark.parametrize(
    ("port", "env_port", "expected"),
    [
        ("8080", "9090", 8080),
        (None, "9090", 9090),
        (None, None, 3000),
        ("abc", None, 3000),
        ("70000", None, 3000),
    ],
)
def test_listener_port_resolution(port: str | None, env_port: str | None, expected: int) -> None:
    assert cli_main.resolve_listener_port(port, env_port) == expected


def test_listener_port_uses_configured_default() -> None:
    assert cli_main.resolve_listener_port(None, None, 4000) == 4000


def test_doctor_configure_writes_user_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    env_path = tmp_path / ".env"
    monkeypatch.setattr(doctor, "write_user_env_vars", lambda values: write_user_env_vars(values, env_path=env_path))

    result = runner.invoke(cli_main.app, ["doctor", "configure"], input="https://dev.azure.com/contoso/\nsecret-pat\n")

    assert result.exit_code == 0, result.output
    text = env_path.read_text(encoding="utf-8")
    assert "PIPELINE_GEN_ORGANIZATION_URL=https://dev.azure.com/contoso/" in text
    assert "PIPELINE_GEN_ACCESS_TOKEN=secret-pat" in text
