from __future__ import annotations

from pathlib import Path

import pytest

from core.config import AppSettings, write_user_env_vars


def test_write_user_env_vars_merges_existing(tmp_path: Path) -> None:
    env_path = tmp_path / "config" / ".env"
    env_path.parent.mkdir()
    env_path.write_text("# old\nPIPELINE_GEN_LOG_LEVEL='DEBUG'\nnot a pair\n", encoding="utf-8")

    write_user_env_vars({"PIPELINE_GEN_ACCESS_TOKEN": "pat", "IGNORED": None}, env_path=env_path)

    lines = env_path.read_text(encoding="utf-8").splitlines()
    assert lines == [
        "# pipeline-generator user config (.env)",
        "PIPELINE_GEN_ACCESS_TOKEN=pat",
        "PIPELINE_GEN_LOG_LEVEL=DEBUG",
    ]


def test_settings_read_prefixed_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PIPELINE_GEN_BRANCH_STRATEGY", "canonical")
    monkeypatch.setenv("PIPELINE_GEN_CANONICAL_BRANCH", "trunk")
    monkeypatch.setenv("PIPELINE_GEN_TOKEN_MAX_ATTEMPTS", "5")

    settings = AppSettings(_env_file=None)

    assert settings.branch_strategy == "canonical"
    assert settings.canonical_branch == "trunk"
    assert settings.token_max_attempts == 5


def test_settings_defaults() -> None:
    settings = AppSettings(_env_file=None)

    assert settings.git_api_version == "7.1-preview.1"
    assert settings.template_path == "/pipeline-template.yml"
    assert settings.target_repository_suffix == "_Azure_DevOps"
    assert settings.environment_servers["pro"] == "Production-31.7.65.195"
