"""Core configuration.

Why here:
- Centralizes environment variables (pydantic-settings) without leaking
  into the CLI.
- Lets adapters (HTTP, host SDK, templates) read config consistently.
"""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


APP_DIR_NAME = "pipeline-generator"


def get_user_config_dir() -> Path:
    """Per-user configuration directory (APPDATA, macOS Application Support or XDG)."""

    if sys.platform.startswith("win"):
        return Path(os.environ.get("APPDATA") or Path.home()) / APP_DIR_NAME
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    return Path(os.environ.get("XDG_CONFIG_HOME") or Path.home() / ".config") / APP_DIR_NAME


def get_user_env_file() -> Path:
    return get_user_config_dir() / ".env"


def _parse_env_lines(text: str) -> dict[str, str]:
    """`KEY=value` pairs; comments, blank lines and lines without `=` are skipped."""

    pairs: dict[str, str] = {}
    for line in (raw.strip() for raw in text.splitlines()):
        if line.startswith("#"):
            continue
        key, sep, value = line.partition("=")
        if sep and key.strip():
            pairs[key.strip()] = value.strip().strip("\"'")
    return pairs


def write_user_env_vars(values: dict[str, str | None], *, env_path: Path | None = None) -> Path:
    """Merge `values` into the user .env (the PAT written by `doctor configure` lives here)."""

    env_path = env_path or get_user_env_file()
    env_path.parent.mkdir(parents=True, exist_ok=True)

    merged = _parse_env_lines(env_path.read_text(encoding="utf-8")) if env_path.is_file() else {}
    merged.update({key: value for key, value in values.items() if value is not None})

    body = "".join(f"{key}={merged[key]}\n" for key in sorted(merged))
    env_path.write_text(f"# {APP_DIR_NAME} user config (.env)\n{body}", encoding="utf-8")
    return env_path


_DEFAULT_ENVIRONMENT_SERVERS = {
    "dev": "Development-192.168.62.19",
    "demo": "DEMO-192.168.62.91",
    "qa": "QA-192.168.62.153",
    "pro": "Production-31.7.65.195",
}


class AppSettings(BaseSettings):
    """Central application configuration.

    One typed contract for the CLI, the host bootstrap flow and the REST
    adapters. Values come from `PIPELINE_GEN_*` env vars, the project `.env`
    and the user-level `.env` written by `doctor configure`.
    """

    model_config = SettingsConfigDict(
        env_prefix="PIPELINE_GEN_",
        extra="ignore",
        case_sensitive=False,
        # Order: project first (dev), then the user's global config.
        env_file=(".env", str(get_user_env_file())),
        env_file_encoding="utf-8",
    )

    # HTTP
    http_timeout_seconds: float = Field(
        default=20.0,
        gt=0,
        description="Per-request timeout (seconds).",
    )
    user_agent: str = Field(
        default="pipeline-generator/0.1 (+https://local)",
        min_length=1,
        description="User-Agent sent to the REST backend and script mirrors.",
    )
    organization_url: str | None = Field(
        default=None,
        description="Collection/organization URL used by the headless CLI (e.g. https://dev.azure.com/org/).",
    )
    access_token: str | None = Field(
        default=None,
        description="Personal access token for the headless CLI. The only persisted credential.",
    )
    git_api_version: str = Field(default="7.1-preview.1", min_length=1)
    endpoints_api_version: str = Field(default="7.1-preview.4", min_length=1)
    error_excerpt_max_chars: int = Field(
        default=300,
        ge=40,
        le=5_000,
        description="Cap for sanitized backend error bodies carried by HttpError.",
    )

    # Host SDK
    sdk_gallery_url: str = Field(
        default=(
            "https://azure.buluttakin.com/_apis/public/gallery/publisher/localdev/extension/"
            "pipeline-generator/0.1.10/assetbyname/dist/lib/VSS.SDK.min.js"
        ),
        description="Public package mirror tried first when no ambient SDK is usable.",
    )
    sdk_local_assets: tuple[str, ...] = Field(
        default=("./lib/VSS.SDK.min.js", "./lib/VSS.SDK.js"),
        description="Bundled SDK copies, relative to the frame URL.",
    )
    sdk_host_script_path: str = Field(default="/_content/MS.VSS.SDK/scripts/VSS.SDK.min.js")
    sdk_ready_timeout_seconds: float = Field(default=10.0, gt=0)

    # Credentials
    token_scope: str | None = Field(
        default=None,
        description="Optional scope hint passed to the host getAccessToken call.",
    )
    token_max_attempts: int = Field(default=3, ge=1, le=10)
    token_backoff_seconds: float = Field(default=0.75, ge=0)

    # Cross-window bootstrap
    bootstrap_interval_seconds: float = Field(default=0.4, gt=0)
    bootstrap_max_attempts: int = Field(default=25, ge=1, le=500)
    bootstrap_timeout_seconds: float = Field(default=15.0, gt=0)

    # Provisioning
    branch_strategy: Literal["source", "canonical"] = Field(
        default="source",
        description="Push to the caller-resolved source branch or always to `canonical_branch`.",
    )
    canonical_branch: str = Field(default="main", min_length=1)
    target_repository_suffix: str = Field(default="_Azure_DevOps")
    template_path: str = Field(default="/pipeline-template.yml")
    commit_comment: str = Field(default="Add pipeline generator defaults")
    pipeline_name_suffix: str = Field(default="-pipeline")
    pipeline_folder: str = Field(default="\\")
    build_manifest_filename: str = Field(default="Dockerfile")

    # Template defaults
    default_pool: str = Field(default="PublishDockerAgent")
    default_environment: str = Field(default="demo")
    default_repository_address: str = Field(default="registry.buluttakin.com")
    default_container_registry_service: str = Field(default="BulutReg")
    default_komodo_server: str = Field(default="DEMO-192.168.62.91")
    default_dockerfile_dir: str = Field(default="**")
    pool_options: tuple[str, ...] = Field(default=("PublishDockerAgent", "Default"))
    registry_options: tuple[str, ...] = Field(default=("BulutReg", "DockerReg"))
    environment_servers: dict[str, str] = Field(
        default_factory=lambda: dict(_DEFAULT_ENVIRONMENT_SERVERS),
        description="Environment key -> deployment (Komodo) server.",
    )

    # Webhook listener / logging
    webhook_port: int = Field(default=3000, ge=1, le=65535)
    log_level: str = Field(default="INFO")
