"""Rendering of the generated pipeline artifact.

Why in adapters:
- The YAML layout lives in a Jinja2 template next to this module.
- The Core only knows `PipelineTemplateValues`.
- Scalars are emitted by PyYAML so a value always loads back as the same string.
"""

from __future__ import annotations

from pathlib import Path

import yaml
from jinja2 import Environment, FileSystemLoader, StrictUndefined

from core.domain.models import PipelineTemplateValues

_TEMPLATES_DIR = Path(__file__).resolve().parent / "templates"
_TEMPLATE_NAME = "pipeline-template.yml.j2"


def yaml_scalar(value: object) -> str:
    """Render `value` as a single-line YAML string scalar, quoted only when needed."""

    text = "" if value is None else str(value)
    # Line breaks must stay escaped to keep the mapping one key per line.
    style = '"' if ("\n" in text or "\r" in text) else None
    dumped = yaml.safe_dump(
        text,
        default_style=style,
        default_flow_style=True,
        allow_unicode=True,
        width=float("inf"),
    )
    return dumped.removesuffix("\n...\n").rstrip("\n")


def _get_env() -> Environment:
    env = Environment(
        loader=FileSystemLoader(str(_TEMPLATES_DIR)),
        autoescape=False,
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    env.filters["yaml_scalar"] = yaml_scalar
    return env


def render_pipeline_template(values: PipelineTemplateValues) -> str:
    """Render the YAML committed at the deterministic template path."""

    return _get_env().get_template(_TEMPLATE_NAME).render(values=values)
