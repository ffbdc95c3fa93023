"""JSON export of a provisioning run.

Why JSON:
- Lets CI jobs and scripts read what was created or updated.
- Keeps a record of the run without re-querying the backend.
"""

from __future__ import annotations

import json
from pathlib import Path

from core.domain.models import ProvisionResult


def export_result_json(*, result: ProvisionResult, output_path: Path) -> Path:
    """Export `ProvisionResult` as UTF-8 JSON with a stable layout."""

    output_path.parent.mkdir(parents=True, exist_ok=True)
    payload = result.model_dump(mode="json")
    output_path.write_text(
        json.dumps(payload, ensure_ascii=False, indent=2, sort_keys=True) + "\n",
        encoding="utf-8",
    )
    return output_path
