"""Service Hook listener for local webhook checks.

Accepts POSTed Azure DevOps service-hook payloads on any path, logs a
one-line summary (plus the raw body unless quiet) and always answers
`200 {"status": "ok"}`.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)

SELF_TEST_PAYLOAD: dict[str, Any] = {
    "id": 42,
    "eventType": "git.push",
    "resourceContainers": {"collection": {"baseUrl": "https://dev.azure.local/DefaultCollection"}},
    "resource": {
        "project": {"name": "SampleProject"},
        "repository": {"name": "SampleRepo"},
    },
}


def _get(source: Any, *path: str) -> Any:
    current = source
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def summarize_payload(payload: dict[str, Any] | None) -> str:
    payload = payload or {}
    event_type = payload.get("eventType") or _get(payload, "resource", "eventType") or "unknown"
    notification_id = payload.get("notificationId")
    if notification_id is None:
        notification_id = payload.get("id")
    if notification_id is None:
        notification_id = _get(payload, "resourceContainers", "notificationId")
    if notification_id is None:
        notification_id = "n/a"
    collection = _get(payload, "resourceContainers", "collection", "baseUrl") or "unknown collection"
    project = (
        _get(payload, "resource", "project", "name")
        or _get(payload, "resource", "project", "id")
        or "unknown project"
    )
    repo = (
        _get(payload, "resource", "repository", "name")
        or _get(payload, "resource", "repository", "id")
        or "unknown repo"
    )
    return (
        f"eventType={event_type} notificationId={notification_id} "
        f"project={project} repo={repo} collection={collection}"
    )


def run_self_test() -> str:
    """Exercise the summary parser without opening a port."""

    summary = summarize_payload(SELF_TEST_PAYLOAD)
    if "git.push" not in summary or "SampleRepo" not in summary:
        raise RuntimeError(f"Unexpected summary output: {summary}")
    return summary


def create_listener_app(*, verbose: bool = True) -> FastAPI:
    app = FastAPI(title="pipeline-generator service hook listener")

    @app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    async def receive(request: Request, path: str) -> JSONResponse:
        body = (await request.body()).decode("utf-8", errors="replace")
        parsed: dict[str, Any] | None = None
        if body:
            try:
                data = json.loads(body)
            except json.JSONDecodeError as exc:
                logger.warning("Received non-JSON payload: %s", exc)
            else:
                parsed = data if isinstance(data, dict) else {}
        else:
            parsed = {}

        sender = request.headers.get("x-forwarded-for") or (request.client.host if request.client else None)
        logger.info("%s /%s from %s", request.method, path, sender or "unknown sender")
        if parsed is not None:
            logger.info("  %s", summarize_payload(parsed))
        if verbose and body:
            logger.info("  raw payload: %s", body)
        return JSONResponse({"status": "ok"})

    return app
