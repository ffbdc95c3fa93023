"""httpx wrapper.

Why a wrapper:
- Standardizes timeouts, headers and auth for every REST call and script
  preflight.
- Eases testing: callers accept a `transport` so tests plug in
  `httpx.MockTransport`.
"""

from __future__ import annotations

import re

import httpx
from bs4 import BeautifulSoup

from core.config import AppSettings
from core.domain.models import Credential

_WHITESPACE_RE = re.compile(r"\s+")


def build_async_client(
    settings: AppSettings | None = None,
    *,
    base_url: str = "",
    extra_headers: dict[str, str] | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    """Create an `httpx.AsyncClient` with safe defaults.

    Why a builder:
    - Centralizes timeouts/headers so every adapter behaves the same.
    - One seam for tests (mock transport).
    """

    settings = settings or AppSettings()
    headers: dict[str, str] = {
        "User-Agent": settings.user_agent,
        "Accept": "application/json",
    }
    if extra_headers:
        headers.update(extra_headers)
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=httpx.Timeout(settings.http_timeout_seconds),
        follow_redirects=True,
        headers=headers,
        transport=transport,
    )


def auth_headers(credential: Credential) -> dict[str, str]:
    """Headers for authenticated REST calls.

    `X-TFS-FedAuthRedirect: Suppress` makes the host answer 401 instead of
    redirecting to an HTML sign-in page.
    """

    return {
        "Authorization": credential.authorization_header(),
        "X-TFS-FedAuthRedirect": "Suppress",
    }


def sanitize_error_body(body: str, *, max_chars: int = 300) -> str:
    """Strip markup and scripts from a backend error body and cap its length."""

    if not body:
        return ""

    text = body
    if "<" in body and ">" in body:
        soup = BeautifulSoup(body, "html.parser")
        for tag in soup(["script", "style", "noscript"]):
            tag.decompose()
        text = soup.get_text(" ")

    text = _WHITESPACE_RE.sub(" ", text).strip()
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1].rstrip() + "…"
