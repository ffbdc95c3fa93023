"""Host SDK discovery.

Order:
1) an ambient SDK already present in the frame (reused as-is when complete)
2) the public package mirror
3) bundled local assets
4) the host's own platform script path

Every candidate is fetched with httpx first: some hosts answer a script URL
with an HTML sign-in page and a 200, which must count as a load failure.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urljoin

import httpx

from adapters.host_sdk.normalizer import has_core_capabilities, normalize_sdk
from adapters.http_client import build_async_client
from core.config import AppSettings
from core.domain.errors import SdkUnavailable
from core.interfaces.host_sdk import HostSdk, ScriptRuntime

logger = logging.getLogger(__name__)

_SCRIPT_CONTENT_TYPES = frozenset(
    {
        "application/javascript",
        "application/x-javascript",
        "application/ecmascript",
        "text/javascript",
        "text/ecmascript",
    }
)


def is_script_content_type(value: str | None) -> bool:
    media_type = (value or "").split(";", 1)[0].strip().lower()
    return media_type in _SCRIPT_CONTENT_TYPES


class SdkLoader:
    """Loads the host SDK once per session.

    Concurrent `load()` callers share one in-flight task; a failed load is
    forgotten so a later call can try again.
    """

    def __init__(
        self,
        runtime: ScriptRuntime,
        *,
        frame_url: str,
        host_base_uri: str,
        settings: AppSettings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._runtime = runtime
        self._frame_url = frame_url
        self._host_base_uri = host_base_uri.rstrip("/")
        self._settings = settings or AppSettings()
        self._transport = transport
        self._task: asyncio.Task[HostSdk] | None = None

    def candidate_sources(self) -> list[str]:
        sources = [self._settings.sdk_gallery_url]
        sources.extend(urljoin(self._frame_url, path) for path in self._settings.sdk_local_assets)
        sources.append(f"{self._host_base_uri}{self._settings.sdk_host_script_path}")
        return sources

    async def load(self) -> HostSdk:
        if self._task is None:
            self._task = asyncio.ensure_future(self._load())
        task = self._task
        try:
            return await asyncio.shield(task)
        except Exception:
            if self._task is task:
                self._task = None
            raise

    async def _load(self) -> HostSdk:
        try:
            ambient = self._runtime.ambient_sdk()
        except Exception as exc:
            logger.warning("Ambient host SDK not reachable: %s", exc)
            ambient = None
        if has_core_capabilities(ambient):
            logger.info("Using ambient host SDK")
            return normalize_sdk(ambient, fallback_host_uri=self._host_base_uri)

        last_error: BaseException | None = None
        async with build_async_client(
            self._settings,
            extra_headers={"Accept": "application/javascript, text/javascript, */*;q=0.1"},
            transport=self._transport,
        ) as client:
            for url in self.candidate_sources():
                try:
                    source = await self._preflight(client, url)
                    raw = await self._runtime.load_script(url, source)
                except Exception as exc:
                    logger.warning("Host SDK candidate %s failed: %s", url, exc)
                    last_error = exc
                    continue

                if has_core_capabilities(raw):
                    logger.info("Loaded host SDK from %s", url)
                    return normalize_sdk(raw, fallback_host_uri=self._host_base_uri)

                logger.warning("Host SDK from %s loaded but did not initialize", url)
                last_error = SdkUnavailable(f"Host SDK was loaded from {url} but did not initialize.")

        raise SdkUnavailable("Failed to load the host SDK from every candidate source.", last_error=last_error)

    async def _preflight(self, client: httpx.AsyncClient, url: str) -> str:
        response = await client.get(url)
        if not response.is_success:
            raise SdkUnavailable(f"Failed to load host SDK from {url} ({response.status_code})")
        content_type = response.headers.get("content-type")
        if not is_script_content_type(content_type):
            raise SdkUnavailable(
                f"Expected a script from {url} but received '{content_type or 'no content-type'}'"
            )
        return response.text
