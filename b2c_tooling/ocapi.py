"""Minimal OCAPI Data API client."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from b2c_tooling.errors import HTTPError

logger = logging.getLogger(__name__)

DEFAULT_API_VERSION = "v25_6"


class OcapiClient:
    """JSON client for ``/s/-/dw/data/<version>`` on an instance."""

    def __init__(
        self,
        hostname: str,
        auth: httpx.Auth | None = None,
        *,
        api_version: str = DEFAULT_API_VERSION,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 60.0,
    ):
        self.base_url = f"https://{hostname}/s/-/dw/data/{api_version}"
        self._client = httpx.AsyncClient(auth=auth, transport=transport, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(self, method: str, path: str, *, json: Any = None, params: dict[str, Any] | None = None) -> Any:
        """Send a request and return the decoded JSON body (None when empty)."""
        url = f"{self.base_url}/{path.lstrip('/')}"
        logger.debug("OCAPI request", extra={"method": method, "url": url})

        started = time.monotonic()
        response = await self._client.request(method, url, json=json, params=params)
        logger.debug(
            "OCAPI response",
            extra={
                "method": method,
                "url": url,
                "status": response.status_code,
                "duration_ms": round((time.monotonic() - started) * 1000),
            },
        )

        if response.is_error:
            raise HTTPError(
                f"{method} {path} failed: {response.status_code} {response.reason_phrase} - {response.text}",
                response,
                method,
            )
        if not response.content:
            return None
        return response.json()

    async def get(self, path: str, **kwargs: Any) -> Any:
        return await self.request("GET", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Any:
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Any:
        return await self.request("DELETE", path, **kwargs)
