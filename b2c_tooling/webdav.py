"""WebDAV client for B2C Commerce instance file operations."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import datetime
from email.utils import parsedate_to_datetime
from typing import Any
from xml.etree import ElementTree

import httpx

from b2c_tooling.errors import HTTPError

logger = logging.getLogger(__name__)

DAV_NS = "{DAV:}"

UNZIP_FORM = {"method": "UNZIP"}

PROPFIND_BODY = """<?xml version="1.0" encoding="utf-8"?>
<D:propfind xmlns:D="DAV:">
  <D:prop>
    <D:displayname/>
    <D:resourcetype/>
    <D:getcontentlength/>
    <D:getlastmodified/>
    <D:getcontenttype/>
  </D:prop>
</D:propfind>"""


@dataclass(frozen=True)
class PropfindEntry:
    """One resource from a PROPFIND multistatus response."""

    href: str
    is_collection: bool
    display_name: str | None = None
    content_length: int | None = None
    last_modified: datetime | None = None
    content_type: str | None = None


class WebDavClient:
    """Async WebDAV client rooted at ``/on/demandware.servlet/webdav/Sites``.

    Paths passed to every method are relative to that root, e.g.
    ``Cartridges/v1/app_storefront/cartridge.zip``.
    """

    def __init__(
        self,
        hostname: str,
        auth: httpx.Auth | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 60.0,
    ):
        self.hostname = hostname
        self.base_url = f"https://{hostname}/on/demandware.servlet/webdav/Sites"
        self._client = httpx.AsyncClient(auth=auth, transport=transport, timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> WebDavClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    def build_url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    async def request(self, path: str, method: str = "GET", **kwargs: Any) -> httpx.Response:
        """Send a raw WebDAV request and return the response unchecked."""
        url = self.build_url(path)
        logger.debug("WebDAV request", extra={"method": method, "url": url})

        started = time.monotonic()
        response = await self._client.request(method, url, **kwargs)

        logger.debug(
            "WebDAV response",
            extra={
                "method": method,
                "url": url,
                "status": response.status_code,
                "duration_ms": round((time.monotonic() - started) * 1000),
            },
        )
        return response

    async def mkcol(self, path: str) -> None:
        """Create a collection. 405 means it already exists and is accepted."""
        response = await self.request(path, "MKCOL")
        if response.is_error and response.status_code != 405:
            raise self._error("MKCOL", response)

    async def put(self, path: str, content: bytes | str, content_type: str | None = None) -> None:
        headers = {"Content-Type": content_type} if content_type else None
        response = await self.request(path, "PUT", content=content, headers=headers)
        if response.is_error:
            raise self._error("PUT", response)

    async def get(self, path: str) -> bytes:
        response = await self.request(path, "GET")
        if response.is_error:
            raise self._error("GET", response)
        return response.content

    async def delete(self, path: str) -> None:
        response = await self.request(path, "DELETE")
        if response.is_error:
            raise self._error("DELETE", response)

    async def exists(self, path: str) -> bool:
        response = await self.request(path, "HEAD")
        return response.is_success

    async def unzip(self, path: str) -> None:
        """Ask the server to extract an uploaded archive next to itself."""
        response = await self.request(path, "POST", data=UNZIP_FORM)
        if response.is_error:
            raise HTTPError(
                f"Unzip failed: {response.status_code} {response.reason_phrase} - {response.text}",
                response,
                "POST",
            )

    async def propfind(self, path: str, depth: str = "1") -> list[PropfindEntry]:
        """List a collection. ``depth`` is "0", "1" or "infinity"."""
        response = await self.request(
            path,
            "PROPFIND",
            content=PROPFIND_BODY,
            headers={"Depth": depth, "Content-Type": "application/xml"},
        )
        if response.is_error:
            raise self._error("PROPFIND", response)
        return parse_propfind(response.text)

    def _error(self, method: str, response: httpx.Response) -> HTTPError:
        return HTTPError(f"{method} failed: {response.status_code} {response.reason_phrase}", response, method)


def parse_propfind(xml: str) -> list[PropfindEntry]:
    """Parse a DAV multistatus document into entries."""
    entries: list[PropfindEntry] = []
    root = ElementTree.fromstring(xml)

    for node in root.iter(f"{DAV_NS}response"):
        href = node.findtext(f"{DAV_NS}href") or ""
        prop = node.find(f"{DAV_NS}propstat/{DAV_NS}prop")
        if prop is None:
            continue

        resource_type = prop.find(f"{DAV_NS}resourcetype")
        is_collection = resource_type is not None and resource_type.find(f"{DAV_NS}collection") is not None

        length = prop.findtext(f"{DAV_NS}getcontentlength")
        modified = prop.findtext(f"{DAV_NS}getlastmodified")
        content_type = prop.findtext(f"{DAV_NS}getcontenttype")

        entries.append(
            PropfindEntry(
                href=href,
                is_collection=is_collection,
                display_name=prop.findtext(f"{DAV_NS}displayname") or None,
                content_length=int(length) if length else None,
                last_modified=parsedate_to_datetime(modified) if modified else None,
                content_type=content_type if content_type and content_type != "null" else None,
            )
        )

    return entries
