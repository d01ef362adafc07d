"""In-memory zip archives and the WebDAV upload/unzip/cleanup chain."""

from __future__ import annotations

import io
import logging
import zipfile
from collections.abc import Iterable
from pathlib import Path
from typing import Protocol

logger = logging.getLogger(__name__)

ZIP_CONTENT_TYPE = "application/zip"


class ArchiveTransport(Protocol):
    """WebDAV operations needed to deploy an archive."""

    async def put(self, path: str, content: bytes, content_type: str | None = None) -> None: ...

    async def unzip(self, path: str) -> None: ...

    async def delete(self, path: str) -> None: ...


def build_archive(files: Iterable[tuple[Path, str]], compresslevel: int = 5) -> tuple[bytes, list[str]]:
    """Zip ``(local path, archive name)`` pairs.

    Files that cannot be read are logged and left out. Returns the archive
    bytes and the archive names actually written.
    """
    buffer = io.BytesIO()
    written: list[str] = []

    with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED, compresslevel=compresslevel) as archive:
        for src, name in files:
            try:
                content = src.read_bytes()
            except OSError as exc:
                logger.warning("Failed to add file to archive", extra={"file": str(src), "error": str(exc)})
                continue
            archive.writestr(name, content)
            written.append(name)

    return buffer.getvalue(), written


def add_directory(files: list[tuple[Path, str]], directory: Path, prefix: str) -> None:
    """Append every regular file below ``directory`` under ``prefix``."""
    for path in sorted(directory.rglob("*")):
        if path.is_file():
            files.append((path, f"{prefix}/{path.relative_to(directory).as_posix()}"))


async def deploy_archive(webdav: ArchiveTransport, remote_path: str, data: bytes) -> None:
    """Upload an archive, extract it on the server and delete the archive."""
    await webdav.put(remote_path, data, ZIP_CONTENT_TYPE)
    logger.debug("Archive uploaded", extra={"upload_path": remote_path, "size": len(data)})

    await webdav.unzip(remote_path)
    logger.debug("Archive unzipped", extra={"upload_path": remote_path})

    await webdav.delete(remote_path)
    logger.debug("Temporary archive deleted", extra={"upload_path": remote_path})
