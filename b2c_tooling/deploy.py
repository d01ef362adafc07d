"""One-shot cartridge deployment."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import httpx

from b2c_tooling.archive import add_directory, build_archive, deploy_archive
from b2c_tooling.cartridges import CartridgeMapping, find_cartridges
from b2c_tooling.errors import B2CError, ConfigurationError
from b2c_tooling.versions import reload_code_version

if TYPE_CHECKING:
    from b2c_tooling.instance import B2CInstance

logger = logging.getLogger(__name__)


@dataclass
class DeployResult:
    """Outcome of :func:`find_and_deploy_cartridges`."""

    cartridges: list[CartridgeMapping]
    code_version: str
    reloaded: bool = False


def _require_code_version(instance: B2CInstance, action: str) -> str:
    code_version = instance.config.code_version
    if not code_version:
        raise ConfigurationError(f"Code version required for {action}")
    return code_version


async def delete_cartridges(instance: B2CInstance, cartridges: list[CartridgeMapping]) -> None:
    """Delete cartridge directories from the code version, ignoring missing ones."""
    code_version = _require_code_version(instance, "cartridge deletion")

    for cartridge in cartridges:
        remote_path = f"Cartridges/{code_version}/{cartridge.dest}"
        try:
            await instance.webdav.delete(remote_path)
            logger.debug("Deleted cartridge", extra={"path": remote_path})
        except (B2CError, httpx.HTTPError):
            logger.debug("Could not delete cartridge (may not exist)", extra={"path": remote_path})


async def upload_cartridges(instance: B2CInstance, cartridges: list[CartridgeMapping]) -> None:
    """Zip whole cartridges under ``<code version>/<dest>`` and deploy them."""
    code_version = _require_code_version(instance, "cartridge upload")
    if not cartridges:
        raise B2CError("No cartridges to upload")

    files: list[tuple[Path, str]] = []
    for cartridge in cartridges:
        add_directory(files, cartridge.src, f"{code_version}/{cartridge.dest}")

    data, _ = await asyncio.to_thread(build_archive, files, compresslevel=9)
    logger.debug("Archive created", extra={"size": len(data), "file_count": len(files)})

    upload_path = f"Cartridges/_sync-{int(time.time() * 1000)}.zip"
    await deploy_archive(instance.webdav, upload_path, data)

    logger.debug(
        "Uploaded cartridges",
        extra={"hostname": instance.config.hostname, "code_version": code_version, "count": len(cartridges)},
    )


async def find_and_deploy_cartridges(
    instance: B2CInstance,
    directory: Path | str,
    *,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] | None = None,
    reload: bool = False,
    delete: bool = False,
) -> DeployResult:
    """Find cartridges below ``directory`` and deploy them to the code version."""
    code_version = _require_code_version(instance, "deployment")

    cartridges = find_cartridges(directory, include=include, exclude=exclude)
    if not cartridges:
        raise B2CError(f"No cartridges found in {directory}")

    if delete:
        await delete_cartridges(instance, cartridges)

    await upload_cartridges(instance, cartridges)

    reloaded = False
    if reload:
        try:
            await reload_code_version(instance, code_version)
            reloaded = True
        except B2CError as exc:
            logger.debug("Could not reload code version", extra={"error": str(exc)})

    return DeployResult(cartridges=cartridges, code_version=code_version, reloaded=reloaded)
