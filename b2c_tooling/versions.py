"""Code version management through OCAPI."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, ConfigDict, Field

from b2c_tooling.errors import CodeVersionError

if TYPE_CHECKING:
    from b2c_tooling.instance import B2CInstance

logger = logging.getLogger(__name__)


class CodeVersion(BaseModel):
    """A code version as returned by ``/code_versions``."""

    model_config = ConfigDict(extra="ignore")

    id: str
    active: bool = False
    rollback: bool = False
    last_modification_time: datetime | None = None
    cartridges: list[str] = Field(default_factory=list)
    compatibility_mode: str | None = None
    web_dav_url: str | None = None


async def list_code_versions(instance: B2CInstance) -> list[CodeVersion]:
    payload: dict[str, Any] = await instance.ocapi.get("code_versions") or {}
    return [CodeVersion.model_validate(item) for item in payload.get("data", [])]


async def get_active_code_version(instance: B2CInstance) -> CodeVersion | None:
    for version in await list_code_versions(instance):
        if version.active:
            return version
    return None


async def activate_code_version(instance: B2CInstance, code_version_id: str) -> None:
    logger.debug("Activating code version", extra={"code_version": code_version_id})
    await instance.ocapi.patch(f"code_versions/{code_version_id}", json={"active": True})


async def reload_code_version(instance: B2CInstance, code_version_id: str | None = None) -> None:
    """Re-activate a code version so the instance reloads its code.

    When the target is already active, another version is activated first and
    then the target again.
    """
    versions = await list_code_versions(instance)
    active = next((v for v in versions if v.active), None)
    target = code_version_id or (active.id if active else None)

    if not target:
        raise CodeVersionError("No code version specified and no active version found")

    if active is not None and active.id == target:
        alternate = next((v for v in versions if v.id != target), None)
        if alternate is None:
            raise CodeVersionError("Cannot reload: no alternate code version available for toggle")
        logger.debug("Temporarily activating alternate version", extra={"code_version": alternate.id})
        await activate_code_version(instance, alternate.id)

    await activate_code_version(instance, target)
    logger.debug("Code version reloaded", extra={"code_version": target})


async def create_code_version(instance: B2CInstance, code_version_id: str) -> None:
    logger.debug("Creating code version", extra={"code_version": code_version_id})
    await instance.ocapi.put(f"code_versions/{code_version_id}")


async def delete_code_version(instance: B2CInstance, code_version_id: str) -> None:
    logger.debug("Deleting code version", extra={"code_version": code_version_id})
    await instance.ocapi.delete(f"code_versions/{code_version_id}")
