"""Tests for archive building, one-shot deployment and code version operations."""

from __future__ import annotations

import io
import logging
import re
import zipfile
from pathlib import Path

import pytest
from conftest import FakeInstance, FakeWebDav, http_error

from b2c_tooling.archive import build_archive, deploy_archive
from b2c_tooling.cartridges import find_cartridges
from b2c_tooling.deploy import delete_cartridges, find_and_deploy_cartridges, upload_cartridges
from b2c_tooling.errors import B2CError, CodeVersionError, ConfigurationError
from b2c_tooling.versions import (
    activate_code_version,
    create_code_version,
    delete_code_version,
    get_active_code_version,
    list_code_versions,
    reload_code_version,
)

VERSIONS = [
    {
        "id": "v1",
        "active": True,
        "rollback": False,
        "last_modification_time": "2026-01-05T10:15:00.000Z",
        "cartridges": ["app_a", "app_b"],
    },
    {"id": "v2", "active": False, "rollback": True},
]


def test_build_archive_skips_unreadable_files(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    present = tmp_path / "a.js"
    present.write_text("a", encoding="utf-8")

    with caplog.at_level(logging.WARNING, logger="b2c_tooling.archive"):
        data, written = build_archive([(present, "app/a.js"), (tmp_path / "gone.js", "app/gone.js")])

    assert written == ["app/a.js"]
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        assert archive.namelist() == ["app/a.js"]
        assert archive.read("app/a.js") == b"a"
        assert archive.getinfo("app/a.js").compress_type == zipfile.ZIP_DEFLATED
    assert any("Failed to add file" in record.getMessage() for record in caplog.records)


@pytest.mark.asyncio
async def test_deploy_archive_stops_at_first_failure() -> None:
    webdav = FakeWebDav()
    webdav.fail("PUT")

    with pytest.raises(B2CError):
        await deploy_archive(webdav, "Cartridges/_sync-1.zip", b"zip")

    assert webdav.calls == [("PUT", "Cartridges/_sync-1.zip")]


@pytest.mark.asyncio
async def test_upload_cartridges_prefixes_code_version(project: Path) -> None:
    (project / "cartridges/app_a/templates/home.isml").write_text("<isml/>", encoding="utf-8")
    instance = FakeInstance()

    await upload_cartridges(instance, find_cartridges(project))

    upload_path = instance.webdav.calls[0][1]
    assert re.match(r"^Cartridges/_sync-\d+\.zip$", upload_path)
    assert instance.webdav.methods() == ["PUT", "POST", "DELETE"]
    assert instance.webdav.archive_names() == [
        "v1/app_a/.project",
        "v1/app_a/templates/home.isml",
        "v1/app_b/.project",
    ]


@pytest.mark.asyncio
async def test_upload_requires_code_version(project: Path) -> None:
    with pytest.raises(ConfigurationError, match="Code version required"):
        await upload_cartridges(FakeInstance(code_version=None), find_cartridges(project))


@pytest.mark.asyncio
async def test_delete_cartridges_ignores_failures(project: Path) -> None:
    instance = FakeInstance()
    instance.webdav.fail("DELETE", "Cartridges/v1/app_a", http_error("DELETE", 404))

    await delete_cartridges(instance, find_cartridges(project))

    assert instance.webdav.calls == [("DELETE", "Cartridges/v1/app_a"), ("DELETE", "Cartridges/v1/app_b")]


@pytest.mark.asyncio
async def test_find_and_deploy_with_delete_and_reload(project: Path) -> None:
    instance = FakeInstance(versions=[dict(version) for version in VERSIONS])

    result = await find_and_deploy_cartridges(instance, project, include=["app_a"], delete=True, reload=True)

    assert [cartridge.name for cartridge in result.cartridges] == ["app_a"]
    assert result.code_version == "v1"
    assert result.reloaded
    assert instance.webdav.calls[0] == ("DELETE", "Cartridges/v1/app_a")
    assert [call[:2] for call in instance.ocapi.calls if call[0] == "PATCH"] == [
        ("PATCH", "code_versions/v2"),
        ("PATCH", "code_versions/v1"),
    ]


@pytest.mark.asyncio
async def test_find_and_deploy_without_cartridges(tmp_path: Path) -> None:
    with pytest.raises(B2CError, match="No cartridges found"):
        await find_and_deploy_cartridges(FakeInstance(), tmp_path)


@pytest.mark.asyncio
async def test_list_and_get_active_code_version() -> None:
    instance = FakeInstance(versions=[dict(version) for version in VERSIONS])

    versions = await list_code_versions(instance)
    active = await get_active_code_version(instance)

    assert [version.id for version in versions] == ["v1", "v2"]
    assert versions[0].cartridges == ["app_a", "app_b"]
    assert versions[0].last_modification_time is not None
    assert versions[1].rollback is True
    assert active is not None and active.id == "v1"


@pytest.mark.asyncio
async def test_activate_create_and_delete_code_version() -> None:
    instance = FakeInstance()

    await activate_code_version(instance, "v2")
    await create_code_version(instance, "v3")
    await delete_code_version(instance, "v3")

    assert instance.ocapi.calls == [
        ("PATCH", "code_versions/v2", {"active": True}),
        ("PUT", "code_versions/v3", None),
        ("DELETE", "code_versions/v3", None),
    ]


@pytest.mark.asyncio
async def test_reload_inactive_version_activates_it_directly() -> None:
    instance = FakeInstance(versions=[dict(version) for version in VERSIONS])

    await reload_code_version(instance, "v2")

    assert [call[1] for call in instance.ocapi.calls if call[0] == "PATCH"] == ["code_versions/v2"]


@pytest.mark.asyncio
async def test_reload_without_alternate_version_fails() -> None:
    instance = FakeInstance(versions=[{"id": "v1", "active": True}])

    with pytest.raises(CodeVersionError, match="no alternate code version"):
        await reload_code_version(instance, "v1")


@pytest.mark.asyncio
async def test_reload_without_any_target_fails() -> None:
    with pytest.raises(CodeVersionError, match="No code version specified"):
        await reload_code_version(FakeInstance(versions=[{"id": "v1"}]))
