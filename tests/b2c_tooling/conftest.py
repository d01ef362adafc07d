"""Pytest fixtures and fakes for b2c_tooling tests."""

from __future__ import annotations

import io
import logging
import os
import zipfile
from pathlib import Path
from typing import Any

import httpx
import pytest

from b2c_tooling.errors import HTTPError
from b2c_tooling.instance import InstanceConfig

HOSTNAME = "zzzz-001.dx.commercecloud.salesforce.com"


def http_error(method: str, status_code: int = 500) -> HTTPError:
    request = httpx.Request(method, f"https://{HOSTNAME}/on/demandware.servlet/webdav/Sites")
    response = httpx.Response(status_code, request=request)
    return HTTPError(f"{method} failed: {status_code} {response.reason_phrase}", response, method)


class FakeWebDav:
    """Records WebDAV calls. ``failures`` maps ``(method, path or None)`` to an error."""

    def __init__(self) -> None:
        self.calls: list[tuple[str, str]] = []
        self.uploads: dict[str, bytes] = {}
        self.failures: dict[tuple[str, str | None], Exception] = {}

    def fail(self, method: str, path: str | None = None, error: Exception | None = None) -> None:
        self.failures[(method, path)] = error or http_error(method)

    def _record(self, method: str, path: str) -> None:
        self.calls.append((method, path))
        error = self.failures.get((method, path)) or self.failures.get((method, None))
        if error is not None:
            raise error

    async def put(self, path: str, content: bytes, content_type: str | None = None) -> None:
        self._record("PUT", path)
        self.uploads[path] = content

    async def unzip(self, path: str) -> None:
        self._record("POST", path)

    async def delete(self, path: str) -> None:
        self._record("DELETE", path)

    def methods(self) -> list[str]:
        return [method for method, _ in self.calls]

    def archive_names(self, path: str | None = None) -> list[str]:
        content = self.uploads[path] if path else list(self.uploads.values())[-1]
        with zipfile.ZipFile(io.BytesIO(content)) as archive:
            return sorted(archive.namelist())


class FakeOcapi:
    """Serves a fixed ``code_versions`` list and records write calls."""

    def __init__(self, versions: list[dict[str, Any]] | None = None) -> None:
        self.versions = versions or []
        self.calls: list[tuple[str, str, Any]] = []

    async def get(self, path: str, **kwargs: Any) -> Any:
        self.calls.append(("GET", path, None))
        return {"count": len(self.versions), "data": self.versions}

    async def put(self, path: str, **kwargs: Any) -> Any:
        self.calls.append(("PUT", path, kwargs.get("json")))

    async def patch(self, path: str, **kwargs: Any) -> Any:
        self.calls.append(("PATCH", path, kwargs.get("json")))
        version_id = path.rsplit("/", 1)[-1]
        for version in self.versions:
            version["active"] = version["id"] == version_id

    async def delete(self, path: str, **kwargs: Any) -> Any:
        self.calls.append(("DELETE", path, None))


class FakeInstance:
    def __init__(self, code_version: str | None = "v1", versions: list[dict[str, Any]] | None = None) -> None:
        self.config = InstanceConfig(hostname=HOSTNAME, code_version=code_version)
        self.webdav = FakeWebDav()
        self.ocapi = FakeOcapi(versions)


def make_cartridge(root: Path, name: str) -> Path:
    cartridge = root / name
    (cartridge / "templates").mkdir(parents=True, exist_ok=True)
    (cartridge / ".project").write_text("<projectDescription/>", encoding="utf-8")
    return cartridge


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A project with cartridges ``app_a`` and ``app_b`` under ``cartridges/``."""
    root = tmp_path / "project"
    make_cartridge(root / "cartridges", "app_a")
    make_cartridge(root / "cartridges", "app_b")
    return root.resolve()


@pytest.fixture
def instance() -> FakeInstance:
    return FakeInstance()


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    """Keep real SFCC_* variables and dw.json files out of tests."""
    for key in list(os.environ):
        if key.startswith("SFCC_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)


@pytest.fixture(autouse=True)
def _reset_package_logger():
    """Undo handlers and propagation changes made by configure_logging."""
    logger = logging.getLogger("b2c_tooling")
    yield
    for handler in list(logger.handlers):
        if handler.get_name() == "b2c_tooling":
            logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
