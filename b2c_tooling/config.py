"""dw.json loading and instance configuration resolution.

dw.json is the configuration file shared by B2C Commerce development tools. It
holds either a single instance config at the root, or a root config plus a
``configs`` array of named instances.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from b2c_tooling.errors import ConfigurationError
from b2c_tooling.settings import DEFAULT_ACCOUNT_MANAGER_HOST, InstanceSettings

logger = logging.getLogger(__name__)

DW_JSON = "dw.json"


class DwJsonConfig(BaseModel):
    """One instance entry in dw.json (kebab-case keys, as in the file)."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    name: str | None = None
    active: bool | None = None
    hostname: str | None = None
    code_version: str | None = Field(default=None, alias="code-version")
    username: str | None = None
    password: str | None = None
    client_id: str | None = Field(default=None, alias="client-id")
    client_secret: str | None = Field(default=None, alias="client-secret")
    oauth_scopes: list[str] | None = Field(default=None, alias="oauth-scopes")
    webdav_hostname: str | None = Field(default=None, alias="webdav-hostname")
    configs: list[DwJsonConfig] = Field(default_factory=list)


class ResolvedConfig(BaseModel):
    """Effective instance configuration after merging all sources."""

    hostname: str | None = None
    webdav_hostname: str | None = None
    code_version: str | None = None
    username: str | None = None
    password: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    scopes: list[str] = Field(default_factory=list)
    account_manager_host: str = DEFAULT_ACCOUNT_MANAGER_HOST

    @property
    def has_basic_auth(self) -> bool:
        return bool(self.username and self.password)

    @property
    def has_oauth(self) -> bool:
        return bool(self.client_id and self.client_secret)


def find_dw_json(start_dir: Path | str | None = None) -> Path | None:
    """Search upward from ``start_dir`` (default: cwd) for a dw.json file."""
    directory = Path(start_dir or Path.cwd()).resolve()
    for candidate_dir in (directory, *directory.parents):
        candidate = candidate_dir / DW_JSON
        if candidate.is_file():
            return candidate
    return None


def select_config(config: DwJsonConfig, instance: str | None = None) -> DwJsonConfig:
    """Pick the instance entry to use from a (possibly multi-config) dw.json.

    Priority: named instance, then an ``active`` entry when the root is marked
    inactive, then the root config.
    """
    if not config.configs:
        return config

    if instance:
        if config.name == instance:
            return config
        for entry in config.configs:
            if entry.name == instance:
                return entry
        logger.debug("Instance not found in dw.json, using default selection", extra={"instance": instance})

    if config.active is False:
        for entry in config.configs:
            if entry.active is True:
                return entry

    return config


def load_dw_json(
    path: Path | str | None = None,
    *,
    instance: str | None = None,
    start_dir: Path | str | None = None,
) -> DwJsonConfig | None:
    """Load and select a dw.json config.

    Returns None when no file is found. A file that exists but cannot be parsed
    is a configuration error.
    """
    dw_json_path = Path(path) if path else find_dw_json(start_dir)
    if dw_json_path is None or not dw_json_path.is_file():
        return None

    try:
        raw = json.loads(dw_json_path.read_text(encoding="utf-8"))
        parsed = DwJsonConfig.model_validate(raw)
    except (json.JSONDecodeError, ValidationError) as exc:
        raise ConfigurationError(f"Invalid {dw_json_path}: {exc}") from exc

    logger.debug("Loaded dw.json", extra={"path": str(dw_json_path)})
    return select_config(parsed, instance)


def resolve_config(
    overrides: Mapping[str, Any] | None = None,
    *,
    instance: str | None = None,
    config_path: Path | str | None = None,
    start_dir: Path | str | None = None,
) -> ResolvedConfig:
    """Merge explicit values, ``SFCC_*`` environment settings and dw.json.

    Explicit (non-None) values win, then the environment, then dw.json.
    """
    explicit = {key: value for key, value in (overrides or {}).items() if value is not None}
    env = InstanceSettings()
    dw = load_dw_json(config_path, instance=instance, start_dir=start_dir) or DwJsonConfig()

    def pick(key: str, env_value: Any, dw_value: Any) -> Any:
        if key in explicit:
            return explicit[key]
        return env_value if env_value is not None else dw_value

    return ResolvedConfig(
        hostname=pick("hostname", env.server, dw.hostname),
        webdav_hostname=pick("webdav_hostname", env.webdav_server, dw.webdav_hostname),
        code_version=pick("code_version", env.code_version, dw.code_version),
        username=pick("username", env.username, dw.username),
        password=pick("password", env.password, dw.password),
        client_id=pick("client_id", env.client_id, dw.client_id),
        client_secret=pick("client_secret", env.client_secret, dw.client_secret),
        scopes=pick("scopes", env.oauth_scopes, dw.oauth_scopes) or [],
        account_manager_host=explicit.get("account_manager_host", env.account_manager_host),
    )
