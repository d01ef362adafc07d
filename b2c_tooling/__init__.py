"""b2c_tooling: cartridge deployment and live sync for B2C Commerce instances."""

from b2c_tooling.cartridges import CartridgeMapping, find_cartridges
from b2c_tooling.config import DwJsonConfig, ResolvedConfig, load_dw_json, resolve_config
from b2c_tooling.deploy import DeployResult, find_and_deploy_cartridges
from b2c_tooling.errors import (
    AuthenticationError,
    B2CError,
    CodeVersionError,
    ConfigurationError,
    HTTPError,
    WatchError,
)
from b2c_tooling.instance import B2CInstance, InstanceConfig
from b2c_tooling.settings import InstanceSettings, LoggingSettings, WatchSettings
from b2c_tooling.watcher import ChangeBatcher, ChangeKind, SyncEngine, WatchSession, watch_cartridges
from b2c_tooling.webdav import WebDavClient

__all__ = [
    "AuthenticationError",
    "B2CError",
    "B2CInstance",
    "CartridgeMapping",
    "ChangeBatcher",
    "ChangeKind",
    "CodeVersionError",
    "ConfigurationError",
    "DeployResult",
    "DwJsonConfig",
    "HTTPError",
    "InstanceConfig",
    "InstanceSettings",
    "LoggingSettings",
    "ResolvedConfig",
    "SyncEngine",
    "WatchError",
    "WatchSession",
    "WatchSettings",
    "WebDavClient",
    "find_and_deploy_cartridges",
    "find_cartridges",
    "load_dw_json",
    "resolve_config",
    "watch_cartridges",
]

__version__ = "0.1.0"
