"""Connection to one B2C Commerce instance."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping

import httpx

from b2c_tooling.auth import OAuthClientCredentials, basic_auth
from b2c_tooling.config import ResolvedConfig, resolve_config
from b2c_tooling.errors import ConfigurationError
from b2c_tooling.ocapi import OcapiClient
from b2c_tooling.webdav import WebDavClient


@dataclass
class InstanceConfig:
    """Hostname and deployment target of an instance."""

    hostname: str
    code_version: str | None = None
    webdav_hostname: str | None = None


class B2CInstance:
    """Lazily builds authenticated WebDAV and OCAPI clients for an instance.

    WebDAV prefers Basic auth when username/password are configured and falls
    back to OAuth; OCAPI always uses OAuth.
    """

    def __init__(
        self,
        config: InstanceConfig,
        resolved: ResolvedConfig | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.credentials = resolved or ResolvedConfig(hostname=config.hostname)
        self._transport = transport
        self._webdav: WebDavClient | None = None
        self._ocapi: OcapiClient | None = None
        self._oauth: OAuthClientCredentials | None = None

    @classmethod
    def from_config(
        cls,
        overrides: Mapping[str, Any] | None = None,
        *,
        instance: str | None = None,
        config_path: Path | str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> B2CInstance:
        """Build an instance from explicit values, ``SFCC_*`` env vars and dw.json."""
        resolved = resolve_config(overrides, instance=instance, config_path=config_path)
        if not resolved.hostname:
            raise ConfigurationError("Hostname is required. Set it in dw.json, SFCC_SERVER or --server.")

        config = InstanceConfig(
            hostname=resolved.hostname,
            code_version=resolved.code_version,
            webdav_hostname=resolved.webdav_hostname,
        )
        return cls(config, resolved, transport=transport)

    @property
    def webdav_hostname(self) -> str:
        return self.config.webdav_hostname or self.config.hostname

    @property
    def webdav(self) -> WebDavClient:
        if self._webdav is None:
            self._webdav = WebDavClient(self.webdav_hostname, self._webdav_auth(), transport=self._transport)
        return self._webdav

    @property
    def ocapi(self) -> OcapiClient:
        if self._ocapi is None:
            self._ocapi = OcapiClient(self.config.hostname, self._oauth_auth(), transport=self._transport)
        return self._ocapi

    def require_webdav_credentials(self) -> None:
        if not (self.credentials.has_basic_auth or self.credentials.has_oauth):
            raise ConfigurationError(
                "WebDAV requires username/password or OAuth client credentials"
            )

    def require_oauth_credentials(self) -> None:
        if not self.credentials.has_oauth:
            raise ConfigurationError("OAuth client ID and secret are required (SFCC_CLIENT_ID, SFCC_CLIENT_SECRET)")

    def _webdav_auth(self) -> httpx.Auth:
        if self.credentials.has_basic_auth:
            return basic_auth(self.credentials.username or "", self.credentials.password or "")
        return self._oauth_auth()

    def _oauth_auth(self) -> OAuthClientCredentials:
        if self._oauth is None:
            self.require_oauth_credentials()
            self._oauth = OAuthClientCredentials(
                self.credentials.client_id or "",
                self.credentials.client_secret or "",
                self.credentials.scopes,
                self.credentials.account_manager_host,
                transport=self._transport,
            )
        return self._oauth

    async def aclose(self) -> None:
        if self._webdav is not None:
            await self._webdav.aclose()
        if self._ocapi is not None:
            await self._ocapi.aclose()

    async def __aenter__(self) -> B2CInstance:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()
