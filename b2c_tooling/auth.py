"""httpx authentication for B2C Commerce APIs.

WebDAV accepts Basic auth (username + WebDAV access key) or an Account Manager
OAuth token. OCAPI always needs the OAuth token.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import AsyncGenerator, Generator
from dataclasses import dataclass, field

import httpx

from b2c_tooling.errors import AuthenticationError
from b2c_tooling.settings import DEFAULT_ACCOUNT_MANAGER_HOST

logger = logging.getLogger(__name__)


def basic_auth(username: str, password: str) -> httpx.BasicAuth:
    logger.debug("Using Basic authentication", extra={"username": username})
    return httpx.BasicAuth(username, password)


@dataclass
class AccessToken:
    """Token returned by the client-credentials grant."""

    access_token: str
    expires_at: float
    scopes: list[str] = field(default_factory=list)

    def is_valid(self, required_scopes: list[str], now: float | None = None) -> bool:
        current = time.time() if now is None else now
        return current < self.expires_at and all(scope in self.scopes for scope in required_scopes)


class TokenCache:
    """Per-auth-instance token storage with a single-flight refresh guard."""

    def __init__(self) -> None:
        self._tokens: dict[str, AccessToken] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def get(self, client_id: str) -> AccessToken | None:
        return self._tokens.get(client_id)

    def set(self, client_id: str, token: AccessToken) -> None:
        self._tokens[client_id] = token

    def invalidate(self, client_id: str) -> None:
        self._tokens.pop(client_id, None)

    def lock_for(self, client_id: str) -> asyncio.Lock:
        lock = self._locks.get(client_id)
        if lock is None:
            lock = self._locks[client_id] = asyncio.Lock()
        return lock


class OAuthClientCredentials(httpx.Auth):
    """Bearer auth backed by the Account Manager client-credentials grant.

    A 401 from the API invalidates the cached token and the request is retried
    exactly once with a fresh one.
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        scopes: list[str] | None = None,
        account_manager_host: str = DEFAULT_ACCOUNT_MANAGER_HOST,
        *,
        cache: TokenCache | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.scopes = list(scopes or [])
        self.token_url = f"https://{account_manager_host}/dwsso/oauth2/access_token"
        self.cache = cache or TokenCache()
        self._transport = transport

    def sync_auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        raise RuntimeError("OAuthClientCredentials requires httpx.AsyncClient")

    async def async_auth_flow(
        self, request: httpx.Request
    ) -> AsyncGenerator[httpx.Request, httpx.Response]:
        self._apply(request, await self.get_access_token())
        response = yield request

        if response.status_code == 401:
            logger.debug("Received 401, refreshing access token", extra={"url": str(request.url)})
            self.cache.invalidate(self.client_id)
            self._apply(request, await self.get_access_token())
            yield request

    def _apply(self, request: httpx.Request, token: str) -> None:
        request.headers["Authorization"] = f"Bearer {token}"
        request.headers["x-dw-client-id"] = self.client_id

    async def get_access_token(self) -> str:
        """Return a cached token if it is still valid, otherwise fetch one.

        Concurrent callers share a single token request.
        """
        cached = self.cache.get(self.client_id)
        if cached is not None and cached.is_valid(self.scopes):
            return cached.access_token

        async with self.cache.lock_for(self.client_id):
            cached = self.cache.get(self.client_id)
            if cached is not None and cached.is_valid(self.scopes):
                logger.debug("Reusing cached access token")
                return cached.access_token

            token = await self._client_credentials_grant()
            self.cache.set(self.client_id, token)
            return token.access_token

    async def _client_credentials_grant(self) -> AccessToken:
        data = {"grant_type": "client_credentials"}
        if self.scopes:
            data["scope"] = " ".join(self.scopes)

        logger.debug(
            "Requesting access token",
            extra={"client_id": self.client_id, "url": self.token_url},
        )
        started = time.monotonic()
        async with httpx.AsyncClient(transport=self._transport) as client:
            response = await client.post(
                self.token_url,
                data=data,
                auth=(self.client_id, self.client_secret),
            )
        logger.debug(
            "Token response",
            extra={
                "status": response.status_code,
                "duration_ms": round((time.monotonic() - started) * 1000),
            },
        )

        if response.is_error:
            raise AuthenticationError(
                f"Failed to get access token: {response.status_code} {response.reason_phrase} - {response.text}"
            )

        payload = response.json()
        scope = payload.get("scope") or ""
        return AccessToken(
            access_token=payload["access_token"],
            expires_at=time.time() + float(payload.get("expires_in", 0)),
            scopes=scope.split(),
        )
