"""OAuth2 client-credential tokens for the Graph API."""

from __future__ import annotations

from asyncio import Lock
from dataclasses import dataclass

import httpx
from cachetools import TLRUCache

from ..exceptions import RemoteAuthenticationError
from ..utils.logging import setup_logger

DEFAULT_SCOPE = "https://graph.microsoft.com/.default"
# Tokens are refreshed this many seconds before the server-side expiry.
EXPIRY_SKEW_SECONDS = 120

logger = setup_logger(__name__, context={"component": "GraphAuth"})


@dataclass(frozen=True, slots=True)
class AccessToken:
    value: str
    expires_in: float


def _token_ttu(_key: str, token: AccessToken, now: float) -> float:
    return now + max(token.expires_in - EXPIRY_SKEW_SECONDS, 0)


class ClientCredentialsAuth:
    """Acquire and cache bearer tokens with the client-credentials grant."""

    def __init__(
        self,
        *,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: str = DEFAULT_SCOPE,
    ) -> None:
        self._token_url = token_url
        self._client_id = client_id
        self._client_secret = client_secret
        self._scope = scope
        self._cache: TLRUCache[str, AccessToken] = TLRUCache(maxsize=4, ttu=_token_ttu)
        self._lock = Lock()

    async def get_token(self, http: httpx.AsyncClient) -> str:
        """Return a valid bearer token, requesting a new one when the cached one lapsed."""

        cached = self._cache.get(self._scope)
        if cached is not None:
            return cached.value

        async with self._lock:
            cached = self._cache.get(self._scope)
            if cached is not None:
                return cached.value

            token = await self._request_token(http)
            self._cache[self._scope] = token
            return token.value

    def invalidate(self) -> None:
        self._cache.clear()

    async def _request_token(self, http: httpx.AsyncClient) -> AccessToken:
        form = {
            "grant_type": "client_credentials",
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "scope": self._scope,
        }
        try:
            response = await http.post(self._token_url, data=form)
        except httpx.HTTPError as exc:
            raise RemoteAuthenticationError(f"Token request failed: {exc}") from exc

        if response.status_code != 200:
            raise RemoteAuthenticationError(
                f"Token endpoint returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            value = payload["access_token"]
            expires_in = float(payload.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as exc:
            raise RemoteAuthenticationError("Token endpoint returned an unexpected payload") from exc

        logger.debug("Acquired Graph access token valid for %.0f seconds", expires_in)
        return AccessToken(value=value, expires_in=expires_in)
