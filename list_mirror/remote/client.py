"""Graph API client for the monitored SharePoint list.

The client performs exactly one logical attempt per call. Retrying is the
job of the message queue, so no retry policy is applied here.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx

from ..exceptions import (
    DeltaResyncRequiredError,
    RemoteAuthenticationError,
    RemoteServiceError,
)
from ..utils.config import BOOTSTRAP_CURSOR, GlobalSettings, get_settings
from ..utils.logging import setup_logger
from .auth import ClientCredentialsAuth

logger = setup_logger(__name__, context={"component": "ChangeFeedClient"})

RESYNC_MARKERS = ("resyncrequired", "resyncapplydifferences")


@dataclass(slots=True)
class DeltaPage:
    """Terminal cursor plus the ordered, de-duplicated ids seen on every page."""

    delta_link: str
    item_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class ConnectionTestResult:
    is_success: bool
    error_reason: str | None = None
    error_code: str | None = None

    @classmethod
    def success(cls) -> ConnectionTestResult:
        return cls(is_success=True)

    @classmethod
    def failure(cls, reason: str, code: str) -> ConnectionTestResult:
        return cls(is_success=False, error_reason=reason, error_code=code)


@dataclass(slots=True)
class DriveItem:
    id: str
    name: str | None
    drive_id: str | None
    parent_path: str | None


def _error_text(response: httpx.Response) -> tuple[str, str]:
    try:
        payload = response.json()
    except ValueError:
        return "", response.text[:500]
    error = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(error, dict):
        return str(error.get("code") or ""), str(error.get("message") or "")
    return "", str(payload)[:500]


def _segment(value: str) -> str:
    return quote(value, safe=",")


class ListChangeFeedClient:
    """Async access to list deltas, list items and drive content."""

    def __init__(
        self,
        *,
        base_url: str,
        auth: ClientCredentialsAuth,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        client_kwargs: dict[str, Any] = {
            "base_url": base_url.rstrip("/") + "/",
            "timeout": timeout,
            "follow_redirects": True,
        }
        if transport is not None:
            client_kwargs["transport"] = transport
        self._http = httpx.AsyncClient(**client_kwargs)
        self._auth = auth

    @classmethod
    def from_settings(
        cls,
        settings: GlobalSettings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> ListChangeFeedClient:
        settings = settings or get_settings()
        auth = ClientCredentialsAuth(
            token_url=settings.token_url,
            client_id=settings.client_id or "",
            client_secret=settings.client_secret or "",
        )
        return cls(
            base_url=settings.graph_base_url,
            auth=auth,
            timeout=settings.graph_timeout_seconds,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self) -> ListChangeFeedClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _headers(self) -> dict[str, str]:
        token = await self._auth.get_token(self._http)
        return {"Authorization": f"Bearer {token}", "Accept": "application/json"}

    async def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        headers = await self._headers()
        try:
            response = await self._http.request(method, url, headers=headers, **kwargs)
        except httpx.TimeoutException as exc:
            raise RemoteServiceError(f"Graph request timed out: {method} {url}") from exc
        except httpx.HTTPError as exc:
            raise RemoteServiceError(f"Graph request failed: {exc}") from exc

        if response.status_code >= 400:
            self._raise_for_status(response)
        return response

    @staticmethod
    def _raise_for_status(response: httpx.Response) -> None:
        code, message = _error_text(response)
        detail = f"Graph returned HTTP {response.status_code}"
        if code or message:
            detail = f"{detail}: {code} {message}".rstrip()

        marker_text = f"{code} {message}".lower()
        if response.status_code == 410 or any(marker in marker_text for marker in RESYNC_MARKERS):
            raise DeltaResyncRequiredError(detail, status_code=response.status_code)
        if response.status_code in (401, 403):
            raise RemoteAuthenticationError(detail, status_code=response.status_code)
        raise RemoteServiceError(detail, status_code=response.status_code)

    async def _get_json(self, url: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        response = await self._send("GET", url, params=params)
        try:
            payload = response.json()
        except ValueError as exc:
            raise RemoteServiceError(f"Graph returned a non-JSON body for {url}") from exc
        if not isinstance(payload, dict):
            raise RemoteServiceError(f"Graph returned an unexpected payload for {url}")
        return payload

    def _list_path(self, site_id: str, list_id: str) -> str:
        return f"sites/{_segment(site_id)}/lists/{_segment(list_id)}"

    async def test_connection(self, site_id: str) -> ConnectionTestResult:
        """Issue one cheap request and classify the outcome without raising."""

        try:
            headers = await self._headers()
        except RemoteAuthenticationError as exc:
            return ConnectionTestResult.failure(str(exc), "AuthenticationFailed")

        try:
            response = await self._http.get(
                f"sites/{_segment(site_id)}",
                params={"$select": "id"},
                headers=headers,
            )
        except httpx.TimeoutException as exc:
            return ConnectionTestResult.failure(f"Graph request timed out: {exc}", "Timeout")
        except httpx.HTTPError as exc:
            return ConnectionTestResult.failure(f"Network error: {exc}", "NetworkError")

        if response.status_code == 401:
            self._auth.invalidate()
            return ConnectionTestResult.failure("Graph rejected the access token", "Unauthorized")
        if response.status_code == 403:
            return ConnectionTestResult.failure(
                "Application lacks permission for the site", "Forbidden"
            )
        if response.status_code >= 400:
            _, message = _error_text(response)
            return ConnectionTestResult.failure(
                f"HTTP {response.status_code}: {message}".rstrip(": "), "HttpError"
            )
        return ConnectionTestResult.success()

    async def pull_delta(self, site_id: str, list_id: str, cursor: str) -> DeltaPage:
        """Follow a delta cursor to its terminal page.

        With the bootstrap cursor a "start now" request establishes a cursor
        without enumerating existing items, and no ids are returned.
        """

        bootstrap = cursor == BOOTSTRAP_CURSOR
        url: str
        params: dict[str, Any] | None
        if bootstrap:
            url = f"{self._list_path(site_id, list_id)}/items/delta"
            params = {"token": "latest"}
        else:
            url, params = cursor, None

        item_ids: list[str] = []
        seen: set[str] = set()
        pages = 0
        while True:
            payload = await self._get_json(url, params=params)
            pages += 1
            if not bootstrap:
                for item in payload.get("value") or []:
                    item_id = item.get("id") if isinstance(item, dict) else None
                    if item_id and item_id not in seen:
                        seen.add(item_id)
                        item_ids.append(str(item_id))

            delta_link = payload.get("@odata.deltaLink")
            if delta_link:
                logger.debug(
                    "Delta pull finished after %d pages with %d items",
                    pages,
                    len(item_ids),
                    extra={"site_id": site_id, "list_id": list_id},
                )
                return DeltaPage(delta_link=delta_link, item_ids=item_ids)

            next_link = payload.get("@odata.nextLink")
            if not next_link:
                raise RemoteServiceError("Delta page carried neither a next link nor a delta link")
            url, params = next_link, None

    async def get_fresh_delta_link(self, site_id: str, list_id: str) -> str:
        page = await self.pull_delta(site_id, list_id, BOOTSTRAP_CURSOR)
        return page.delta_link

    async def pull_items_modified_since(
        self,
        site_id: str,
        list_id: str,
        since: datetime,
    ) -> list[str]:
        """Return ids of items modified at or after ``since``."""

        if since.tzinfo is None:
            since = since.replace(tzinfo=timezone.utc)
        stamp = since.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")

        url = f"{self._list_path(site_id, list_id)}/items"
        params: dict[str, Any] | None = {
            "$select": "id,lastModifiedDateTime",
            "$filter": f"lastModifiedDateTime ge {stamp}",
        }
        item_ids: list[str] = []
        seen: set[str] = set()
        while True:
            payload = await self._get_json(url, params=params)
            for item in payload.get("value") or []:
                item_id = item.get("id") if isinstance(item, dict) else None
                if item_id and item_id not in seen:
                    seen.add(item_id)
                    item_ids.append(str(item_id))
            next_link = payload.get("@odata.nextLink")
            if not next_link:
                return item_ids
            url, params = next_link, None

    async def get_list_item(self, site_id: str, list_id: str, item_id: str) -> dict[str, Any] | None:
        """Return the list item with its fields, or None when it no longer exists."""

        try:
            return await self._get_json(
                f"{self._list_path(site_id, list_id)}/items/{_segment(item_id)}",
                params={"$expand": "fields"},
            )
        except RemoteServiceError as exc:
            if exc.status_code == 404:
                return None
            raise

    async def get_drive_item(self, site_id: str, list_id: str, item_id: str) -> DriveItem | None:
        try:
            payload = await self._get_json(
                f"{self._list_path(site_id, list_id)}/items/{_segment(item_id)}/driveItem"
            )
        except RemoteServiceError as exc:
            if exc.status_code == 404:
                return None
            raise

        parent = payload.get("parentReference") or {}
        return DriveItem(
            id=str(payload.get("id") or item_id),
            name=payload.get("name"),
            drive_id=parent.get("driveId"),
            parent_path=parent.get("path"),
        )

    async def download(self, drive_id: str, item_id: str) -> bytes:
        response = await self._send(
            "GET",
            f"drives/{_segment(drive_id)}/items/{_segment(item_id)}/content",
        )
        return response.content
