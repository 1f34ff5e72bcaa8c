"""HTTP clients for the cloud browser providers.

Each provider exposes a create call that returns a session id plus a CDP
endpoint, and a teardown call keyed by that id.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

import httpx

from browserd.errors import ProviderConnectionError

logger = logging.getLogger("browserd.cloud")

_REQUEST_TIMEOUT = 30.0


@dataclass(frozen=True)
class CloudSession:
    id: str
    connect_url: str


class CloudClient(ABC):
    """Shared plumbing for provider API clients."""

    name = "cloud"
    api_key_header = ""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self._transport = transport

    async def _request(
        self, method: str, path: str, json: dict[str, Any] | None = None
    ) -> httpx.Response:
        async with httpx.AsyncClient(
            base_url=self.base_url,
            headers={"Content-Type": "application/json", self.api_key_header: self.api_key},
            timeout=_REQUEST_TIMEOUT,
            transport=self._transport,
        ) as client:
            return await client.request(method, path, json=json)

    @abstractmethod
    async def create_session(self) -> CloudSession: ...

    @abstractmethod
    async def close_session(self, session_id: str) -> None: ...


class BrowserbaseClient(CloudClient):
    name = "Browserbase"
    api_key_header = "X-BB-API-Key"

    def __init__(
        self,
        api_key: str,
        project_id: str,
        base_url: str = "https://api.browserbase.com/v1",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(api_key, base_url, transport)
        self.project_id = project_id

    async def create_session(self) -> CloudSession:
        try:
            response = await self._request(
                "POST", "/sessions", json={"projectId": self.project_id}
            )
        except httpx.HTTPError as exc:
            raise ProviderConnectionError(
                f"Failed to create Browserbase session: {exc}"
            ) from exc
        if not response.is_success:
            raise ProviderConnectionError(
                f"Failed to create Browserbase session: {response.reason_phrase}"
            )
        try:
            data = response.json()
            session = CloudSession(id=data["id"], connect_url=data["connectUrl"])
        except (ValueError, KeyError, TypeError) as exc:
            raise ProviderConnectionError(
                f"Invalid Browserbase session response: {exc}"
            ) from exc
        logger.info(f"Browserbase session {session.id} created")
        return session

    async def close_session(self, session_id: str) -> None:
        response = await self._request("DELETE", f"/sessions/{session_id}")
        response.raise_for_status()
        logger.info(f"Browserbase session {session_id} deleted")


class BrowserUseClient(CloudClient):
    name = "Browser Use"
    api_key_header = "X-Browser-Use-API-Key"

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.browser-use.com/api/v2",
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__(api_key, base_url, transport)

    async def create_session(self) -> CloudSession:
        try:
            response = await self._request("POST", "/browsers", json={})
        except httpx.HTTPError as exc:
            raise ProviderConnectionError(
                f"Failed to create Browser Use session: {exc}"
            ) from exc
        if not response.is_success:
            raise ProviderConnectionError(
                f"Failed to create Browser Use session: {response.reason_phrase}"
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderConnectionError(
                f"Failed to parse Browser Use session response: {exc}"
            ) from exc
        session_id = data.get("id") if isinstance(data, dict) else None
        cdp_url = data.get("cdpUrl") if isinstance(data, dict) else None
        if not session_id or not cdp_url:
            missing = "id" if not session_id else "cdpUrl"
            raise ProviderConnectionError(
                f"Invalid Browser Use session response: missing {missing}"
            )
        logger.info(f"Browser Use session {session_id} created")
        return CloudSession(id=session_id, connect_url=cdp_url)

    async def close_session(self, session_id: str) -> None:
        response = await self._request(
            "PATCH", f"/browsers/{session_id}", json={"action": "stop"}
        )
        if not response.is_success:
            raise ProviderConnectionError(
                f"Failed to close Browser Use session: {response.reason_phrase}"
            )
        logger.info(f"Browser Use session {session_id} stopped")
