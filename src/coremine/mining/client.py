"""HTTP client for the mining session API (used by the accumulator and sync)."""

from __future__ import annotations

import logging
from typing import Any, Protocol

import httpx

from coremine.config import get_settings
from coremine.errors import AlreadyMiningError, CoreMineError, SessionNotFoundError, StorageError
from coremine.mining.state import LocalSession
from coremine.timeutil import utcnow

logger = logging.getLogger(__name__)


class RemoteSessionStore(Protocol):
    """Where online ticks go. Failures that may succeed later raise StorageError."""

    async def start_session(self) -> LocalSession: ...

    async def push_session(self, session: LocalSession) -> LocalSession: ...

    async def get_active_session(self) -> LocalSession | None: ...


class MiningApiClient:
    """RemoteSessionStore over the REST API.

    Transport errors, timeouts and 5xx responses become StorageError so
    callers fall back to the offline ledger.
    """

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        *,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.api_base_url,
            timeout=timeout if timeout is not None else settings.api_timeout_seconds,
            headers={"Authorization": f"Bearer {token}"},
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> MiningApiClient:
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.aclose()

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:  # noqa: ANN401
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise StorageError(f"Mining API unreachable: {exc}") from exc

        if response.status_code >= 500:
            raise StorageError(f"Mining API error {response.status_code}")
        if response.status_code == 409:
            raise AlreadyMiningError(_detail(response))
        if response.status_code == 404:
            raise SessionNotFoundError(_detail(response))
        if response.status_code == 401:
            # Token expired; buffer locally until the caller re-authenticates.
            raise StorageError("Mining API rejected the access token")
        if response.status_code >= 400:
            raise CoreMineError(_detail(response))
        return response

    async def start_session(self) -> LocalSession:
        response = await self._request("POST", "/api/v1/mining/sessions")
        return LocalSession.from_api(response.json(), last_update=utcnow())

    async def push_session(self, session: LocalSession) -> LocalSession:
        """Upsert the session; returns the server's view of it.

        The returned id differs from ``session.id`` when the server moved the
        tail of a settled session into a continuation in the current epoch.
        """
        response = await self._request("PUT", f"/api/v1/mining/sessions/{session.id}", json=session.to_sync_body())
        return LocalSession.from_api(response.json()["session"], last_update=session.last_update)

    async def get_active_session(self) -> LocalSession | None:
        response = await self._request("GET", "/api/v1/mining/sessions/active")
        data = response.json().get("session")
        return LocalSession.from_api(data, last_update=utcnow()) if data else None


def _detail(response: httpx.Response) -> str:
    try:
        return str(response.json().get("detail", response.text))
    except ValueError:
        return response.text
