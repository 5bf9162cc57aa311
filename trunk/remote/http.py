"""
HTTP remote event store (PostgREST-style REST endpoint).

Requests:
    POST {url}/rest/v1/{table}              insert one row
    GET  {url}/rest/v1/{table}?user_id=eq.U&created_at=gt.C&order=created_at.asc

The user filter is sent on every query alongside whatever row-level
security the server enforces. The realtime feed is implemented by polling
query_since() from the last row seen.

Error mapping:
    401, 403                  -> NotAuthenticatedError (not retried)
    409 / code 23505          -> DuplicateEventError (push treats as success)
    408, 429, 5xx             -> RemoteUnavailableError
    timeouts                  -> RemoteTimeoutError
    connection failures       -> RemoteUnavailableError
    2xx body that is not JSON -> RemoteError (REMOTE_PROTOCOL)
    other 4xx                 -> RemoteError

How to change safely:
    - Keep the error mapping above; the coordinator's retry policy
      depends on it
    - Never log the api key or access token
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Dict, List, Optional

import httpx

from ..config import RemoteConfig
from ..errors import (
    DuplicateEventError,
    EventValidationError,
    NotAuthenticatedError,
    RemoteError,
    RemoteTimeoutError,
    RemoteUnavailableError,
)
from ..events.types import utc_now_iso
from .models import RemoteEventInsert, RemoteEventRow, parse_row

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


class HttpRemoteEventStore:
    """RemoteEventStore over httpx.

    Args:
        config: Remote configuration (url, api key, token, user id)
        transport: Optional httpx transport (tests pass httpx.MockTransport)
        timeout: Per-request timeout in seconds

    Example:
        >>> store = HttpRemoteEventStore(RemoteConfig.from_env())
        >>> rows = await store.query_since(None)
        >>> await store.close()
    """

    def __init__(
        self,
        config: RemoteConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 15.0,
    ) -> None:
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.url.rstrip("/"),
            transport=transport,
            timeout=timeout,
        )
        self._closed = asyncio.Event()

    @property
    def _path(self) -> str:
        return f"/rest/v1/{self.config.table}"

    def _headers(self) -> Dict[str, str]:
        if not self.config.access_token or not self.config.user_id:
            raise NotAuthenticatedError("No session: access token and user id are required")
        headers = {
            "Authorization": f"Bearer {self.config.access_token}",
            "Accept": "application/json",
        }
        if self.config.api_key:
            headers["apikey"] = self.config.api_key
        return headers

    async def _request(self, method: str, **kwargs: Any) -> httpx.Response:
        headers = self._headers()
        headers.update(kwargs.pop("headers", {}))
        try:
            return await self._client.request(method, self._path, headers=headers, **kwargs)
        except httpx.TimeoutException as e:
            raise RemoteTimeoutError(f"Remote {method} timed out: {e}") from e
        except httpx.TransportError as e:
            raise RemoteUnavailableError(f"Remote {method} failed: {e}") from e

    @staticmethod
    def _error_code(response: httpx.Response) -> Optional[str]:
        try:
            body = response.json()
        except ValueError:
            return None
        if isinstance(body, dict):
            code = body.get("code")
            return str(code) if code is not None else None
        return None

    @staticmethod
    def _json(response: httpx.Response, what: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise RemoteError(
                f"Unexpected {what} response: body is not JSON ({response.status_code})",
                code="REMOTE_PROTOCOL",
                status_code=response.status_code,
            ) from e

    def _raise_for_status(self, response: httpx.Response, client_id: Optional[str] = None) -> None:
        status = response.status_code
        if status < 400:
            return
        if status in (401, 403):
            raise NotAuthenticatedError(f"Remote rejected session ({status})", status_code=status)
        if client_id is not None and (status == 409 or self._error_code(response) == UNIQUE_VIOLATION):
            raise DuplicateEventError(client_id)
        if status in (408, 429) or status >= 500:
            raise RemoteUnavailableError(f"Remote unavailable ({status})", status_code=status)
        raise RemoteError(
            f"Remote rejected request ({status}): {response.text[:200]}",
            code="REMOTE_REJECTED",
            status_code=status,
        )

    async def insert(self, row: RemoteEventInsert) -> RemoteEventRow:
        response = await self._request(
            "POST",
            json=row.model_dump(),
            headers={"Prefer": "return=representation"},
        )
        self._raise_for_status(response, client_id=row.client_id)

        body = self._json(response, "insert")
        data = body[0] if isinstance(body, list) and body else body
        try:
            stored = parse_row(data)
        except EventValidationError as e:
            raise RemoteError(f"Unexpected insert response: {e.message}", code="REMOTE_PROTOCOL") from e

        logger.debug(
            "Event row inserted",
            extra={"client_id": row.client_id, "created_at": stored.created_at},
        )
        return stored

    async def query_since(self, cursor: Optional[str]) -> List[RemoteEventRow]:
        params = {
            "select": "*",
            "user_id": f"eq.{self.config.user_id}",
            "order": "created_at.asc",
        }
        if cursor is not None:
            params["created_at"] = f"gt.{cursor}"

        response = await self._request("GET", params=params)
        self._raise_for_status(response)

        body = self._json(response, "query")
        if not isinstance(body, list):
            raise RemoteError("Unexpected query response: expected a list", code="REMOTE_PROTOCOL")

        rows: List[RemoteEventRow] = []
        for item in body:
            try:
                rows.append(parse_row(item))
            except EventValidationError as e:
                logger.warning("Dropping malformed remote row", extra={"error": e.message})
        return rows

    async def subscribe(self) -> AsyncIterator[RemoteEventRow]:
        """Poll for new rows every ``poll_interval_seconds``.

        Transient failures are logged and retried on the next tick; an
        authentication failure ends the feed by raising.
        """
        cursor: Optional[str] = utc_now_iso()
        while not self._closed.is_set():
            try:
                rows = await self.query_since(cursor)
            except NotAuthenticatedError:
                raise
            except RemoteError as e:
                logger.warning("Realtime poll failed", extra={"error": e.message, "code": e.code})
                rows = []

            for row in rows:
                cursor = row.created_at
                yield row

            try:
                await asyncio.wait_for(self._closed.wait(), timeout=self.config.poll_interval_seconds)
            except asyncio.TimeoutError:
                pass

    async def close(self) -> None:
        self._closed.set()
        await self._client.aclose()
