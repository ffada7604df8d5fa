"""
Remote record store — aiohttp client for PostgREST-style tables.

``RestRecordStore`` implements the ``RecordStore`` contract against a
table endpoint (``<base_url>/<table>``) using filter query strings such as
``user_id=eq.<id>``. ``RestPreferencesStore`` reuses it for per-user
settings rows.

The store never encrypts anything itself: callers pass already-encrypted
sensitive fields.
"""
import logging
from typing import Any, Optional

import aiohttp
import orjson

from .exceptions import RecordStoreError

logger = logging.getLogger("securevault.remote")


class RestRecordStore:
    """Record store over HTTP.

    Args:
        base_url: REST root, e.g. ``https://<project>/rest/v1``.
        table: Table name.
        api_key: Optional project key sent as ``apikey``.
        access_token: Optional user JWT sent as a bearer token.
        owner_column: Column holding the owner id.
        session: Optional shared ``aiohttp.ClientSession``.
    """

    def __init__(
        self,
        base_url: str,
        table: str,
        *,
        api_key: Optional[str] = None,
        access_token: Optional[str] = None,
        owner_column: str = "user_id",
        session: Optional[aiohttp.ClientSession] = None,
        timeout: float = 30.0,
    ):
        self._url = f"{base_url.rstrip('/')}/{table}"
        self.table = table
        self._api_key = api_key
        self._token = access_token
        self._owner_column = owner_column
        self._session = session
        self._own_session = session is None
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    def __repr__(self) -> str:
        return f'<{type(self).__name__} table={self.table!r}>'

    def set_access_token(self, token: Optional[str]) -> None:
        self._token = token

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": "return=representation",
        }
        if self._api_key:
            headers["apikey"] = self._api_key
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        return headers

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._own_session = True
        return self._session

    async def close(self) -> None:
        if self._own_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "RestRecordStore":
        await self._get_session()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def _request(
        self,
        method: str,
        params: Optional[dict[str, str]] = None,
        body: Any = None,
    ) -> Any:
        session = await self._get_session()
        data = orjson.dumps(body) if body is not None else None
        try:
            async with session.request(
                method, self._url, params=params, data=data, headers=self._headers(),
            ) as response:
                payload = await response.read()
                if response.status >= 400:
                    logger.error(
                        "%s %s failed with status %d", method, self.table, response.status,
                    )
                    raise RecordStoreError(
                        f"{method} {self.table} failed with status {response.status}: "
                        f"{payload[:200].decode('utf-8', 'replace')}",
                        status=response.status,
                    )
        except aiohttp.ClientError as err:
            raise RecordStoreError(f"{method} {self.table} failed: {err}") from err
        if not payload:
            return None
        try:
            return orjson.loads(payload)
        except orjson.JSONDecodeError as err:
            raise RecordStoreError(f"{self.table} returned invalid JSON") from err

    # ------------------------------------------------------------------
    # RecordStore contract
    # ------------------------------------------------------------------

    async def list(self, owner_id: str) -> list[dict[str, Any]]:
        """Return owner_id's records, newest first."""
        rows = await self._request(
            "GET",
            params={
                self._owner_column: f"eq.{owner_id}",
                "select": "*",
                "order": "created_at.desc",
            },
        )
        rows = rows or []
        logger.debug("Fetched %d row(s) from %s", len(rows), self.table)
        return rows

    async def insert(self, fields: dict[str, Any]) -> dict[str, Any]:
        rows = await self._request("POST", body=fields)
        if isinstance(rows, list):
            if not rows:
                raise RecordStoreError(f"Insert into {self.table} returned no row")
            return rows[0]
        return rows

    async def update(self, record_id: str, fields: dict[str, Any]) -> None:
        await self._request("PATCH", params={"id": f"eq.{record_id}"}, body=fields)

    async def delete(self, record_id: str) -> None:
        await self._request("DELETE", params={"id": f"eq.{record_id}"})


class RestPreferencesStore(RestRecordStore):
    """``PreferencesStore`` over a settings table keyed by owner id."""

    def __init__(self, base_url: str, table: str = "user_preferences", **kwargs):
        super().__init__(base_url, table, **kwargs)

    async def get(self, user_id: str) -> Optional[dict[str, Any]]:
        rows = await self._request(
            "GET", params={self._owner_column: f"eq.{user_id}", "select": "*"},
        )
        return rows[0] if rows else None

    async def update(self, user_id: str, fields: dict[str, Any]) -> None:
        await self._request(
            "PATCH", params={self._owner_column: f"eq.{user_id}"}, body=fields,
        )
