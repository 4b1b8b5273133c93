"""HTTP adapter for a PostgREST-style remote data service.

Endpoints:
- POST {base_url}/rest/v1/rpc/{name}          remote procedures
- GET  {base_url}/rest/v1/{table}?col=eq.val  single-row selects

Failures are mapped to ProviderError; network errors, timeouts and 5xx
responses are marked transient.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

import httpx
import orjson

from concord.errors import ProviderError

if TYPE_CHECKING:
    from concord.config import Settings

logger = logging.getLogger(__name__)

# Error codes that retrying cannot fix
PERMANENT_CODES = frozenset({"PGRST116", "23505"})


class HttpRemoteProvider:
    """RemoteDataProvider over httpx."""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ):
        headers = {"Accept": "application/json", "Content-Type": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"), headers=headers, timeout=timeout
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> HttpRemoteProvider:
        return cls(settings.remote_base_url, settings.remote_api_key, settings.remote_timeout)

    async def rpc(self, name: str, params: Mapping[str, Any] | None = None) -> Any:
        response = await self._send(
            "POST", f"/rest/v1/rpc/{name}", content=orjson.dumps(dict(params or {}))
        )
        if not response.content:
            return None
        return orjson.loads(response.content)

    async def select_one(self, table: str, filters: Mapping[str, Any]) -> dict[str, Any] | None:
        query = {column: f"eq.{value}" for column, value in filters.items()}
        query["limit"] = "1"
        response = await self._send("GET", f"/rest/v1/{table}", params=query)
        rows = orjson.loads(response.content) if response.content else []
        return rows[0] if rows else None

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderError(f"timeout calling {path}", code="TIMEOUT", transient=True) from e
        except httpx.TransportError as e:
            raise ProviderError(
                f"network error calling {path}: {e}", code="NETWORK_ERROR", transient=True
            ) from e

        if response.is_error:
            code = _error_code(response)
            status = response.status_code
            transient = status >= 500 and code not in PERMANENT_CODES
            logger.warning("Remote call %s %s failed with %d (%s)", method, path, status, code)
            raise ProviderError(
                f"{method} {path} failed with status {status}",
                status_code=status,
                code=code,
                transient=transient,
            )
        return response

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()


def _error_code(response: httpx.Response) -> str | None:
    try:
        body = orjson.loads(response.content)
    except orjson.JSONDecodeError:
        return None
    if isinstance(body, dict):
        code = body.get("code")
        return str(code) if code is not None else None
    return None
