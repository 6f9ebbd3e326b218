"""Thin JSON wrapper over the Matrix Client-Server API.

Every failure (network error, timeout, non-2xx status, undecodable body) is
translated into ``TransportError`` so the core only ever sees one error type.
"""

from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from core.errors import TransportError

LOGGER = logging.getLogger(__name__)

API_PREFIX = "/_matrix/client/v3"


def path_part(value: str) -> str:
    """Percent-encode a room id, event id or user id for use in a URL path."""

    return quote(value, safe="")


class MatrixHttp:
    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def get_json(
        self,
        path: str,
        params: Optional[dict[str, Any]] = None,
        missing_ok: bool = False,
        timeout: Optional[float] = None,
    ) -> Optional[dict[str, Any]]:
        """GET ``path`` and decode the JSON body.

        With ``missing_ok`` a 403/404 returns ``None`` instead of raising; the
        homeserver answers that way for absent account data.
        """

        kwargs: dict[str, Any] = {"params": params}
        if timeout is not None:
            kwargs["timeout"] = timeout
        response = await self._send("GET", path, **kwargs)
        if missing_ok and response.status_code in (403, 404):
            return None
        return self._decode(path, response)

    async def put_json(self, path: str, body: dict[str, Any]) -> dict[str, Any]:
        response = await self._send("PUT", path, json=body)
        return self._decode(path, response)

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        url = f"{API_PREFIX}{path}"
        try:
            return await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise TransportError(f"{method} {path} failed: {exc!r}") from exc

    def _decode(self, path: str, response: httpx.Response) -> dict[str, Any]:
        if not response.is_success:
            errcode = ""
            try:
                body = response.json()
            except ValueError:
                body = None
            if isinstance(body, dict):
                errcode = str(body.get("errcode", ""))
            LOGGER.debug("Matrix %s returned %s %s", path, response.status_code, errcode)
            raise TransportError(
                f"{path} returned {response.status_code} {errcode}".strip(),
                status_code=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            raise TransportError(f"{path} returned invalid JSON") from exc
        if not isinstance(payload, dict):
            raise TransportError(f"{path} returned unexpected payload")
        return payload
