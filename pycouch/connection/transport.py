import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Mapping, Optional, Union

import httpx

from pycouch.connection.exceptions import (
    ConflictError,
    DocumentNotFoundError,
    ProtocolMalformedError,
    ServerRejectedError,
)

logger = logging.getLogger(__name__)

Params = Mapping[str, Union[str, int, float, bool, None]]

_ERRORS_BY_STATUS: dict[int, type[ServerRejectedError]] = {
    404: DocumentNotFoundError,
    409: ConflictError,
}


def parse_json(body: bytes) -> Any:
    try:
        return json.loads(body)
    except ValueError as e:
        raise ProtocolMalformedError(f"response body is not valid JSON: {e}", body) from e


def rejection(status_code: int, body: bytes) -> ServerRejectedError:
    error = reason = None
    try:
        payload = json.loads(body) if body else None
    except ValueError:
        payload = None
        reason = body.decode("utf-8", errors="replace") or None
    if isinstance(payload, dict):
        error = payload.get("error")
        reason = payload.get("reason")
    return server_error(status_code, error, reason)


def server_error(status_code: int, error: Optional[str], reason: Optional[str]) -> ServerRejectedError:
    return _ERRORS_BY_STATUS.get(status_code, ServerRejectedError)(status_code, error, reason)


@dataclass
class TransportResponse:
    status_code: int
    body: bytes

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def json(self) -> Any:
        return parse_json(self.body)

    def raise_for_status(self) -> "TransportResponse":
        if not self.ok:
            raise rejection(self.status_code, self.body)
        return self


class StreamResponse:
    def __init__(self, response: httpx.Response):
        self._response = response

    @property
    def status_code(self) -> int:
        return self._response.status_code

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def aiter_chunks(self) -> AsyncIterator[bytes]:
        return self._response.aiter_bytes()

    async def aread(self) -> bytes:
        return await self._response.aread()

    async def raise_for_status(self) -> "StreamResponse":
        if not self.ok:
            raise rejection(self.status_code, await self.aread())
        return self


def _clean(params: Optional[Params]) -> Optional[dict[str, Any]]:
    if params is None:
        return None
    return {k: v for k, v in params.items() if v is not None}


class Transport:
    """
    Request capability over a shared :class:`httpx.AsyncClient`.

    The client is safe for concurrent use; one transport serves any number of
    queries and feeds at the same time.
    """

    def __init__(self, client: httpx.AsyncClient):
        self.client = client

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Params] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        headers: Optional[Mapping[str, str]] = None,
    ) -> TransportResponse:
        logger.debug("sending request", extra={"method": method, "path": path, "params": params})
        response = await self.client.request(
            method, path, params=_clean(params), json=json, content=content, headers=headers
        )
        return TransportResponse(response.status_code, response.content)

    @asynccontextmanager
    async def stream(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Params] = None,
        json: Any = None,
        timeout: Union[float, httpx.Timeout, None, Any] = httpx.USE_CLIENT_DEFAULT,
    ) -> AsyncIterator[StreamResponse]:
        logger.debug("opening stream", extra={"method": method, "path": path, "params": params})
        async with self.client.stream(method, path, params=_clean(params), json=json, timeout=timeout) as response:
            yield StreamResponse(response)

    async def aclose(self) -> None:
        await self.client.aclose()
