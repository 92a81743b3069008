"""
Change feed consumption.

A :class:`ChangesFeedReader` serves exactly one feed and moves through::

    IDLE -> REQUESTING -> STREAMING -> COMPLETED | CANCELLED | FAULTED

Bounded feeds (``normal``/``longpoll``) are read with :meth:`ChangesFeedReader.read`.
Continuous feeds are consumed by iterating the reader::

    async with session.get_continuous_changes(ChangesFeedOptions(since=token)) as feed:
        async for change in feed:
            token = change.seq

``cancel()`` stops the feed within one network wait; cancelling the consuming
task works as well. The connection is closed on every way out. A finished
reader cannot be reopened, build a new one with ``since=reader.last_seq``.
"""
import asyncio
import logging
import sys
from contextlib import aclosing
from enum import Enum
from typing import TYPE_CHECKING, Any, AsyncGenerator, AsyncIterator, Optional, Type, Union

import httpx
from pydantic import ValidationError

from pycouch.changes.options import ChangesFeedFilter, ChangesFeedOptions, FeedMode
from pycouch.changes.responses import ChangesFeedResponse, ChangesFeedResult
from pycouch.connection.exceptions import FeedStateError, ProtocolMalformedError, StreamTerminatedEarlyError
from pycouch.connection.transport import StreamResponse, Transport, parse_json
from pycouch.connection.utils import db_path
from pycouch.orm.encoders import decode_document
from pycouch.query.types import SequenceToken

if sys.version_info >= (3, 11):
    from typing import Self
else:
    from typing_extensions import Self

if TYPE_CHECKING:
    from pycouch.orm.models import CouchDocument

logger = logging.getLogger(__name__)

LAST_SEQ = "last_seq"


class FeedState(str, Enum):
    IDLE = "idle"
    REQUESTING = "requesting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAULTED = "faulted"


TERMINAL_STATES = frozenset({FeedState.COMPLETED, FeedState.CANCELLED, FeedState.FAULTED})

_CANCELLED = object()


async def _anext(iterator: AsyncIterator[bytes]) -> Optional[bytes]:
    try:
        return await iterator.__anext__()
    except StopAsyncIteration:
        return None


class ChangesFeedReader:
    def __init__(
        self,
        transport: Transport,
        database: str,
        options: Optional[ChangesFeedOptions] = None,
        filter_: Optional[ChangesFeedFilter] = None,
        *,
        mode: FeedMode = FeedMode.CONTINUOUS,
        model: Optional[Type["CouchDocument"]] = None,
        read_timeout: Optional[float] = None,
    ):
        self.transport = transport
        self.database = database
        self.options = options or ChangesFeedOptions()
        self.filter = filter_
        self.mode = mode
        self.model = model
        self.read_timeout = read_timeout
        self.state = FeedState.IDLE
        self.last_seq: Optional[SequenceToken] = self.options.since
        self._cancel_requested = asyncio.Event()
        self._generator: Optional[AsyncGenerator[ChangesFeedResult, None]] = None

    def __repr__(self):
        return f"<ChangesFeedReader: {self.database} {self.mode.value} {self.state.value}>"

    @property
    def cancelled(self) -> bool:
        return self._cancel_requested.is_set()

    def _transition(self, state: FeedState) -> None:
        if self.state in TERMINAL_STATES:
            return
        logger.debug(
            "change feed state",
            extra={"database": self.database, "from_state": self.state.value, "to_state": state.value},
        )
        self.state = state

    def _begin(self) -> None:
        if self.state != FeedState.IDLE:
            raise FeedStateError(
                f"feed is {self.state.value}, open a new reader with since={self.last_seq!r} to resume"
            )
        self._transition(FeedState.REQUESTING)

    def _fail(self, error: BaseException) -> None:
        if isinstance(error, (asyncio.CancelledError, GeneratorExit)):
            self._transition(FeedState.CANCELLED)
        else:
            self._transition(FeedState.FAULTED)

    def build_request(self) -> tuple[str, str, dict[str, Any], Optional[dict[str, Any]]]:
        params: dict[str, Any] = {"feed": self.mode.value, **self.options.to_params()}
        body = None
        if self.filter is not None:
            params.update(self.filter.to_params())
            body = self.filter.to_body()
        method = "GET" if body is None else "POST"
        return method, db_path(self.database, "_changes"), params, body

    def cancel(self) -> None:
        """Stop the feed; a pending network wait is abandoned and no further records are yielded."""
        self._cancel_requested.set()
        if self.state == FeedState.IDLE:
            self._transition(FeedState.CANCELLED)

    def parse_result(self, raw: Any) -> ChangesFeedResult:
        if not isinstance(raw, dict):
            raise ProtocolMalformedError(f"change record must be an object, got {type(raw).__name__}")
        doc = raw.get("doc")
        try:
            result = ChangesFeedResult.model_validate({k: v for k, v in raw.items() if k != "doc"})
        except ValidationError as e:
            raise ProtocolMalformedError(f"invalid change record: {e}") from e
        if doc is not None:
            result.doc = doc if result.deleted else decode_document(self.model, doc)
        return result

    def parse_response(self, payload: Any) -> ChangesFeedResponse:
        if not isinstance(payload, dict) or LAST_SEQ not in payload or not isinstance(payload.get("results"), list):
            raise ProtocolMalformedError("change feed response must contain `results` and `last_seq`")
        try:
            response = ChangesFeedResponse.model_validate({**payload, "results": []})
        except ValidationError as e:
            raise ProtocolMalformedError(f"invalid change feed response: {e}") from e
        response.results = [self.parse_result(i) for i in payload["results"]]
        return response

    async def read(self) -> ChangesFeedResponse:
        """Read a bounded feed in one request."""
        if self.mode == FeedMode.CONTINUOUS:
            raise FeedStateError("continuous feeds are consumed by iterating the reader")
        self._begin()
        method, path, params, body = self.build_request()
        try:
            response = await self.transport.request(method, path, params=params, json=body)
            response.raise_for_status()
            self._transition(FeedState.STREAMING)
            feed = self.parse_response(response.json())
        except BaseException as e:
            self._fail(e)
            raise
        self.last_seq = feed.last_seq
        self._transition(FeedState.COMPLETED)
        return feed

    def __aiter__(self) -> AsyncGenerator[ChangesFeedResult, None]:
        if self.mode != FeedMode.CONTINUOUS:
            raise FeedStateError("bounded feeds are read with `read()`")
        if self._generator is not None:
            raise FeedStateError(f"feed already opened, open a new reader with since={self.last_seq!r} to resume")
        self._generator = self._iterate()
        return self._generator

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._generator is not None:
            await self._generator.aclose()
        if self.state == FeedState.IDLE:
            self._transition(FeedState.CANCELLED)

    async def _iterate(self) -> AsyncGenerator[ChangesFeedResult, None]:
        if self.state == FeedState.CANCELLED:
            return
        self._begin()
        method, path, params, body = self.build_request()
        timeout = httpx.Timeout(self.read_timeout, connect=30.0)
        try:
            async with self.transport.stream(method, path, params=params, json=body, timeout=timeout) as response:
                await response.raise_for_status()
                self._transition(FeedState.STREAMING)
                async with aclosing(self._records(response)) as records:
                    async for record in records:
                        yield record
        except BaseException as e:
            self._fail(e)
            raise
        if self.cancelled:
            self._transition(FeedState.CANCELLED)
        else:
            self._transition(FeedState.COMPLETED)

    async def _next_chunk(self, chunks: AsyncIterator[bytes]) -> Union[bytes, None, object]:
        if self.cancelled:
            return _CANCELLED
        read = asyncio.ensure_future(_anext(chunks))
        cancel = asyncio.ensure_future(self._cancel_requested.wait())
        try:
            await asyncio.wait({read, cancel}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            read.cancel()
            await asyncio.wait({read})
            raise
        finally:
            cancel.cancel()
        if read.done():
            return read.result()
        read.cancel()
        await asyncio.wait({read})
        return _CANCELLED

    async def _records(self, response: StreamResponse) -> AsyncGenerator[ChangesFeedResult, None]:
        chunks = response.aiter_chunks()
        buffer = bytearray()
        while True:
            chunk = await self._next_chunk(chunks)
            if chunk is _CANCELLED:
                logger.debug("change feed cancelled", extra={"database": self.database, "last_seq": self.last_seq})
                return
            if chunk is None:
                break
            buffer += chunk
            while True:
                end = buffer.find(b"\n")
                if end < 0:
                    break
                line = bytes(buffer[:end]).strip()
                del buffer[: end + 1]
                if not line:
                    logger.debug("heartbeat", extra={"database": self.database})
                    continue
                result = self._parse_raw(parse_json(line))
                if result is None or self.cancelled:
                    return
                self.last_seq = result.seq
                yield result

        tail = bytes(buffer).strip()
        if tail:
            try:
                raw = parse_json(tail)
            except ProtocolMalformedError as e:
                raise StreamTerminatedEarlyError(
                    "change feed closed in the middle of a record", last_seq=self.last_seq
                ) from e
            result = self._parse_raw(raw)
            if result is None or self.cancelled:
                return
            self.last_seq = result.seq
            yield result
        raise StreamTerminatedEarlyError("change feed closed without a last_seq marker", last_seq=self.last_seq)

    def _parse_raw(self, raw: Any) -> Optional[ChangesFeedResult]:
        if isinstance(raw, dict) and LAST_SEQ in raw and "id" not in raw:
            self.last_seq = raw[LAST_SEQ]
            logger.debug("change feed finished", extra={"database": self.database, "last_seq": self.last_seq})
            return None
        return self.parse_result(raw)
