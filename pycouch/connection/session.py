import asyncio
import json
import logging
import os
from typing import (
    TYPE_CHECKING,
    Any,
    Mapping,
    Optional,
    Sequence,
    Type,
    TypeVar,
    Union,
    overload,
)
from urllib.parse import quote

import httpx
from pydantic import ValidationError

from pycouch.changes.options import ChangesFeedFilter, ChangesFeedOptions, FeedMode
from pycouch.changes.reader import ChangesFeedReader
from pycouch.changes.responses import ChangesFeedResponse
from pycouch.connection.client import make_client
from pycouch.connection.exceptions import (
    DocumentNotFoundError,
    ProtocolMalformedError,
    SessionNotInitializedError,
)
from pycouch.connection.transport import Transport, server_error
from pycouch.connection.types import (
    DatabaseInfo,
    ExecutionStats,
    IndexCreated,
    IndexInfo,
    QueryResult,
    SecurityInfo,
)
from pycouch.connection.utils import db_path, doc_path, get_or_create_db
from pycouch.index import Indexes
from pycouch.orm.encoders import decode_document, encode_document
from pycouch.query.query import MangoQuery
from pycouch.query.translator import QueryDocument

if TYPE_CHECKING:
    from pycouch.orm.models import CouchDocument

logger = logging.getLogger(__name__)

TDocument = TypeVar("TDocument", bound="CouchDocument")

__all__ = ["CouchSession", "QueryResult"]


_MISSING_REASONS = ("missing", "deleted")


def _write_result(document: "CouchDocument", payload: Any, batch: bool = False) -> None:
    # batched writes are acknowledged before they are stored, without a rev
    if batch:
        if not isinstance(payload, dict) or "id" not in payload:
            raise ProtocolMalformedError("batch write response must contain `id`")
        document.id = payload["id"]
        document.rev = None
        return
    if not isinstance(payload, dict) or "id" not in payload or "rev" not in payload:
        raise ProtocolMalformedError("write response must contain `id` and `rev`")
    document.id = payload["id"]
    document.rev = payload["rev"]


def _stats(payload: Mapping[str, Any]) -> Optional[ExecutionStats]:
    stats = payload.get("execution_stats")
    if stats is None:
        return None
    try:
        return ExecutionStats.model_validate(stats)
    except ValidationError as e:
        raise ProtocolMalformedError(f"invalid execution_stats: {e}") from e


class CouchSession:
    @overload
    def __init__(self, *, client: httpx.AsyncClient, database: str): ...

    @overload
    def __init__(
        self, *, database: str, host: str = "http://127.0.0.1:5984", username: str = "admin", password: str = ""
    ): ...

    def __init__(
        self,
        *,
        client: Optional[httpx.AsyncClient] = None,
        database: str,
        host: str = "http://127.0.0.1:5984",
        username: Optional[str] = "admin",
        password: str = "",
        **client_options: Any,
    ):
        self.database = database
        self.host = host
        self.username = username
        self.password = password
        self.client_options = client_options
        self._owns_client = client is None
        self.transport: Optional[Transport] = Transport(client) if client is not None else None

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def initialize(self, create: bool = True) -> None:
        if self.transport is None:
            self.transport = Transport(
                make_client(self.host, self.username, self.password, **self.client_options)
            )
        if create:
            await get_or_create_db(self.transport, self.database)

    @property
    def initialized(self) -> bool:
        return self.transport is not None

    async def close(self) -> None:
        if self.transport is not None and self._owns_client:
            await self.transport.aclose()
            self.transport = None

    def _transport(self) -> Transport:
        if self.transport is None:
            raise SessionNotInitializedError(
                f"you should call `await {self.initialize.__name__}()` before using the session or initialize it in the"
                " constructor with an `httpx.AsyncClient`"
            )
        return self.transport

    def query(self, model: Optional[Type[TDocument]] = None) -> MangoQuery[TDocument]:
        return MangoQuery(model)

    @overload
    async def execute(self, query: MangoQuery[TDocument]) -> QueryResult[TDocument]: ...

    @overload
    async def execute(
        self, query: Union[str, Mapping[str, Any]], model: Type[TDocument]
    ) -> QueryResult[TDocument]: ...

    @overload
    async def execute(self, query: Union[str, Mapping[str, Any]]) -> QueryResult[dict[str, Any]]: ...

    async def execute(self, query, model=None):
        """
        Run a query through ``_find``.

        Documents come back decoded into the query's model (or ``model`` for raw
        query documents) in server order. Rejections raise
        :class:`ServerRejectedError` with the server's reason; malformed bodies
        raise :class:`ProtocolMalformedError`.
        """
        transport = self._transport()
        if isinstance(query, MangoQuery):
            document = query.translate()
            model = model or query.model
        elif isinstance(query, str):
            document = json.loads(query)
        else:
            document = dict(query)

        logger.debug("executing query", extra={"database": self.database, "query": document})
        if isinstance(document, QueryDocument) and document.unindexed_sort_fields and "use_index" not in document:
            logger.debug("sorting on unconstrained fields", extra={"fields": document.unindexed_sort_fields})

        response = await transport.request("POST", db_path(self.database, "_find"), json=document)
        response.raise_for_status()
        payload = response.json()
        if not isinstance(payload, dict) or not isinstance(payload.get("docs"), list):
            raise ProtocolMalformedError("query response must contain a `docs` list", response.body)

        warning = payload.get("warning")
        if warning:
            logger.warning("query warning", extra={"database": self.database, "warning": warning, "query": document})

        return QueryResult(
            docs=[decode_document(model, i) for i in payload["docs"]],
            warning=warning,
            bookmark=payload.get("bookmark"),
            execution_stats=_stats(payload),
        )

    async def explain(self, query: Union[MangoQuery, Mapping[str, Any]]) -> dict[str, Any]:
        document = query.translate() if isinstance(query, MangoQuery) else dict(query)
        response = await self._transport().request("POST", db_path(self.database, "_explain"), json=document)
        return response.raise_for_status().json()

    async def create_index(self, index: Indexes) -> IndexCreated:
        logger.debug("creating index", extra={"database": self.database, "index": index})
        response = await self._transport().request("POST", db_path(self.database, "_index"), json=index.to_body())
        try:
            return IndexCreated.model_validate(response.raise_for_status().json())
        except ValidationError as e:
            raise ProtocolMalformedError(f"invalid index response: {e}", response.body) from e

    async def create_indexes(self, *indexes: Indexes) -> Sequence[IndexCreated]:
        return await asyncio.gather(*(self.create_index(i) for i in indexes))

    async def get_indexes(self) -> list[IndexInfo]:
        response = await self._transport().request("GET", db_path(self.database, "_index"))
        payload = response.raise_for_status().json()
        if not isinstance(payload, dict) or not isinstance(payload.get("indexes"), list):
            raise ProtocolMalformedError("_index response must contain an `indexes` list", response.body)
        try:
            return [IndexInfo.model_validate(i) for i in payload["indexes"]]
        except ValidationError as e:
            raise ProtocolMalformedError(f"invalid index definition: {e}", response.body) from e

    async def delete_index(self, ddoc: str, name: str, index_type: str = "json") -> None:
        ddoc = ddoc.removeprefix("_design/")
        response = await self._transport().request(
            "DELETE", db_path(self.database, "_index", quote(ddoc, safe=""), index_type, quote(name, safe=""))
        )
        response.raise_for_status()
        logger.debug("deleted index", extra={"database": self.database, "ddoc": ddoc, "index": name})

    async def find(
        self, model: Type[TDocument], doc_id: str, with_conflicts: bool = False
    ) -> Optional[TDocument]:
        params = {"conflicts": True} if with_conflicts else None
        response = await self._transport().request("GET", doc_path(self.database, doc_id), params=params)
        try:
            payload = response.raise_for_status().json()
        except DocumentNotFoundError as e:
            if e.reason in _MISSING_REASONS:
                return None
            raise
        return decode_document(model, payload)

    async def find_many(self, model: Type[TDocument], doc_ids: Sequence[str]) -> list[TDocument]:
        """Documents for ``doc_ids`` in the same order; missing and deleted ids are left out."""
        response = await self._transport().request(
            "POST",
            db_path(self.database, "_all_docs"),
            params={"include_docs": True},
            json={"keys": list(doc_ids)},
        )
        payload = response.raise_for_status().json()
        if not isinstance(payload, dict) or not isinstance(payload.get("rows"), list):
            raise ProtocolMalformedError("_all_docs response must contain a `rows` list", response.body)
        return [decode_document(model, row["doc"]) for row in payload["rows"] if row.get("doc") is not None]

    async def add(self, document: TDocument, batch: bool = False) -> TDocument:
        params = {"batch": "ok"} if batch else None
        if document.id is None:
            response = await self._transport().request(
                "POST", db_path(self.database), params=params, json=encode_document(document)
            )
        else:
            response = await self._transport().request(
                "PUT", doc_path(self.database, document.id), params=params, json=encode_document(document)
            )
        _write_result(document, response.raise_for_status().json(), batch)
        return document

    async def add_or_update(self, document: TDocument, batch: bool = False) -> TDocument:
        if document.id is None:
            raise ValueError("cannot add or update a document without an id")
        params = {"batch": "ok"} if batch else None
        response = await self._transport().request(
            "PUT", doc_path(self.database, document.id), params=params, json=encode_document(document)
        )
        _write_result(document, response.raise_for_status().json(), batch)
        return document

    async def remove(self, document: "CouchDocument", batch: bool = False) -> None:
        if document.id is None or document.rev is None:
            raise ValueError("cannot remove a document without an id and a rev")
        params: dict[str, Any] = {"rev": document.rev}
        if batch:
            params["batch"] = "ok"
        response = await self._transport().request("DELETE", doc_path(self.database, document.id), params=params)
        response.raise_for_status()

    async def add_or_update_range(self, documents: Sequence[TDocument]) -> Sequence[TDocument]:
        """
        Write ``documents`` with one ``_bulk_docs`` request.

        ``id`` and ``rev`` are written back to every stored document; if any
        document was refused the first refusal is raised once the others were
        updated.
        """
        response = await self._transport().request(
            "POST",
            db_path(self.database, "_bulk_docs"),
            json={"docs": [encode_document(i) for i in documents]},
        )
        payload = response.raise_for_status().json()
        if not isinstance(payload, list) or len(payload) != len(documents):
            raise ProtocolMalformedError("_bulk_docs response must list one result per document", response.body)

        failures = []
        for document, result in zip(documents, payload):
            if isinstance(result, dict) and "error" in result:
                failures.append(result)
                continue
            _write_result(document, result)
        if failures:
            logger.debug("bulk write failures", extra={"database": self.database, "failures": failures})
            first = failures[0]
            status_code = 409 if first["error"] == "conflict" else 400
            raise server_error(status_code, first["error"], first.get("reason"))
        return documents

    async def get_info(self) -> DatabaseInfo:
        response = await self._transport().request("GET", db_path(self.database))
        try:
            return DatabaseInfo.model_validate(response.raise_for_status().json())
        except ValidationError as e:
            raise ProtocolMalformedError(f"invalid database info: {e}", response.body) from e

    async def compact(self) -> None:
        response = await self._transport().request("POST", db_path(self.database, "_compact"), json={})
        response.raise_for_status()

    async def ensure_full_commit(self) -> None:
        response = await self._transport().request("POST", db_path(self.database, "_ensure_full_commit"), json={})
        response.raise_for_status()

    async def get_security(self) -> SecurityInfo:
        response = await self._transport().request("GET", db_path(self.database, "_security"))
        return SecurityInfo.model_validate(response.raise_for_status().json())

    async def set_security(self, security: SecurityInfo) -> None:
        response = await self._transport().request(
            "PUT", db_path(self.database, "_security"), json=security.model_dump(mode="json")
        )
        response.raise_for_status()

    async def download_attachment(
        self, document: "CouchDocument", name: str, folder: Union[str, os.PathLike], file_name: Optional[str] = None
    ) -> str:
        """Stream attachment ``name`` of ``document`` into ``folder``; returns the written path."""
        if document.id is None:
            raise ValueError("cannot download an attachment of a document without an id")
        params = {"rev": document.rev} if document.rev else None
        path = os.path.join(folder, file_name or name)
        async with self._transport().stream(
            "GET", doc_path(self.database, document.id, name), params=params
        ) as response:
            await response.raise_for_status()
            with open(path, "wb") as f:
                async for chunk in response.aiter_chunks():
                    f.write(chunk)
        logger.debug("downloaded attachment", extra={"document": document.id, "attachment": name, "path": path})
        return path

    async def get_changes(
        self,
        options: Optional[ChangesFeedOptions] = None,
        filter_: Optional[ChangesFeedFilter] = None,
        model: Optional[Type["CouchDocument"]] = None,
        longpoll: bool = False,
    ) -> ChangesFeedResponse:
        reader = ChangesFeedReader(
            self._transport(),
            self.database,
            options,
            filter_,
            mode=FeedMode.LONGPOLL if longpoll else FeedMode.NORMAL,
            model=model,
        )
        return await reader.read()

    def get_continuous_changes(
        self,
        options: Optional[ChangesFeedOptions] = None,
        filter_: Optional[ChangesFeedFilter] = None,
        model: Optional[Type["CouchDocument"]] = None,
        read_timeout: Optional[float] = None,
    ) -> ChangesFeedReader:
        return ChangesFeedReader(
            self._transport(), self.database, options, filter_, model=model, read_timeout=read_timeout
        )

