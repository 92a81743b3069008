import logging
from typing import TYPE_CHECKING, AsyncIterable, TypeVar
from urllib.parse import quote

if TYPE_CHECKING:
    from pycouch.connection.transport import Transport

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PREFIXED_IDS = ("_design/", "_local/")


def db_path(database: str, *segments: str) -> str:
    return "/".join([quote(database, safe=""), *segments])


def doc_path(database: str, doc_id: str, *segments: str) -> str:
    if doc_id.startswith(_PREFIXED_IDS):
        prefix, name = doc_id.split("/", 1)
        encoded = f"{prefix}/{quote(name, safe='')}"
    else:
        encoded = quote(doc_id, safe="")
    return db_path(database, encoded, *(quote(i, safe="") for i in segments))


async def get_or_create_db(transport: "Transport", database: str) -> bool:
    """Create ``database`` unless it exists; returns whether it was created."""
    response = await transport.request("PUT", db_path(database))
    if response.status_code == 412:
        return False
    response.raise_for_status()
    logger.debug("created database", extra={"database": database})
    return True


async def iterate_feed(feed: AsyncIterable[T]) -> list[T]:
    return [i async for i in feed]
