import logging
import sys
from typing import AsyncGenerator, TypeVar

import httpx
import pytest
from pydiction import Matcher

from pycouch.connection.client import make_client
from pycouch.connection.session import CouchSession
from tests.utils import CouchStub

exclude = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "taskName",
}


@pytest.fixture(autouse=True)
def add_log(caplog):
    class CustomFormatter(logging.Formatter):
        def format(self, record):
            formatted_record = record.getMessage()

            for i in record.__dict__:
                if i not in exclude:
                    formatted_record += f"\n{i}=\n{record.__dict__[i]}"

            return formatted_record

    formatter = CustomFormatter()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(formatter)
    logger = logging.getLogger("pycouch")
    logger.addHandler(handler)
    with caplog.at_level(logging.DEBUG, "pycouch"):
        yield
    logger.removeHandler(handler)


T = TypeVar("T")

AsyncFixture = AsyncGenerator[T, None]


@pytest.fixture
def couch() -> CouchStub:
    return CouchStub()


@pytest.fixture
async def client(couch: CouchStub) -> AsyncFixture[httpx.AsyncClient]:
    client = make_client(transport=httpx.MockTransport(couch))
    yield client
    await client.aclose()


@pytest.fixture
async def session(client: httpx.AsyncClient) -> AsyncFixture[CouchSession]:
    yield CouchSession(client=client, database="pycouch")


@pytest.fixture
def matcher():
    return Matcher()
