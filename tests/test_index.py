import pytest

from pycouch.connection.exceptions import DocumentNotFoundError, ProtocolMalformedError
from pycouch.connection.session import CouchSession
from pycouch.index import JsonIndex, TextIndex
from tests.queries import Person
from tests.utils import CouchStub, body

INDEXES = {
    "total_rows": 2,
    "indexes": [
        {"ddoc": None, "name": "_all_docs", "type": "special", "def": {"fields": [{"_id": "asc"}]}},
        {
            "ddoc": "_design/people",
            "name": "by-age",
            "type": "json",
            "def": {"fields": [{"age": "asc"}, {"name": "desc"}]},
            "partitioned": False,
        },
    ],
}


def test_json_index_body():
    index = JsonIndex([Person.age, -Person.name, "address.city"], name="by-age", ddoc="people")
    assert index.to_body() == {
        "index": {"fields": ["age", {"name": "desc"}, "address.city"]},
        "type": "json",
        "name": "by-age",
        "ddoc": "people",
    }


def test_partial_index_body():
    index = JsonIndex([+Person.age], partial_filter_selector=Person.age > 18, partitioned=False)
    assert index.to_body() == {
        "index": {"fields": [{"age": "asc"}], "partial_filter_selector": {"age": {"$gt": 18}}},
        "type": "json",
        "partitioned": False,
    }
    raw = JsonIndex(["age"], partial_filter_selector={"age": {"$gt": 18}})
    assert raw.definition()["partial_filter_selector"] == {"age": {"$gt": 18}}


def test_index_requires_fields():
    with pytest.raises(ValueError):
        JsonIndex([]).to_body()


def test_text_index_body():
    index = TextIndex(fields={"name": "string", "age": "number"}, analyzer="standard", name="search")
    assert index.to_body() == {
        "index": {
            "fields": [{"name": "name", "type": "string"}, {"name": "age", "type": "number"}],
            "analyzer": "standard",
        },
        "type": "text",
        "name": "search",
    }


@pytest.mark.asyncio
async def test_create_index(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_index", json={"result": "created", "id": "_design/people", "name": "by-age"})

    result = await session.create_index(JsonIndex([Person.age], name="by-age", ddoc="people"))

    assert result.created
    assert result.id == "_design/people"
    assert body(couch.last("POST", "/pycouch/_index")) == {
        "index": {"fields": ["age"]},
        "type": "json",
        "name": "by-age",
        "ddoc": "people",
    }


@pytest.mark.asyncio
async def test_create_indexes(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_index", json={"result": "exists", "id": "_design/auto", "name": "auto"})
    results = await session.create_indexes(JsonIndex(["age"]), JsonIndex(["name"]))
    assert [i.created for i in results] == [False, False]
    assert len(couch.requests) == 2


@pytest.mark.asyncio
async def test_create_index_malformed(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_index", json={"ok": True})
    with pytest.raises(ProtocolMalformedError):
        await session.create_index(JsonIndex(["age"]))


@pytest.mark.asyncio
async def test_get_indexes(session: CouchSession, couch: CouchStub):
    couch.on("GET", "/pycouch/_index", json=INDEXES)

    indexes = await session.get_indexes()

    assert [i.name for i in indexes] == ["_all_docs", "by-age"]
    assert indexes[0].ddoc is None
    assert indexes[1].type == "json"
    assert indexes[1].definition == {"fields": [{"age": "asc"}, {"name": "desc"}]}


@pytest.mark.asyncio
async def test_get_indexes_malformed(session: CouchSession, couch: CouchStub):
    couch.on("GET", "/pycouch/_index", json={"total_rows": 0})
    with pytest.raises(ProtocolMalformedError):
        await session.get_indexes()


@pytest.mark.asyncio
async def test_delete_index(session: CouchSession, couch: CouchStub):
    couch.on("DELETE", "/pycouch/_index/people/json/by-age", json={"ok": True})

    await session.delete_index("_design/people", "by-age")
    await session.delete_index("people", "by-age")

    assert couch.sent() == [("DELETE", "/pycouch/_index/people/json/by-age")] * 2
    with pytest.raises(DocumentNotFoundError):
        await session.delete_index("people", "missing")
