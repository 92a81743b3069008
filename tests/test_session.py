import logging

import httpx
import pytest
from pydiction import ANY_NOT_NONE, Matcher

from pycouch.connection.exceptions import (
    ConflictError,
    DocumentNotFoundError,
    ProtocolMalformedError,
    ServerRejectedError,
    SessionNotInitializedError,
    TranslationUnsupportedError,
)
from pycouch.connection.session import CouchSession
from pycouch.connection.types import SecurityInfo, SecurityRole
from pycouch.connection.utils import doc_path, get_or_create_db
from pycouch.query.expressions import FieldExpression
from pycouch.query.query import MangoQuery
from tests.queries import Person
from tests.utils import CouchStub, body

LUKE = {"_id": "luke", "_rev": "1-a", "name": "Luke", "age": 19}
LEIA = {"_id": "leia", "_rev": "1-b", "name": "Leia", "age": 19}


@pytest.mark.asyncio
async def test_execute(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_find", json={"docs": [LUKE, LEIA], "bookmark": "g1AAA"})
    query = MangoQuery(Person).where(Person.age == 19).order_by(Person.age).take(2)

    result = await session.execute(query)

    assert [i.name for i in result] == ["Luke", "Leia"]
    assert isinstance(result[0], Person)
    assert result[1].id == "leia"
    assert len(result) == 2
    assert result.bookmark == "g1AAA"
    assert result.warning is None
    assert body(couch.last("POST", "/pycouch/_find")) == {
        "selector": {"age": 19},
        "sort": [{"age": "asc"}],
        "limit": 2,
    }


@pytest.mark.asyncio
async def test_query_execute_through_session(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_find", json={"docs": [LUKE]})
    result = await session.query(Person).where(Person.name == "Luke").execute(session)
    assert result.docs[0].rev == "1-a"


@pytest.mark.asyncio
async def test_execute_raw_query(session: CouchSession, couch: CouchStub, matcher: Matcher):
    couch.on(
        "POST",
        "/pycouch/_find",
        json={
            "docs": [LUKE],
            "execution_stats": {"total_docs_examined": 2, "results_returned": 1, "execution_time_ms": 1.5},
        },
    )
    result = await session.execute({"selector": {"name": "Luke"}, "execution_stats": True})
    matcher.assert_declarative_object(result.docs, [{"_id": "luke", "_rev": ANY_NOT_NONE, "name": "Luke", "age": 19}])
    assert result.execution_stats.total_docs_examined == 2
    assert result.execution_stats.results_returned == 1


@pytest.mark.asyncio
async def test_execute_json_query(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_find", json={"docs": [LUKE]})
    result = await session.execute('{"selector": {"name": "Luke"}, "limit": 1}', Person)
    assert result[0].name == "Luke"
    assert body(couch.last("POST", "/pycouch/_find")) == {"selector": {"name": "Luke"}, "limit": 1}


@pytest.mark.asyncio
async def test_execute_warning(session: CouchSession, couch: CouchStub, caplog):
    couch.on("POST", "/pycouch/_find", json={"docs": [], "warning": "No matching index found, create an index"})
    result = await session.execute(MangoQuery(Person).where(Person.age > 1))
    assert list(result) == []
    assert result.warning == "No matching index found, create an index"
    warnings = [i for i in caplog.records if i.levelno == logging.WARNING]
    assert warnings and warnings[0].warning == result.warning


@pytest.mark.asyncio
async def test_execute_rejected(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_find", 400, json={"error": "bad_request", "reason": "invalid selector"})
    with pytest.raises(ServerRejectedError) as e:
        await session.execute(MangoQuery().where(FieldExpression("a") == 1))
    assert e.value.status_code == 400
    assert e.value.reason == "invalid selector"


@pytest.mark.asyncio
@pytest.mark.parametrize("content", [b"<html>", b'{"rows": []}', b'{"docs": {}}', b'{"docs": [1]}'])
async def test_execute_malformed(session: CouchSession, couch: CouchStub, content: bytes):
    couch.on("POST", "/pycouch/_find", content=content)
    with pytest.raises(ProtocolMalformedError):
        await session.execute(MangoQuery())


@pytest.mark.asyncio
async def test_execute_translation_error_sends_nothing(session: CouchSession, couch: CouchStub):
    a = FieldExpression("a")
    with pytest.raises(TranslationUnsupportedError):
        await session.execute(MangoQuery().where(a == 1, a == 2))
    assert couch.requests == []


@pytest.mark.asyncio
async def test_session_not_initialized():
    session = CouchSession(database="pycouch")
    assert not session.initialized
    with pytest.raises(SessionNotInitializedError):
        await session.execute(MangoQuery())


@pytest.mark.asyncio
async def test_initialize_creates_database(couch: CouchStub):
    couch.on("PUT", "/pycouch", 201, json={"ok": True})
    session = CouchSession(database="pycouch", transport=httpx.MockTransport(couch))
    async with session:
        assert session.initialized
    assert not session.initialized
    assert couch.sent() == [("PUT", "/pycouch")]


@pytest.mark.asyncio
async def test_get_or_create_existing_db(session: CouchSession, couch: CouchStub):
    couch.on("PUT", "/pycouch", 412, json={"error": "file_exists", "reason": "The database could not be created"})
    assert await get_or_create_db(session.transport, "pycouch") is False


def test_doc_path():
    assert doc_path("my/db", "a b") == "my%2Fdb/a%20b"
    assert doc_path("db", "_design/people") == "db/_design/people"
    assert doc_path("db", "_local/x/y") == "db/_local/x%2Fy"
    assert doc_path("db", "doc", "photo 1.png") == "db/doc/photo%201.png"


@pytest.mark.asyncio
async def test_explain(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_explain", json={"index": {"name": "_all_docs"}})
    plan = await session.explain(MangoQuery().where(FieldExpression("a") == 1))
    assert plan["index"]["name"] == "_all_docs"
    assert body(couch.last("POST", "/pycouch/_explain")) == {"selector": {"a": 1}}


@pytest.mark.asyncio
async def test_find(session: CouchSession, couch: CouchStub):
    couch.on("GET", "/pycouch/luke", json={**LUKE, "_conflicts": ["1-z"]})
    person = await session.find(Person, "luke", with_conflicts=True)
    assert person.name == "Luke"
    assert person.conflicts == ["1-z"]
    assert couch.last("GET", "/pycouch/luke").url.params["conflicts"] == "true"

    assert await session.find(Person, "vader") is None


@pytest.mark.asyncio
async def test_find_deleted_and_missing_database(session: CouchSession, couch: CouchStub):
    couch.on("GET", "/pycouch/han", 404, json={"error": "not_found", "reason": "deleted"})
    assert await session.find(Person, "han") is None

    couch.on("GET", "/pycouch/luke", 404, json={"error": "not_found", "reason": "Database does not exist."})
    with pytest.raises(DocumentNotFoundError) as e:
        await session.find(Person, "luke")
    assert e.value.reason == "Database does not exist."


@pytest.mark.asyncio
async def test_find_many(session: CouchSession, couch: CouchStub):
    couch.on(
        "POST",
        "/pycouch/_all_docs",
        json={
            "rows": [
                {"id": "luke", "key": "luke", "value": {"rev": "1-a"}, "doc": LUKE},
                {"key": "vader", "error": "not_found"},
                {"id": "leia", "key": "leia", "value": {"rev": "1-b"}, "doc": LEIA},
            ]
        },
    )
    people = await session.find_many(Person, ["luke", "vader", "leia"])
    assert [i.id for i in people] == ["luke", "leia"]
    request = couch.last("POST", "/pycouch/_all_docs")
    assert request.url.params["include_docs"] == "true"
    assert body(request) == {"keys": ["luke", "vader", "leia"]}


@pytest.mark.asyncio
async def test_add(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch", 201, json={"ok": True, "id": "generated", "rev": "1-a"})
    person = await session.add(Person(name="Luke", age=19))
    assert person.id == "generated"
    assert person.rev == "1-a"
    assert body(couch.last("POST", "/pycouch")) == {"name": "Luke", "age": 19, "tags": [], "address": None}

    couch.on("PUT", "/pycouch/leia", 202, json={"ok": True, "id": "leia"})
    leia = await session.add(Person(id="leia", name="Leia", age=19), batch=True)
    assert leia.id == "leia"
    assert leia.rev is None
    assert couch.last("PUT", "/pycouch/leia").url.params["batch"] == "ok"


@pytest.mark.asyncio
async def test_add_or_update(session: CouchSession, couch: CouchStub):
    couch.on("PUT", "/pycouch/luke", 201, json={"ok": True, "id": "luke", "rev": "2-a"})
    person = Person(id="luke", rev="1-a", name="Luke", age=20)
    await session.add_or_update(person)
    assert person.rev == "2-a"
    assert body(couch.last("PUT", "/pycouch/luke"))["_rev"] == "1-a"

    with pytest.raises(ValueError):
        await session.add_or_update(Person(name="Nobody", age=1))


@pytest.mark.asyncio
async def test_add_or_update_batch(session: CouchSession, couch: CouchStub):
    couch.on("PUT", "/pycouch/luke", 202, json={"ok": True, "id": "luke"})
    person = Person(id="luke", rev="1-a", name="Luke", age=20)
    await session.add_or_update(person, batch=True)
    assert person.rev is None
    assert couch.last("PUT", "/pycouch/luke").url.params["batch"] == "ok"

    couch.on("PUT", "/pycouch/luke", 202, json={"ok": True})
    with pytest.raises(ProtocolMalformedError):
        await session.add_or_update(Person(id="luke", name="Luke", age=20), batch=True)


@pytest.mark.asyncio
async def test_add_or_update_conflict(session: CouchSession, couch: CouchStub):
    couch.on("PUT", "/pycouch/luke", 409, json={"error": "conflict", "reason": "Document update conflict."})
    with pytest.raises(ConflictError):
        await session.add_or_update(Person(id="luke", rev="1-old", name="Luke", age=20))


@pytest.mark.asyncio
async def test_remove(session: CouchSession, couch: CouchStub):
    couch.on("DELETE", "/pycouch/luke", json={"ok": True, "id": "luke", "rev": "2-a"})
    await session.remove(Person(id="luke", rev="1-a", name="Luke", age=19))
    assert couch.last("DELETE", "/pycouch/luke").url.params["rev"] == "1-a"

    with pytest.raises(ValueError):
        await session.remove(Person(id="luke", name="Luke", age=19))


@pytest.mark.asyncio
async def test_add_or_update_range(session: CouchSession, couch: CouchStub):
    couch.on(
        "POST",
        "/pycouch/_bulk_docs",
        201,
        json=[
            {"ok": True, "id": "luke", "rev": "2-a"},
            {"id": "leia", "error": "conflict", "reason": "Document update conflict."},
            {"ok": True, "id": "generated", "rev": "1-c"},
        ],
    )
    luke = Person(id="luke", rev="1-a", name="Luke", age=20)
    leia = Person(id="leia", rev="1-old", name="Leia", age=20)
    han = Person(name="Han", age=30)

    with pytest.raises(ConflictError) as e:
        await session.add_or_update_range([luke, leia, han])

    assert e.value.reason == "Document update conflict."
    assert luke.rev == "2-a"
    assert leia.rev == "1-old"
    assert han.id == "generated"
    assert [i.get("_id") for i in body(couch.last("POST", "/pycouch/_bulk_docs"))["docs"]] == ["luke", "leia", None]


@pytest.mark.asyncio
async def test_database_info(session: CouchSession, couch: CouchStub):
    couch.on(
        "GET",
        "/pycouch",
        json={
            "db_name": "pycouch",
            "doc_count": 3,
            "doc_del_count": 1,
            "update_seq": "5-g1AAAA",
            "sizes": {"active": 10, "external": 20, "file": 30},
            "cluster": {"q": 2},
        },
    )
    info = await session.get_info()
    assert info.db_name == "pycouch"
    assert info.doc_count == 3
    assert info.update_seq == "5-g1AAAA"
    assert info.sizes.file == 30


@pytest.mark.asyncio
async def test_compact(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_compact", 202, json={"ok": True})
    await session.compact()
    assert couch.last("POST", "/pycouch/_compact").headers["content-type"] == "application/json"


@pytest.mark.asyncio
async def test_ensure_full_commit(session: CouchSession, couch: CouchStub):
    couch.on("POST", "/pycouch/_ensure_full_commit", 201, json={"ok": True, "instance_start_time": "0"})
    await session.ensure_full_commit()
    assert couch.sent() == [("POST", "/pycouch/_ensure_full_commit")]


@pytest.mark.asyncio
async def test_security(session: CouchSession, couch: CouchStub):
    couch.on("GET", "/pycouch/_security", json={"admins": {"names": ["root"], "roles": []}})
    couch.on("PUT", "/pycouch/_security", json={"ok": True})

    security = await session.get_security()
    assert security.admins.names == ["root"]
    assert security.members.roles == []

    await session.set_security(SecurityInfo(members=SecurityRole(roles=["readers"])))
    assert body(couch.last("PUT", "/pycouch/_security")) == {
        "admins": {"names": [], "roles": []},
        "members": {"names": [], "roles": ["readers"]},
    }


@pytest.mark.asyncio
async def test_download_attachment(session: CouchSession, couch: CouchStub, tmp_path):
    couch.on("GET", "/pycouch/luke/photo.png", content=b"\x89PNG-data")
    person = Person(id="luke", rev="1-a", name="Luke", age=19)

    path = await session.download_attachment(person, "photo.png", tmp_path)

    assert path == str(tmp_path / "photo.png")
    assert (tmp_path / "photo.png").read_bytes() == b"\x89PNG-data"
    assert couch.last("GET", "/pycouch/luke/photo.png").url.params["rev"] == "1-a"

    with pytest.raises(ServerRejectedError):
        await session.download_attachment(person, "missing.png", tmp_path)
