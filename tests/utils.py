import json
from typing import Any, AsyncIterator, Callable, Iterable, Optional, Union
from unittest.mock import ANY

import httpx

Handler = Callable[[httpx.Request], httpx.Response]


def lines(*records: Any) -> bytes:
    return b"".join(json.dumps(i).encode() + b"\n" for i in records)


def body(request: httpx.Request) -> Any:
    return json.loads(request.content) if request.content else None


class CouchStub:
    """
    In-memory stand-in for the server, mounted with :class:`httpx.MockTransport`.

    Routes are keyed by method and decoded path; unknown routes answer 404.
    """

    def __init__(self):
        self.routes: dict[tuple[str, str], Handler] = {}
        self.requests: list[httpx.Request] = []

    def on(
        self,
        method: str,
        path: str,
        status_code: int = 200,
        json: Any = None,
        content: Optional[Union[bytes, Callable[[], AsyncIterator[bytes]]]] = None,
        handler: Optional[Handler] = None,
    ) -> "CouchStub":
        if handler is None:

            def handler(request: httpx.Request) -> httpx.Response:
                if callable(content):
                    return httpx.Response(status_code, content=content())
                if content is not None:
                    return httpx.Response(status_code, content=content)
                return httpx.Response(status_code, json=json)

        self.routes[(method, path)] = handler
        return self

    def last(self, method: str, path: str) -> httpx.Request:
        for request in reversed(self.requests):
            if request.method == method and request.url.path == path:
                return request
        raise AssertionError(f"no {method} {path} request was sent, got {self.sent()}")

    def sent(self) -> list[tuple[str, str]]:
        return [(i.method, i.url.path) for i in self.requests]

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        handler = self.routes.get((request.method, request.url.path))
        if handler is None:
            return httpx.Response(404, json={"error": "not_found", "reason": "missing"})
        return handler(request)


async def chunked(chunks: Iterable[bytes]) -> AsyncIterator[bytes]:
    for chunk in chunks:
        yield chunk


def _assert(actual, expected, key):
    expected_value = expected[key]
    actual_value = actual[key]
    if expected_value is ANY:
        return

    if isinstance(expected_value, dict) and isinstance(actual_value, dict):
        assert_equals_dicts(expected_value, actual_value)
    elif isinstance(expected_value, list) and isinstance(actual_value, list):
        assert_equals_lists(expected_value, actual_value)
    else:
        assert expected_value == actual_value, f"Values for key '{key}' do not match"


def assert_equals_dicts(expected, actual):
    assert isinstance(actual, dict), "Expected a dictionary for actual value"
    assert isinstance(expected, dict), "Expected a dictionary for expected value"

    _expected_keys = set(expected.keys())
    _actual_keys = set(actual.keys())
    assert _actual_keys == _expected_keys, ("Keys in dictionaries do not match", _actual_keys, _expected_keys)
    for key in expected:
        _assert(actual, expected, key)


def assert_equals_lists(expected, actual):
    assert isinstance(actual, list), "Expected a list for actual value"
    assert isinstance(expected, list), "Expected a list for expected value"

    assert len(actual) == len(expected), "Lists have different lengths"

    for i in range(len(expected)):
        _assert(actual, expected, i)
