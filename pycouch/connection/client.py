from typing import Mapping, Optional, Union

import httpx


def make_client(  # nosec: B107
    host: str = "http://127.0.0.1:5984",
    username: Optional[str] = "admin",
    password: str = "",
    timeout: Union[float, httpx.Timeout, None] = 30.0,
    headers: Optional[Mapping[str, str]] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    auth = httpx.BasicAuth(username, password) if username else None
    return httpx.AsyncClient(
        base_url=host,
        auth=auth,
        timeout=timeout,
        headers={"Accept": "application/json", **(headers or {})},
        transport=transport,
    )
