import json
from typing import Any

import pytest
import requests
from requests import Response
from rich.console import Console

from myplant_client.api import MyPlantClient
from myplant_client.storage import CredentialStore
from myplant_client.theme import myplant_theme

SET_COOKIE = "pb_auth=ABC123; Expires=Wed, 01 Jan 2030 00:00:00 GMT; Path=/; HttpOnly"


def make_response(
    status: int = 200,
    body: Any = None,
    headers: dict | None = None,
    text: str | None = None,
) -> Response:
    resp = Response()
    if text is None:
        text = json.dumps(body) if body is not None else ""
    resp._content = text.encode("utf-8")
    resp.encoding = "utf-8"
    resp.status_code = status
    if headers:
        resp.headers.update(headers)
    return resp


class FakeSession(requests.Session):
    """Session that replays queued responses instead of touching the network."""

    def __init__(self, *responses: Response):
        super().__init__()
        self.responses = list(responses)
        self.calls: list[dict[str, Any]] = []

    def queue(self, *responses: Response):
        self.responses.extend(responses)

    def request(self, method, url, **kwargs):
        self.calls.append({"method": method, "url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected request: {method} {url}")
        return self.responses.pop(0)


@pytest.fixture
def console() -> Console:
    return Console(theme=myplant_theme, record=True, width=200)


@pytest.fixture
def store() -> CredentialStore:
    return CredentialStore(backends=[])


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def client(console, store, session) -> MyPlantClient:
    return MyPlantClient(console, base_url="https://myplant.test/api/", store=store, session=session)


@pytest.fixture
def logged_in(client, session) -> MyPlantClient:
    session.queue(
        make_response(
            body={"success": True, "token": "t", "user": {"id": "u1", "name": "Uma", "email": "u@x.nl", "username": "uma"}},
            headers={"Set-Cookie": SET_COOKIE},
        )
    )
    client.login("u", "p")
    session.calls.clear()
    return client
