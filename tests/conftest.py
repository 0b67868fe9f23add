"""Shared fixtures for apollo-sync tests."""

import copy
import json
from pathlib import Path
from tempfile import TemporaryDirectory

import httpx
import pytest

from apollo_sync.client import ApolloClient, RetryPolicy

SESSION_COOKIE = "auth=token123"


class FakeHost:
    """In-memory Apollo host speaking the web API over httpx.MockTransport."""

    def __init__(self, apps=None, username="admin", password="secret"):
        self.apps = copy.deepcopy(apps or [])
        self.username = username
        self.password = password
        self.requests: list[httpx.Request] = []
        self.failures: dict[tuple[str, str], int] = {}
        self.expire_session_once = False
        self._next_uuid = 1

    def requests_to(self, method: str, path: str) -> list[httpx.Request]:
        return [
            r for r in self.requests if r.method == method and r.url.path == path
        ]

    def pushed_payloads(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests_to("POST", "/api/apps")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        method, path = request.method, request.url.path

        if (method, path) in self.failures:
            return httpx.Response(self.failures[(method, path)])

        if path == "/api/login":
            body = json.loads(request.content)
            if body != {"username": self.username, "password": self.password}:
                return httpx.Response(401)
            return httpx.Response(
                200,
                headers={"set-cookie": f"{SESSION_COOKIE}; Path=/; HttpOnly"},
                json={"status": True},
            )

        if request.headers.get("cookie") != SESSION_COOKIE or self.expire_session_once:
            self.expire_session_once = False
            return httpx.Response(401)

        if method == "GET" and path == "/api/apps":
            return httpx.Response(200, json={"apps": copy.deepcopy(self.apps)})

        if method == "POST" and path == "/api/apps":
            payload = json.loads(request.content)
            index = payload.pop("index")
            if index == -1:
                if not payload.get("uuid"):
                    payload["uuid"] = f"uuid-{self._next_uuid}"
                    self._next_uuid += 1
                self.apps.append(payload)
            else:
                self.apps[index] = payload
            return httpx.Response(200, json={"status": True})

        if method == "POST" and path == "/api/apps/delete":
            uuid = json.loads(request.content)["uuid"]
            self.apps = [app for app in self.apps if app.get("uuid") != uuid]
            return httpx.Response(200, json={"status": True})

        return httpx.Response(404)

    def client(self, **kwargs) -> ApolloClient:
        kwargs.setdefault("retry_policy", RetryPolicy(jitter=False))
        return ApolloClient(
            "https://apollo.local:47990",
            self.username,
            self.password,
            transport=httpx.MockTransport(self.handler),
            **kwargs,
        )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_host():
    """Create an empty fake host."""
    return FakeHost()


@pytest.fixture
def make_host():
    """Factory for fake hosts seeded with apps."""
    return FakeHost
