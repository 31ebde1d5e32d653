"""Pytest fixtures: an in-memory fake of the booking backend."""

import inspect
import json

import httpx
import pytest

from centerbook.api.center_client import CenterApi
from centerbook.api.http_client import AuthenticatedClient
from centerbook.api.session import ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, MemoryStorage, SessionStore

BASE_URL = "http://backend.test/"


class FakeBackend:
    """Routes requests to per-endpoint handlers and records every call."""

    def __init__(self):
        self.calls = []
        self.requests = []
        self.routes = {}

    def route(self, method, path, status=200, body=None, handler=None):
        if handler is None:
            def handler(request):
                return status, body
        self.routes[(method, path)] = handler

    async def __call__(self, request):
        path = request.url.path.lstrip("/")
        self.calls.append((request.method, path))
        self.requests.append(request)
        handler = self.routes.get((request.method, path))
        if handler is None:
            return httpx.Response(404, json={"detail": "Not found."})

        result = handler(request)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, httpx.Response):
            return result
        status, body = result
        if body is None:
            return httpx.Response(status)
        return httpx.Response(status, json=body)

    def count(self, method, path):
        return self.calls.count((method, path))

    def transport(self):
        return httpx.MockTransport(self)


def request_json(request):
    return json.loads(request.content) if request.content else None


def slot_json(id, start, end=None, reserved=0, capacity=5, status=True, day="2024-06-01", section=7):
    return {
        "id": id,
        "section": section,
        "date": day,
        "start_time": start,
        "end_time": end or start,
        "capacity": capacity,
        "reserved": reserved,
        "status": status,
    }


def subscription_json(id, activated=True, active=True, frozen=False, user=1, type="MONTH"):
    return {
        "id": id,
        "user": user,
        "type": type,
        "start_date": "2024-05-01",
        "end_date": "2024-07-01",
        "is_active": active,
        "is_activated_by_admin": activated,
        "is_frozen": frozen,
    }


@pytest.fixture
def backend():
    return FakeBackend()


@pytest.fixture
def make_client(backend):
    def factory(access="token-1", refresh="refresh-1", on_session_expired=None):
        tokens = {}
        if access:
            tokens[ACCESS_TOKEN_KEY] = access
        if refresh:
            tokens[REFRESH_TOKEN_KEY] = refresh
        return AuthenticatedClient(
            SessionStore(MemoryStorage(tokens)),
            base_url=BASE_URL,
            transport=backend.transport(),
            on_session_expired=on_session_expired,
        )
    return factory


@pytest.fixture
def make_api(make_client):
    def factory(**kwargs):
        return CenterApi(make_client(**kwargs))
    return factory
