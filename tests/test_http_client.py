import asyncio

import httpx
import pytest

from centerbook.api.base import HttpError, NetworkFailure, NoRefreshToken, RequestTimeout, SessionExpired

from conftest import request_json


def protected(request):
    """Accept only the rotated token."""
    if request.headers.get("Authorization") == "Bearer new-token":
        return 200, {"ok": True}
    return 401, {"detail": "Token is invalid or expired"}


def test_bearer_token_is_attached(backend, make_client):
    """Verify the stored access token is sent as a bearer credential."""
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return 200, {"id": 1}

    backend.route("GET", "user/user/", handler=handler)
    client = make_client(access="token-1")
    response = asyncio.run(client.get("user/user/"))

    assert response.json() == {"id": 1}
    assert seen["auth"] == "Bearer token-1"


def test_no_header_without_access_token(backend, make_client):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers.get("Authorization")
        return 200, []

    backend.route("GET", "api/centers/", handler=handler)
    asyncio.run(make_client(access=None).get("api/centers/"))
    assert seen["auth"] is None


def test_expired_token_is_refreshed_and_request_retried(backend, make_client):
    refresh_bodies = []

    def refresh(request):
        refresh_bodies.append((request_json(request), request.headers.get("Authorization")))
        return 200, {"access": "new-token"}

    backend.route("GET", "user/user/", handler=protected)
    backend.route("POST", "user/token/refresh/", handler=refresh)
    client = make_client(access="old-token", refresh="refresh-1")

    response = asyncio.run(client.get("user/user/"))

    assert response.json() == {"ok": True}
    assert client.session.access_token == "new-token"
    assert client.session.refresh_token == "refresh-1"
    assert refresh_bodies == [({"refresh": "refresh-1"}, None)]
    assert backend.count("GET", "user/user/") == 2


def test_missing_refresh_token_fails_immediately(backend, make_client):
    expired = []
    backend.route("GET", "user/user/", handler=protected)
    client = make_client(access="old-token", refresh=None, on_session_expired=lambda: expired.append(True))

    with pytest.raises(NoRefreshToken):
        asyncio.run(client.get("user/user/"))

    assert backend.count("POST", "user/token/refresh/") == 0
    assert expired == [True]


def test_failed_refresh_raises_session_expired(backend, make_client):
    expired = []
    backend.route("GET", "user/user/", handler=protected)
    backend.route("POST", "user/token/refresh/", status=401, body={"detail": "Token is blacklisted"})
    client = make_client(access="old-token", on_session_expired=lambda: expired.append(True))

    with pytest.raises(SessionExpired):
        asyncio.run(client.get("user/user/"))

    assert backend.count("POST", "user/token/refresh/") == 1
    assert backend.count("GET", "user/user/") == 1
    assert client.session.access_token == "old-token"
    assert expired == [True]


def test_second_401_does_not_refresh_again(backend, make_client):
    backend.route("GET", "user/user/", status=401, body={"detail": "Nope"})
    backend.route("POST", "user/token/refresh/", body={"access": "new-token"})
    client = make_client(access="old-token")

    with pytest.raises(SessionExpired):
        asyncio.run(client.get("user/user/"))

    assert backend.count("POST", "user/token/refresh/") == 1
    assert backend.count("GET", "user/user/") == 2


def test_concurrent_401s_share_one_refresh(backend, make_client):
    async def refresh(request):
        await asyncio.sleep(0.01)
        return 200, {"access": "new-token"}

    backend.route("GET", "api/records/", handler=protected)
    backend.route("GET", "api/subscriptions/", handler=protected)
    backend.route("POST", "user/token/refresh/", handler=refresh)
    client = make_client(access="old-token")

    async def scenario():
        return await asyncio.gather(client.get("api/records/"), client.get("api/subscriptions/"))

    first, second = asyncio.run(scenario())

    assert backend.count("POST", "user/token/refresh/") == 1
    assert first.json() == {"ok": True}
    assert second.json() == {"ok": True}
    retried = [r for r in backend.requests if r.headers.get("Authorization") == "Bearer new-token"]
    assert len(retried) == 2


def test_concurrent_401s_all_expire_when_refresh_fails(backend, make_client):
    async def refresh(request):
        await asyncio.sleep(0.01)
        return 400, {"detail": "Token is invalid or expired"}

    backend.route("GET", "api/records/", handler=protected)
    backend.route("GET", "api/subscriptions/", handler=protected)
    backend.route("POST", "user/token/refresh/", handler=refresh)
    client = make_client(access="old-token")

    async def scenario():
        return await asyncio.gather(
            client.get("api/records/"),
            client.get("api/subscriptions/"),
            return_exceptions=True,
        )

    results = asyncio.run(scenario())

    assert all(isinstance(r, SessionExpired) for r in results)
    assert backend.count("POST", "user/token/refresh/") == 1


def test_rejected_refresh_token_is_not_retried(backend, make_client):
    backend.route("GET", "user/user/", handler=protected)
    backend.route("POST", "user/token/refresh/", status=401, body={"detail": "expired"})
    client = make_client(access="old-token")

    for _ in range(2):
        with pytest.raises(SessionExpired):
            asyncio.run(client.get("user/user/"))

    assert backend.count("POST", "user/token/refresh/") == 1


def test_other_errors_are_not_retried(backend, make_client):
    backend.route("POST", "api/records/", status=500, body={"detail": "Server exploded"})
    client = make_client()

    with pytest.raises(HttpError) as exc_info:
        asyncio.run(client.post("api/records/", json={"schedule": 1}))

    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == "Server exploded"
    assert backend.count("POST", "api/records/") == 1


def test_error_body_without_json_falls_back_to_text(backend, make_client):
    backend.route("GET", "api/centers/", handler=lambda r: httpx.Response(502, text="Bad gateway"))

    with pytest.raises(HttpError) as exc_info:
        asyncio.run(make_client().get("api/centers/"))

    assert exc_info.value.body == "Bad gateway"


def test_anonymous_request_does_not_refresh(backend, make_client):
    backend.route("POST", "user/login/", status=401, body={"detail": "No active account"})
    client = make_client()

    with pytest.raises(HttpError) as exc_info:
        asyncio.run(client.post("user/login/", json={}, auth=False))

    assert exc_info.value.status_code == 401
    assert backend.count("POST", "user/token/refresh/") == 0


def test_transport_failures_are_typed(backend, make_client):
    def unreachable(request):
        raise httpx.ConnectError("connection refused", request=request)

    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    backend.route("GET", "api/centers/", handler=unreachable)
    backend.route("GET", "api/sections/", handler=slow)
    client = make_client()

    with pytest.raises(NetworkFailure):
        asyncio.run(client.get("api/centers/"))
    with pytest.raises(RequestTimeout):
        asyncio.run(client.get("api/sections/"))


def test_refresh_network_failure_keeps_session(backend, make_client):
    expired = []
    attempts = []

    def refresh(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ConnectError("connection reset", request=request)
        return 200, {"access": "new-token"}

    backend.route("GET", "user/user/", handler=protected)
    backend.route("POST", "user/token/refresh/", handler=refresh)
    client = make_client(access="old-token", on_session_expired=lambda: expired.append(True))

    with pytest.raises(NetworkFailure):
        asyncio.run(client.get("user/user/"))

    assert client.session.refresh_token == "refresh-1"
    assert expired == []

    response = asyncio.run(client.get("user/user/"))

    assert response.json() == {"ok": True}
    assert len(attempts) == 2


def test_refresh_server_error_keeps_session(backend, make_client):
    expired = []
    backend.route("GET", "user/user/", handler=protected)
    backend.route("POST", "user/token/refresh/", status=503, body={"detail": "Maintenance"})
    client = make_client(access="old-token", on_session_expired=lambda: expired.append(True))

    with pytest.raises(HttpError) as exc_info:
        asyncio.run(client.get("user/user/"))

    assert exc_info.value.status_code == 503
    assert client.session.refresh_token == "refresh-1"
    assert expired == []
