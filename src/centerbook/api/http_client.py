"""
Authenticated HTTP client for the booking backend.

Every request carries the stored access token as a bearer credential. When
the backend answers 401 the client exchanges the refresh token for a new
access token and resends the request once. Concurrent 401s share a single
refresh call.
"""

import asyncio
import logging
from typing import Any, Callable, Optional

import httpx

from .base import HttpError, NetworkFailure, NoRefreshToken, RequestTimeout, SessionExpired
from .session import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "http://localhost:8000/"
DEFAULT_TIMEOUT = 20.0

REFRESH_PATH = "user/token/refresh/"


def decode_body(response: httpx.Response) -> Any:
    """Return the JSON body when there is one, otherwise the raw text."""
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return response.text


class AuthenticatedClient:
    """Async client that injects bearer tokens and refreshes them on expiry."""

    def __init__(
        self,
        session: SessionStore,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        on_session_expired: Optional[Callable[[], None]] = None,
    ):
        self.session = session
        self.base_url = base_url.rstrip("/") + "/"
        self.on_session_expired = on_session_expired
        self._http = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout,
            transport=transport,
            headers={"Accept": "application/json"},
        )
        self._refresh_task: Optional[asyncio.Future] = None
        self._rejected_refresh_token: Optional[str] = None

    async def __aenter__(self) -> "AuthenticatedClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def _send(
        self,
        method: str,
        path: str,
        token: Optional[str],
        json: Any = None,
        params: Optional[dict] = None,
    ) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        try:
            return await self._http.request(method, path, json=json, params=params, headers=headers)
        except httpx.TimeoutException as e:
            raise RequestTimeout(f"{method} {path} timed out") from e
        except httpx.TransportError as e:
            raise NetworkFailure(f"{method} {path} failed: {e}") from e

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: Any = None,
        params: Optional[dict] = None,
        auth: bool = True,
    ) -> httpx.Response:
        """
        Send a request with the stored bearer token.

        Args:
            method: HTTP method
            path: Path relative to the API base URL (e.g. 'api/records/')
            json: Optional JSON body
            params: Optional query parameters
            auth: False for anonymous endpoints (login, registration); no
                token is attached and a 401 is returned as a plain HttpError

        Returns:
            The 2xx httpx.Response

        Raises:
            HttpError: Non-2xx status other than a recoverable 401
            NoRefreshToken: 401 and no refresh token is stored
            SessionExpired: The refresh failed or the retry was rejected again
            NetworkFailure / RequestTimeout: Transport level failures, also while
                refreshing; the stored session is kept
        """
        token = self.session.access_token if auth else None
        response = await self._send(method, path, token, json, params)

        if response.status_code == 401 and auth:
            logger.debug("%s %s returned 401, refreshing access token", method, path)
            token = await self._fresh_access_token(stale_token=token)
            response = await self._send(method, path, token, json, params)
            # Only one refresh-and-retry per logical request
            if response.status_code == 401:
                self._notify_session_expired()
                raise SessionExpired(f"{method} {path} still unauthorized after token refresh")

        if not response.is_success:
            raise HttpError(response.status_code, decode_body(response))

        return response

    async def get(self, path: str, params: Optional[dict] = None) -> httpx.Response:
        return await self.request("GET", path, params=params)

    async def post(self, path: str, json: Any = None, auth: bool = True) -> httpx.Response:
        return await self.request("POST", path, json=json, auth=auth)

    async def _fresh_access_token(self, stale_token: Optional[str]) -> str:
        current = self.session.access_token
        if current and current != stale_token:
            # Another request already rotated the token while this one was in flight
            return current

        if self._refresh_task is None:
            refresh_token = self.session.refresh_token
            if not refresh_token:
                self._notify_session_expired()
                raise NoRefreshToken("No refresh token stored; log in again")
            if refresh_token == self._rejected_refresh_token:
                raise SessionExpired("Refresh token was already rejected; log in again")
            self._refresh_task = asyncio.ensure_future(self._refresh(refresh_token))
            self._refresh_task.add_done_callback(self._refresh_done)

        return await asyncio.shield(self._refresh_task)

    def _refresh_done(self, task: asyncio.Future) -> None:
        if self._refresh_task is task:
            self._refresh_task = None
        # Mark the exception retrieved even if every waiter was cancelled
        if not task.cancelled():
            task.exception()

    async def _refresh(self, refresh_token: str) -> str:
        logger.info("Refreshing access token")
        # Transport failures and 5xx say nothing about the token; keep the session
        try:
            response = await self._send("POST", REFRESH_PATH, None, json={"refresh": refresh_token})
        except (NetworkFailure, RequestTimeout) as e:
            logger.warning("Token refresh failed: %s", e)
            raise

        body = decode_body(response)
        if response.status_code >= 500:
            logger.warning("Token refresh failed: %s %s", response.status_code, body)
            raise HttpError(response.status_code, body)
        access = body.get("access") if response.is_success and isinstance(body, dict) else None
        if not access:
            logger.warning("Token refresh rejected: %s %s", response.status_code, body)
            self._rejected_refresh_token = refresh_token
            self._notify_session_expired()
            raise SessionExpired(f"Token refresh rejected: {response.status_code}")

        self.session.update_access_token(access)
        return access

    def _notify_session_expired(self) -> None:
        if self.on_session_expired is not None:
            self.on_session_expired()
