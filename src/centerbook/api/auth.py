"""
Login / logout / registration.

This is the only code that writes the refresh token: the HTTP client merely
rotates the access token.
"""

import logging
import re
from typing import Optional

from .base import AuthError, HttpError, User
from .center_client import ENDPOINTS
from .http_client import AuthenticatedClient, decode_body

logger = logging.getLogger(__name__)

# At least 8 characters and one digit
PASSWORD_RULE = re.compile(r"^(?=.*\d).{8,}$")


def is_valid_password(password: str) -> bool:
    return bool(PASSWORD_RULE.match(password))


class AuthService:
    def __init__(self, http: AuthenticatedClient):
        self.http = http

    @property
    def session(self):
        return self.http.session

    async def login(self, email: str, password: str) -> dict:
        """
        Exchange credentials for a token pair and persist it.

        Returns:
            The raw login response

        Raises:
            AuthError: If the backend answers without both tokens
            HttpError: If the credentials are rejected
        """
        response = await self.http.post(
            ENDPOINTS["LOGIN"], json={"email": email, "password": password}, auth=False
        )
        data = decode_body(response) or {}
        access = data.get("access")
        refresh = data.get("refresh")
        if not access or not refresh:
            raise AuthError("Login response is missing access or refresh token")

        self.session.save(access, refresh)
        logger.info("Logged in as %s", email)
        return data

    def logout(self) -> None:
        self.session.clear()
        logger.info("Logged out")

    async def current_user(self) -> Optional[User]:
        """Return the logged in user, or None when nobody is logged in."""
        if not self.session.is_authenticated:
            return None
        try:
            response = await self.http.get(ENDPOINTS["USER"])
        except HttpError as e:
            if e.status_code in (401, 403):
                return None
            raise
        return User.from_json(decode_body(response))

    async def register(
        self,
        email: str,
        password: str,
        first_name: str,
        last_name: str,
        phone_number: str,
        iin: str = "",
    ) -> User:
        if not is_valid_password(password):
            raise ValueError("Password must be at least 8 characters long and contain a digit.")
        payload = {
            "email": email,
            "first_name": first_name,
            "last_name": last_name,
            "phone_number": phone_number,
            "iin": iin,
            "password": password,
            "role": "USER",
        }
        response = await self.http.post(ENDPOINTS["REGISTER"], json=payload, auth=False)
        return User.from_json(decode_body(response))
