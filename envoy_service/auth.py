"""Enlighten cloud handshake producing the bearer token for the local Envoy."""

from __future__ import annotations

import logging
from typing import Optional

import requests
from pydantic import ValidationError
from requests import exceptions as requests_exceptions

from .config import DEFAULT_LOGIN_URL, DEFAULT_TOKEN_URL
from .models import LoginResponse, TokenRequest

LOGGER = logging.getLogger("envoy_service.auth")


class AuthError(RuntimeError):
    """Raised when a bearer token cannot be obtained."""


class CloudLoginFailedError(AuthError):
    """The Enlighten login endpoint rejected the credentials."""


class TokenIssuanceFailedError(AuthError):
    """The token endpoint refused to issue a token for this device."""


class MalformedResponseError(AuthError):
    """An intermediate response did not have the expected shape."""


class AuthTransportError(AuthError):
    """The cloud endpoints could not be reached."""


class TokenAuthenticator:
    """Perform the two-step cloud login -> token exchange.

    No caching and no retries happen here; :class:`EnvoyClient` decides
    when a new token is needed.
    """

    def __init__(
        self,
        username: str,
        password: str,
        serial_number: str,
        *,
        login_url: str = DEFAULT_LOGIN_URL,
        token_url: str = DEFAULT_TOKEN_URL,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._username = username
        self._password = password
        self._serial_number = serial_number
        self._login_url = login_url
        self._token_url = token_url
        self._timeout = timeout
        # Regular certificate validation for the cloud hosts
        self._session = session or requests.Session()

    def close(self) -> None:
        self._session.close()

    def authenticate(self) -> str:
        """Return a freshly issued bearer token.

        Raises:
            CloudLoginFailedError: login returned a non-2xx status
            MalformedResponseError: login body lacked a ``session_id``
            TokenIssuanceFailedError: token endpoint returned a non-2xx status
            AuthTransportError: either endpoint was unreachable
        """
        session_id = self._login()
        token = self._issue_token(session_id)
        LOGGER.info("Obtained Envoy token for serial %s", self._serial_number)
        return token

    def _login(self) -> str:
        # (None, value) tuples make requests send plain multipart form fields
        form = {
            "user[email]": (None, self._username),
            "user[password]": (None, self._password),
        }
        LOGGER.debug("Logging in to %s as %s", self._login_url, self._username)
        try:
            response = self._session.post(self._login_url, files=form, timeout=self._timeout)
        except requests_exceptions.RequestException as exc:
            raise AuthTransportError(f"Unable to reach cloud login at {self._login_url}") from exc

        if not 200 <= response.status_code < 300:
            raise CloudLoginFailedError(
                f"Cloud login failed: {response.status_code} {response.reason or ''}".strip()
            )

        try:
            return LoginResponse.model_validate(response.json()).session_id
        except (ValueError, ValidationError) as exc:
            raise MalformedResponseError("Cloud login response has no usable session_id") from exc

    def _issue_token(self, session_id: str) -> str:
        payload = TokenRequest(
            session_id=session_id,
            username=self._username,
            serial_num=self._serial_number,
        )
        try:
            response = self._session.post(
                self._token_url,
                json=payload.model_dump(),
                timeout=self._timeout,
            )
        except requests_exceptions.RequestException as exc:
            raise AuthTransportError(f"Unable to reach token endpoint at {self._token_url}") from exc

        if not 200 <= response.status_code < 300:
            raise TokenIssuanceFailedError(
                f"Token issuance failed: {response.status_code} {response.reason or ''}".strip()
            )
        return response.content.decode("utf-8", errors="replace")


__all__ = [
    "AuthError",
    "AuthTransportError",
    "CloudLoginFailedError",
    "MalformedResponseError",
    "TokenAuthenticator",
    "TokenIssuanceFailedError",
]
