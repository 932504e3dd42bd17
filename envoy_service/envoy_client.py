"""Client for the Envoy's local HTTPS API."""

from __future__ import annotations

import logging
import re
import threading
import warnings
from typing import Any, Callable, List, Optional, TypeVar
from urllib.parse import urlsplit

import requests
from pydantic import ValidationError
from requests import exceptions as requests_exceptions
from urllib3 import exceptions as urllib3_exceptions

from .auth import TokenAuthenticator
from .config import ServiceConfig
from .models import (
    InverterProduction,
    InverterProductionList,
    LifetimeProductionReport,
    ProductionReport,
)

LOGGER = logging.getLogger("envoy_service.envoy_client")

PRODUCTION_PATH = "/ivp/meters/reports/production"
INVERTERS_PATH = "/api/v1/production/inverters"
LIFETIME_PATH = "/production.json"

T = TypeVar("T")


def _ignore_insecure_warnings_for(hostname: str) -> None:
    """Silence urllib3's unverified-HTTPS warning for the Envoy host only.

    The Envoy only presents a self-signed certificate; warnings for any
    other host (the cloud endpoints verify normally) are left alone.
    """
    host = urlsplit(f"https://{hostname}").hostname or hostname
    warnings.filterwarnings(
        "ignore",
        message=rf"Unverified HTTPS request is being made to host '{re.escape(host)}'",
        category=urllib3_exceptions.InsecureRequestWarning,
    )


class ApiError(RuntimeError):
    """Raised when a request to the Envoy fails."""


class TransportError(ApiError):
    """The Envoy could not be reached or the connection broke."""


class HTTPStatusError(ApiError):
    """The Envoy answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class UnauthorizedError(HTTPStatusError):
    """The Envoy rejected the bearer token (401/403)."""


class DecodeError(ApiError):
    """The response body was not the JSON shape we expect."""


class EnvoyClient:
    """Fetch production readings from one Envoy.

    The bearer token is cached for the lifetime of the client and shared
    between threads; see :meth:`token`.
    """

    def __init__(
        self,
        hostname: str,
        authenticator: TokenAuthenticator,
        *,
        timeout: float = 10.0,
        reauth_on_unauthorized: bool = True,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._hostname = hostname
        self._authenticator = authenticator
        self._timeout = timeout
        self._reauth_on_unauthorized = reauth_on_unauthorized
        self._session = session or requests.Session()
        self._session.verify = False
        _ignore_insecure_warnings_for(hostname)
        self._token: Optional[str] = None
        self._token_lock = threading.Lock()

    @classmethod
    def from_config(cls, config: ServiceConfig) -> "EnvoyClient":
        authenticator = TokenAuthenticator(
            config.username,
            config.password,
            config.serial_number,
            login_url=config.login_url,
            token_url=config.token_url,
            timeout=config.request_timeout,
        )
        return cls(
            config.host,
            authenticator,
            timeout=config.request_timeout,
            reauth_on_unauthorized=config.reauth_on_unauthorized,
        )

    @property
    def hostname(self) -> str:
        return self._hostname

    @property
    def has_token(self) -> bool:
        return self._token is not None

    def close(self) -> None:
        self._session.close()
        self._authenticator.close()

    # ------------------------------------------------------------------
    def token(self) -> str:
        """Return the cached token, authenticating once if there is none."""
        token = self._token
        if token is not None:
            return token
        with self._token_lock:
            # Another thread may have filled the cache while we waited
            if self._token is None:
                LOGGER.info("No cached token for Envoy at %s, authenticating", self._hostname)
                self._token = self._authenticator.authenticate()
            return self._token

    def invalidate_token(self, stale: Optional[str] = None) -> None:
        """Drop the cached token.

        When ``stale`` is given the cache is only cleared if it still holds
        that value, so a token refreshed by another thread survives.
        """
        with self._token_lock:
            if stale is None or self._token == stale:
                self._token = None

    # ------------------------------------------------------------------
    def production_watts(self) -> float:
        """Current production of the whole system in watts."""
        return self._get(PRODUCTION_PATH, ProductionReport.model_validate).cumulative.current_watts

    def inverter_production_watts(self) -> List[InverterProduction]:
        """Last reported production per inverter, in device order."""
        return self._get(INVERTERS_PATH, InverterProductionList.validate_python)

    def lifetime_watt_hours(self) -> float:
        """Lifetime production of the inverters; 0.0 if the Envoy reports none."""
        return self._get(LIFETIME_PATH, LifetimeProductionReport.model_validate).lifetime_watt_hours()

    # ------------------------------------------------------------------
    def _get(self, path: str, decode: Callable[[Any], T]) -> T:
        token = self.token()
        try:
            response = self._send(path, token)
        except UnauthorizedError:
            if not self._reauth_on_unauthorized:
                raise
            LOGGER.warning("Envoy rejected cached token on %s, re-authenticating", path)
            self.invalidate_token(stale=token)
            response = self._send(path, self.token())

        try:
            return decode(response.json())
        except (ValueError, ValidationError) as exc:
            raise DecodeError(f"Unexpected response body from {path}: {exc}") from exc

    def _send(self, path: str, token: str) -> requests.Response:
        url = f"https://{self._hostname}{path}"
        try:
            response = self._session.get(
                url,
                headers={"Authorization": f"Bearer {token}"},
                timeout=self._timeout,
            )
        except requests_exceptions.RequestException as exc:
            raise TransportError(f"Unable to reach Envoy at {url}") from exc

        if response.status_code in (401, 403):
            raise UnauthorizedError(
                f"Envoy rejected token for {path}: {response.status_code}",
                response.status_code,
            )
        if not 200 <= response.status_code < 300:
            raise HTTPStatusError(
                f"Envoy returned {response.status_code} for {path}",
                response.status_code,
            )
        return response


__all__ = [
    "ApiError",
    "DecodeError",
    "EnvoyClient",
    "HTTPStatusError",
    "TransportError",
    "UnauthorizedError",
]
