"""End-to-end tests: HTTP scrape -> orchestrator -> client -> faked Envoy and cloud."""

import json
from unittest.mock import MagicMock
from urllib.parse import urlsplit

import pytest
import requests
from fastapi.testclient import TestClient

from envoy_service.app import create_app
from envoy_service.auth import TokenAuthenticator
from envoy_service.envoy_client import EnvoyClient
from envoy_service.metrics import CONTENT_TYPE
from envoy_service.service import EnvoyService


def make_response(status_code=200, payload=None, content=None):
    response = requests.Response()
    response.status_code = status_code
    response.encoding = "utf-8"
    if content is None:
        content = json.dumps(payload).encode("utf-8") if payload is not None else b""
    response._content = content
    return response


class FakeEnvoy:
    """Serve device and cloud endpoints from mutable dictionaries."""

    def __init__(self):
        self.device = {
            "/ivp/meters/reports/production": make_response(200, {"cumulative": {"currW": 532.1}}),
            "/api/v1/production/inverters": make_response(
                200, [{"serialNumber": "INV1", "lastReportWatts": 120.5}]
            ),
            "/production.json": make_response(
                200, {"production": [{"type": "inverters", "whLifetime": 98765.4}]}
            ),
        }
        self.login = make_response(200, {"session_id": "sess-1"})
        self.token = make_response(200, content=b"token-1")
        self.logins = 0

        self.device_session = MagicMock()
        self.device_session.get.side_effect = self._get
        self.cloud_session = MagicMock()
        self.cloud_session.post.side_effect = self._post

    def _get(self, url, headers=None, timeout=None):
        assert headers == {"Authorization": "Bearer token-1"}
        return self.device[urlsplit(url).path]

    def _post(self, url, **kwargs):
        if url.endswith("/login/login.json"):
            self.logins += 1
            return self.login
        return self.token


@pytest.fixture
def envoy():
    return FakeEnvoy()


def build_service(config, envoy):
    authenticator = TokenAuthenticator(
        config.username,
        config.password,
        config.serial_number,
        login_url=config.login_url,
        token_url=config.token_url,
        session=envoy.cloud_session,
    )
    client = EnvoyClient(config.host, authenticator, session=envoy.device_session)
    return EnvoyService(config, client=client)


def test_metrics_endpoint_exposes_readings(test_config, envoy):
    service = build_service(test_config, envoy)

    with TestClient(create_app(service)) as http:
        response = http.get("/metrics")

    assert response.status_code == 200
    assert response.headers["content-type"] == CONTENT_TYPE
    body = response.text
    assert "enphase_envoy_production_watts 532.1\n" in body
    assert 'enphase_envoy_inverter_production_watts{serial_num="INV1"} 120.5\n' in body
    assert "enphase_envoy_lifetime_watt_hours_total 98765.4\n" in body


def test_second_scrape_reuses_token(test_config, envoy):
    service = build_service(test_config, envoy)

    with TestClient(create_app(service)) as http:
        assert http.get("/metrics").status_code == 200
        envoy.device["/api/v1/production/inverters"] = make_response(
            200,
            [
                {"serialNumber": "INV1", "lastReportWatts": 140.0},
                {"serialNumber": "INV2", "lastReportWatts": 60.5},
            ],
        )
        body = http.get("/metrics").text

    assert envoy.logins == 1
    assert 'enphase_envoy_inverter_production_watts{serial_num="INV1"} 140.0\n' in body
    assert 'enphase_envoy_inverter_production_watts{serial_num="INV2"} 60.5\n' in body


def test_failed_scrape_is_server_error(test_config, envoy):
    envoy.device["/production.json"] = make_response(503)
    service = build_service(test_config, envoy)

    with TestClient(create_app(service)) as http:
        response = http.get("/metrics")
        health = http.get("/health").json()

    assert response.status_code == 500
    assert "lifetime" in response.json()["detail"]
    assert health["overall"] is False
    assert health["consecutive_failures"] == 1


def test_rejected_login_is_server_error(test_config, envoy):
    envoy.login = make_response(401, {"message": "invalid"})
    service = build_service(test_config, envoy)

    with TestClient(create_app(service)) as http:
        response = http.get("/metrics")
        health = http.get("/health").json()

    assert response.status_code == 500
    assert health["token_cached"] is False
    assert "Cloud login failed" in health["last_error"]


def test_config_endpoint_is_redacted(test_config, envoy):
    service = build_service(test_config, envoy)

    with TestClient(create_app(service)) as http:
        payload = http.get("/config").json()
        root = http.get("/").json()

    assert payload["password"] == "***redacted***"
    assert payload["host"] == test_config.host
    assert root == {"service": "envoy-metrics", "status": "ok"}
