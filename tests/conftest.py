"""Shared test fixtures and configuration."""

import pytest
from envoy_service.config import ServiceConfig


@pytest.fixture
def test_config():
    """ServiceConfig with sensible defaults for testing."""
    defaults = {
        'host': '192.168.1.50',
        'serial_number': '122212345678',
        'username': 'owner@example.com',
        'password': 'secret',
        'login_url': 'https://login.test/login/login.json',
        'token_url': 'https://tokens.test/tokens',
        'request_timeout': 5.0,
        'scrape_timeout': 5.0,
        'strict_scrape': True,
        'reauth_on_unauthorized': True,
        'listen_host': '::1',
        'listen_port': 12345,
        'log_level': 'INFO',
    }
    return ServiceConfig(**defaults)
