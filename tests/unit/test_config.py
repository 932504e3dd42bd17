"""Tests for environment-driven configuration and the CLI overrides."""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from envoy_service.cli import _apply_overrides, build_parser
from envoy_service.config import (
    DEFAULT_LOGIN_URL,
    DEFAULT_TOKEN_URL,
    REDACTED,
    build_config,
    load_env_file,
    parse_listen_address,
    redact_config,
)

REQUIRED_ENV = {
    "ENVOY_HOST": "192.168.1.50",
    "ENVOY_SERIAL": "122212345678",
    "ENVOY_USERNAME": "owner@example.com",
    "ENVOY_PASSWORD": "secret",
}


class TestBuildConfig(unittest.TestCase):

    @patch.dict(os.environ, REQUIRED_ENV, clear=True)
    def test_defaults(self):
        cfg = build_config()

        self.assertEqual(cfg.host, "192.168.1.50")
        self.assertEqual(cfg.login_url, DEFAULT_LOGIN_URL)
        self.assertEqual(cfg.token_url, DEFAULT_TOKEN_URL)
        self.assertEqual(cfg.request_timeout, 10.0)
        self.assertTrue(cfg.strict_scrape)
        self.assertTrue(cfg.reauth_on_unauthorized)
        self.assertEqual((cfg.listen_host, cfg.listen_port), ("::1", 12345))

    @patch.dict(os.environ, {
        **REQUIRED_ENV,
        "ENVOY_STRICT_SCRAPE": "no",
        "ENVOY_REAUTH_ON_UNAUTHORIZED": "0",
        "ENVOY_REQUEST_TIMEOUT": "2.5",
        "ENVOY_LISTEN_PORT": "not-a-number",
    }, clear=True)
    def test_overrides_and_bad_numbers(self):
        cfg = build_config()

        self.assertFalse(cfg.strict_scrape)
        self.assertFalse(cfg.reauth_on_unauthorized)
        self.assertEqual(cfg.request_timeout, 2.5)
        self.assertEqual(cfg.listen_port, 12345)

    def test_missing_required_values(self):
        for missing in REQUIRED_ENV:
            env = {k: v for k, v in REQUIRED_ENV.items() if k != missing}
            with self.subTest(missing=missing), patch.dict(os.environ, env, clear=True):
                with self.assertRaises(RuntimeError):
                    build_config()

    @patch.dict(os.environ, REQUIRED_ENV, clear=True)
    def test_redaction_hides_password(self):
        redacted = redact_config(build_config())

        self.assertEqual(redacted["password"], REDACTED)
        self.assertNotIn("secret", redacted.values())


class TestEnvFile(unittest.TestCase):

    @patch.dict(os.environ, {"ENVOY_HOST": "from-env"}, clear=True)
    def test_env_file_does_not_override_environment(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / ".env"
            path.write_text(
                "# comment\nexport ENVOY_HOST=from-file\nENVOY_SERIAL='1234'\nnot a pair\n",
                encoding="utf-8",
            )
            load_env_file(path)

            self.assertEqual(os.environ["ENVOY_HOST"], "from-env")
            self.assertEqual(os.environ["ENVOY_SERIAL"], "1234")


class TestListenAddress(unittest.TestCase):

    def test_parse(self):
        self.assertEqual(parse_listen_address("[::1]:12345"), ("::1", 12345))
        self.assertEqual(parse_listen_address("0.0.0.0:9100"), ("0.0.0.0", 9100))

    def test_invalid(self):
        for value in ("localhost", ":9100", "host:port"):
            with self.subTest(value=value), self.assertRaises(ValueError):
                parse_listen_address(value)


class TestCliOverrides(unittest.TestCase):

    @patch.dict(os.environ, {"ENVOY_ENV_FILE": "/nonexistent/envoy.env"}, clear=True)
    def test_flags_override_environment(self):
        args = build_parser().parse_args([
            "serve",
            "--web.listen-address", "[::]:9200",
            "--envoy.address", "envoy.local",
            "--envoy.serial", "999",
            "--envoy.username", "me@example.com",
            "--envoy.password", "pw",
        ])

        with patch("envoy_service.config.Path.cwd", return_value=Path("/nonexistent")):
            _apply_overrides(args)
        cfg = build_config()

        self.assertEqual(cfg.host, "envoy.local")
        self.assertEqual(cfg.serial_number, "999")
        self.assertEqual(cfg.username, "me@example.com")
        self.assertEqual(cfg.password, "pw")
        self.assertEqual((cfg.listen_host, cfg.listen_port), ("::", 9200))


if __name__ == "__main__":
    unittest.main()
