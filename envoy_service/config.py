"""Configuration helpers for the Envoy metrics service."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

DEFAULT_ENV_PATH = Path(__file__).resolve().parent / "envoy.env"

DEFAULT_LOGIN_URL = "https://enlighten.enphaseenergy.com/login/login.json"
DEFAULT_TOKEN_URL = "https://entrez.enphaseenergy.com/tokens"


@dataclass
class ServiceConfig:
    """Configuration for the Envoy metrics service."""

    host: str
    serial_number: str
    username: str
    password: str
    login_url: str
    token_url: str
    request_timeout: float
    scrape_timeout: float
    strict_scrape: bool
    reauth_on_unauthorized: bool
    listen_host: str
    listen_port: int
    log_level: str


def load_env_file(path: Path) -> None:
    """Populate :mod:`os.environ` with KEY=VALUE pairs from ``path``."""

    if not path.exists():
        return
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.lower().startswith("export "):
            line = line[7:].strip()
        if "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip().strip("'\""))


def load_environment(explicit: Optional[str] = None) -> Optional[Path]:
    """Load the first existing env file out of the usual candidates.

    Returns the path that was loaded, or ``None`` when no file was found.
    """
    env_file = explicit or os.environ.get("ENVOY_ENV_FILE")
    candidates = []
    if env_file:
        candidates.append(Path(env_file))
    candidates.append(Path.cwd() / ".env")
    candidates.append(DEFAULT_ENV_PATH)

    seen: set[Path] = set()
    for candidate in candidates:
        resolved = candidate.resolve()
        if resolved in seen:
            continue
        seen.add(resolved)
        if resolved.exists():
            load_env_file(resolved)
            return resolved
    return None


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_float(name: str, default: float) -> float:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_listen_address(address: str) -> tuple[str, int]:
    """Split ``host:port`` (or ``[v6]:port``) into its parts."""

    host, sep, port = address.rpartition(":")
    if not sep or not host or not port.isdigit():
        raise ValueError(f"invalid listen address: {address!r}")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    return host, int(port)


REDACTED = "***redacted***"


def build_config() -> ServiceConfig:
    """Construct a :class:`ServiceConfig` from environment variables."""

    cfg = ServiceConfig(
        host=os.environ.get("ENVOY_HOST", "").strip(),
        serial_number=os.environ.get("ENVOY_SERIAL", "").strip(),
        username=os.environ.get("ENVOY_USERNAME", ""),
        password=os.environ.get("ENVOY_PASSWORD", ""),
        login_url=os.environ.get("ENVOY_LOGIN_URL", DEFAULT_LOGIN_URL),
        token_url=os.environ.get("ENVOY_TOKEN_URL", DEFAULT_TOKEN_URL),
        request_timeout=_env_float("ENVOY_REQUEST_TIMEOUT", 10.0),
        scrape_timeout=_env_float("ENVOY_SCRAPE_TIMEOUT", 30.0),
        strict_scrape=_env_bool("ENVOY_STRICT_SCRAPE", True),
        reauth_on_unauthorized=_env_bool("ENVOY_REAUTH_ON_UNAUTHORIZED", True),
        listen_host=os.environ.get("ENVOY_LISTEN_HOST", "::1"),
        listen_port=_env_int("ENVOY_LISTEN_PORT", 12345),
        log_level=os.environ.get("ENVOY_LOG_LEVEL", "INFO"),
    )

    if not cfg.host:
        raise RuntimeError("ENVOY_HOST must be set (use a .env file or environment variable)")
    if not cfg.serial_number:
        raise RuntimeError("ENVOY_SERIAL must be set")
    if not cfg.username or not cfg.password:
        raise RuntimeError("ENVOY_USERNAME and ENVOY_PASSWORD must be set")
    if cfg.request_timeout <= 0:
        raise RuntimeError("ENVOY_REQUEST_TIMEOUT must be greater than zero")
    if cfg.scrape_timeout <= 0:
        raise RuntimeError("ENVOY_SCRAPE_TIMEOUT must be greater than zero")

    return cfg


def redact_config(cfg: ServiceConfig) -> dict:
    """Return a sanitized view of ``cfg`` suitable for JSON responses."""

    return {
        "host": cfg.host,
        "serial_number": cfg.serial_number,
        "username": cfg.username,
        "password": REDACTED if cfg.password else None,
        "login_url": cfg.login_url,
        "token_url": cfg.token_url,
        "request_timeout": cfg.request_timeout,
        "scrape_timeout": cfg.scrape_timeout,
        "strict_scrape": cfg.strict_scrape,
        "reauth_on_unauthorized": cfg.reauth_on_unauthorized,
        "listen_host": cfg.listen_host,
        "listen_port": cfg.listen_port,
        "log_level": cfg.log_level,
    }
