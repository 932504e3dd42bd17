"""Command line entry point for the Envoy metrics service."""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from typing import Dict, Optional

from .app import _configure_logging  # reuse logging setup
from .config import build_config, load_environment, parse_listen_address
from .service import EnvoyService

# CLI flag destination -> environment variable it overrides
_ENV_OVERRIDES: Dict[str, str] = {
    "envoy_address": "ENVOY_HOST",
    "envoy_serial": "ENVOY_SERIAL",
    "envoy_username": "ENVOY_USERNAME",
    "envoy_password": "ENVOY_PASSWORD",
}


def _apply_overrides(args: argparse.Namespace) -> None:
    load_environment(args.env_file)
    for dest, env_name in _ENV_OVERRIDES.items():
        value = getattr(args, dest, None)
        if value:
            os.environ[env_name] = value
    listen_address = getattr(args, "listen_address", None)
    if listen_address:
        host, port = parse_listen_address(listen_address)
        os.environ["ENVOY_LISTEN_HOST"] = host
        os.environ["ENVOY_LISTEN_PORT"] = str(port)


def _scrape_command(args: argparse.Namespace) -> int:
    _apply_overrides(args)
    config = build_config()
    _configure_logging(config.log_level)

    async def _run() -> bytes:
        service = EnvoyService(config)
        try:
            await service.scrape()
            return service.metrics.render()
        finally:
            service.close()

    sys.stdout.write(asyncio.run(_run()).decode("utf-8"))
    return 0


def _serve_command(args: argparse.Namespace) -> int:
    try:
        import uvicorn
    except ImportError:  # pragma: no cover - user environment issue
        raise SystemExit("uvicorn is required for the 'serve' command.")

    _apply_overrides(args)
    config = build_config()
    _configure_logging(config.log_level)
    uvicorn.run(
        "envoy_service.app:create_app",
        factory=True,
        host=config.listen_host,
        port=config.listen_port,
        log_level=config.log_level.lower(),
    )
    return 0


def _add_envoy_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--env-file", help="Path to .env file overriding defaults")
    parser.add_argument(
        "--envoy.address",
        dest="envoy_address",
        help="Address of the Enphase Envoy on your local network (ENVOY_HOST)",
    )
    parser.add_argument(
        "--envoy.serial",
        dest="envoy_serial",
        help="Serial number of the Enphase Envoy (ENVOY_SERIAL)",
    )
    parser.add_argument(
        "--envoy.username",
        dest="envoy_username",
        help="Enlighten account e-mail (ENVOY_USERNAME)",
    )
    parser.add_argument(
        "--envoy.password",
        dest="envoy_password",
        help="Enlighten account password (ENVOY_PASSWORD)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Prometheus metrics for an Enphase Envoy")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Serve /metrics with uvicorn")
    serve.add_argument(
        "--web.listen-address",
        dest="listen_address",
        help="Address on which to expose metrics, e.g. [::1]:12345",
    )
    _add_envoy_arguments(serve)
    serve.set_defaults(func=_serve_command)

    scrape = subparsers.add_parser("scrape", help="Scrape once and print the metrics")
    _add_envoy_arguments(scrape)
    scrape.set_defaults(func=_scrape_command)

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except Exception as exc:
        logging.getLogger("envoy_service.cli").exception("Command failed: %s", exc)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
