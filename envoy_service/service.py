"""Scrape orchestration: fan out the Envoy fetches and record the results."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from .auth import AuthError
from .config import ServiceConfig
from .envoy_client import EnvoyClient
from .metrics import EnvoyMetrics

LOGGER = logging.getLogger("envoy_service.service")


class ScrapeError(RuntimeError):
    """Raised when a strict scrape could not fetch every reading."""

    def __init__(self, errors: Dict[str, str]) -> None:
        details = "; ".join(f"{name}: {message}" for name, message in errors.items())
        super().__init__(f"Envoy scrape failed ({details})")
        self.errors = errors


@dataclass
class ScrapeResult:
    timestamp: datetime
    duration: float
    production_watts: Optional[float] = None
    lifetime_watt_hours: Optional[float] = None
    errors: Dict[str, str] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.errors


@dataclass
class HealthReport:
    overall: bool
    last_scrape_time: Optional[datetime]
    last_success_time: Optional[datetime]
    consecutive_failures: int
    last_error: Optional[str]
    token_cached: bool


class EnvoyService:
    """Run scrapes against one Envoy and keep the metric state current."""

    def __init__(
        self,
        config: ServiceConfig,
        client: Optional[EnvoyClient] = None,
        metrics: Optional[EnvoyMetrics] = None,
    ) -> None:
        self._config = config
        self._client = client or EnvoyClient.from_config(config)
        self.metrics = metrics or EnvoyMetrics()

        self._scrape_lock = asyncio.Lock()
        self._last_result: Optional[ScrapeResult] = None
        self._last_success_at: Optional[datetime] = None
        self._consecutive_failures = 0

    @property
    def client(self) -> EnvoyClient:
        return self._client

    @property
    def config(self) -> ServiceConfig:
        return self._config

    # ------------------------------------------------------------------
    async def scrape(self) -> ScrapeResult:
        """Fetch all readings concurrently and write them into the metrics.

        In strict mode any failed fetch raises :class:`ScrapeError` and
        nothing from this scrape is written. Otherwise the successful
        readings are written and the failed ones keep their previous value.
        """
        async with self._scrape_lock:
            start = time.monotonic()
            fetches: Dict[str, Callable[[], Any]] = {
                "production": self._client.production_watts,
                "inverters": self._client.inverter_production_watts,
                "lifetime": self._client.lifetime_watt_hours,
            }
            outcomes = await self._run_fetches(fetches)
            result = ScrapeResult(
                timestamp=datetime.now(timezone.utc),
                duration=time.monotonic() - start,
            )

            for name, outcome in outcomes.items():
                if isinstance(outcome, BaseException):
                    result.errors[name] = str(outcome) or type(outcome).__name__
                    self._log_failure(name, outcome)

            if result.errors and self._config.strict_scrape:
                self._update_state(result)
                raise ScrapeError(result.errors) from self._first_exception(outcomes)

            self._apply(outcomes, result)
            self._update_state(result)
            return result

    async def _run_fetches(self, fetches: Dict[str, Callable[[], Any]]) -> Dict[str, Any]:
        tasks = {
            name: asyncio.create_task(asyncio.to_thread(fetch), name=f"envoy-{name}")
            for name, fetch in fetches.items()
        }
        try:
            _, pending = await asyncio.wait(tasks.values(), timeout=self._config.scrape_timeout)
        finally:
            for task in tasks.values():
                if not task.done():
                    task.cancel()

        outcomes: Dict[str, Any] = {}
        for name, task in tasks.items():
            if task in pending:
                # Only the fetches still outstanding at the deadline are timed out
                outcomes[name] = TimeoutError(
                    f"no answer from Envoy within {self._config.scrape_timeout:g}s"
                )
                continue
            exc = task.exception()
            outcomes[name] = exc if exc is not None else task.result()
        return outcomes

    def _apply(self, outcomes: Dict[str, Any], result: ScrapeResult) -> None:
        production = outcomes["production"]
        if not isinstance(production, BaseException):
            result.production_watts = production
            self.metrics.set_production_watts(production)

        inverters = outcomes["inverters"]
        if not isinstance(inverters, BaseException):
            self.metrics.set_inverter_production(inverters)

        lifetime = outcomes["lifetime"]
        if not isinstance(lifetime, BaseException):
            result.lifetime_watt_hours = lifetime
            self.metrics.set_lifetime_watt_hours(lifetime)

    @staticmethod
    def _first_exception(outcomes: Dict[str, Any]) -> Optional[BaseException]:
        for outcome in outcomes.values():
            if isinstance(outcome, BaseException):
                return outcome
        return None

    def _log_failure(self, name: str, exc: BaseException) -> None:
        if isinstance(exc, AuthError):
            LOGGER.error("Authentication for Envoy at %s failed: %s", self._client.hostname, exc)
        else:
            LOGGER.warning("Fetching %s from Envoy failed: %s", name, exc)

    def _update_state(self, result: ScrapeResult) -> None:
        self._last_result = result
        if result.success:
            self._last_success_at = result.timestamp
            self._consecutive_failures = 0
        else:
            self._consecutive_failures += 1
        self.metrics.set_scrape_status(result.success, result.duration)

    # ------------------------------------------------------------------
    def get_health_report(self) -> HealthReport:
        last_error = None
        if self._last_result and self._last_result.errors:
            last_error = "; ".join(
                f"{name}: {message}" for name, message in self._last_result.errors.items()
            )
        return HealthReport(
            overall=self._last_result is None or self._last_result.success,
            last_scrape_time=self._last_result.timestamp if self._last_result else None,
            last_success_time=self._last_success_at,
            consecutive_failures=self._consecutive_failures,
            last_error=last_error,
            token_cached=self._client.has_token,
        )

    def close(self) -> None:
        self._client.close()


__all__ = [
    "EnvoyService",
    "HealthReport",
    "ScrapeError",
    "ScrapeResult",
]
