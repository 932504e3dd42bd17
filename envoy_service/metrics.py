"""Prometheus metric state for Envoy readings."""

from __future__ import annotations

import threading
from typing import Dict, Iterable, Iterator, Optional

from prometheus_client import CollectorRegistry
from prometheus_client.core import CounterMetricFamily, GaugeMetricFamily, Metric
from prometheus_client.openmetrics.exposition import generate_latest

from .models import InverterProduction

CONTENT_TYPE = "application/openmetrics-text; version=1.0.0; charset=utf-8"

PREFIX = "enphase_envoy"


class EnvoyMetrics:
    """Hold the latest readings and expose them as a registry collector.

    Values are last-writer-wins. Inverter serials are never pruned: an
    inverter that stops reporting keeps its last known value.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._production_watts: Optional[float] = None
        self._inverter_watts: Dict[str, float] = {}
        self._lifetime_watt_hours: Optional[float] = None
        self._up: float = 0.0
        self._scrape_duration: Optional[float] = None
        self.registry = CollectorRegistry()
        self.registry.register(self)

    def set_production_watts(self, value: float) -> None:
        with self._lock:
            self._production_watts = value

    def set_inverter_production(self, inverters: Iterable[InverterProduction]) -> None:
        with self._lock:
            for inverter in inverters:
                self._inverter_watts[inverter.serial_num] = inverter.last_known_watts

    def set_lifetime_watt_hours(self, value: float) -> None:
        # Set rather than incremented: the Envoy already reports a running total
        with self._lock:
            self._lifetime_watt_hours = value

    def set_scrape_status(self, success: bool, duration: float) -> None:
        with self._lock:
            self._up = 1.0 if success else 0.0
            self._scrape_duration = duration

    def inverter_watts(self) -> Dict[str, float]:
        with self._lock:
            return dict(self._inverter_watts)

    def collect(self) -> Iterator[Metric]:
        with self._lock:
            production = self._production_watts
            inverters = sorted(self._inverter_watts.items())
            lifetime = self._lifetime_watt_hours
            up = self._up
            duration = self._scrape_duration

        if production is not None:
            yield GaugeMetricFamily(
                f"{PREFIX}_production_watts",
                "Currently produced watts",
                value=production,
            )

        inverter_family = GaugeMetricFamily(
            f"{PREFIX}_inverter_production_watts",
            "Last known production for inverters",
            labels=["serial_num"],
        )
        for serial_num, watts in inverters:
            inverter_family.add_metric([serial_num], watts)
        yield inverter_family

        if lifetime is not None:
            yield CounterMetricFamily(
                f"{PREFIX}_lifetime_watt_hours",
                "Total amount of watt hours produced by the system",
                value=lifetime,
            )

        yield GaugeMetricFamily(
            f"{PREFIX}_up",
            "Whether the last scrape of the Envoy succeeded",
            value=up,
        )
        if duration is not None:
            yield GaugeMetricFamily(
                f"{PREFIX}_scrape_duration_seconds",
                "Duration of the last scrape of the Envoy",
                value=duration,
            )

    def render(self) -> bytes:
        """Encode the registry in the OpenMetrics text format."""
        return generate_latest(self.registry)


__all__ = ["CONTENT_TYPE", "EnvoyMetrics"]
