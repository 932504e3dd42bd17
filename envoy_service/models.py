"""Wire models for the Enlighten cloud and the local Envoy API."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field, TypeAdapter


class LoginResponse(BaseModel):
    session_id: str


class TokenRequest(BaseModel):
    session_id: str
    username: str
    serial_num: str


class CumulativeProduction(BaseModel):
    current_watts: float = Field(..., alias="currW")


class ProductionReport(BaseModel):
    """Body of ``/ivp/meters/reports/production`` (only the fields we read)."""

    cumulative: CumulativeProduction


class InverterProduction(BaseModel):
    serial_num: str = Field(..., alias="serialNumber")
    last_known_watts: float = Field(..., alias="lastReportWatts")


InverterProductionList = TypeAdapter(List[InverterProduction])


class ProductionSource(BaseModel):
    kind: str = Field(..., alias="type")
    lifetime_watt_hours: float = Field(..., alias="whLifetime")


class LifetimeProductionReport(BaseModel):
    """Body of ``/production.json``; one entry per production source."""

    production: List[ProductionSource]

    def lifetime_watt_hours(self, kind: str = "inverters") -> float:
        for source in self.production:
            if source.kind == kind:
                return source.lifetime_watt_hours
        return 0.0
