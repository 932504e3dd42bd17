"""FastAPI application exposing Envoy metrics."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, Response, status
from pydantic import BaseModel

from .config import build_config, load_environment, redact_config
from .metrics import CONTENT_TYPE
from .service import EnvoyService, HealthReport, ScrapeError

LOGGER = logging.getLogger("envoy_service.app")


class HealthResponse(BaseModel):
    overall: bool
    last_scrape_time: Optional[str] = None
    last_success_time: Optional[str] = None
    consecutive_failures: int
    last_error: Optional[str] = None
    token_cached: bool


def _health_to_response(report: HealthReport) -> HealthResponse:
    return HealthResponse(
        overall=report.overall,
        last_scrape_time=report.last_scrape_time.isoformat() if report.last_scrape_time else None,
        last_success_time=report.last_success_time.isoformat() if report.last_success_time else None,
        consecutive_failures=report.consecutive_failures,
        last_error=report.last_error,
        token_cached=report.token_cached,
    )


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def create_app(service: Optional[EnvoyService] = None) -> FastAPI:
    """Build the application.

    Without ``service`` the lifespan loads the environment, builds the
    configuration and owns the resulting :class:`EnvoyService`.
    """

    @asynccontextmanager
    async def _lifespan(app: FastAPI):
        owned = service is None
        if owned:
            load_environment()
            config = build_config()
            _configure_logging(config.log_level)
            app.state.service = EnvoyService(config)
        else:
            app.state.service = service
        LOGGER.info("Envoy metrics service started for %s", app.state.service.client.hostname)
        try:
            yield
        finally:
            if owned:
                LOGGER.info("Shutting down Envoy metrics service")
                app.state.service.close()

    app = FastAPI(title="Envoy Metrics Service", version="1.0.0", lifespan=_lifespan)

    def get_service(request: Request) -> EnvoyService:
        svc = getattr(request.app.state, "service", None)
        if svc is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Service not ready")
        return svc

    @app.get("/", response_model=Dict[str, str])
    async def root() -> Dict[str, str]:
        return {"service": "envoy-metrics", "status": "ok"}

    @app.get("/metrics")
    async def metrics(svc: EnvoyService = Depends(get_service)) -> Response:
        try:
            await svc.scrape()
        except ScrapeError as exc:
            LOGGER.error("Scrape failed: %s", exc)
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail=str(exc),
            ) from exc
        return Response(content=svc.metrics.render(), media_type=CONTENT_TYPE)

    @app.get("/health", response_model=HealthResponse)
    async def health(svc: EnvoyService = Depends(get_service)) -> HealthResponse:
        return _health_to_response(svc.get_health_report())

    @app.get("/config", response_model=Dict[str, Any])
    async def config_endpoint(svc: EnvoyService = Depends(get_service)) -> Dict[str, Any]:
        return redact_config(svc.config)

    return app


__all__ = ["create_app"]
