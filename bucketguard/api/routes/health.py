"""Liveness, engine health and Prometheus metrics endpoints."""

from __future__ import annotations

import logging

from fastapi import APIRouter
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.requests import Request

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/healthz")
async def liveness() -> JSONResponse:
    return JSONResponse({"status": "ok"})


@router.get("/health")
async def engine_health(request: Request) -> JSONResponse:
    """200 when the AV engine passes its EICAR check, 500 otherwise."""
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        return JSONResponse({"status": "unavailable"}, status_code=503)
    if await runtime.engine.ping():
        return JSONResponse({"status": "ok"})
    logger.warning("Health check failed: AV engine not responding")
    return JSONResponse({"status": "unhealthy"}, status_code=500)


@router.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
