from __future__ import annotations

import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse

from config import settings
from services.identity import UserAccount
from services.ingest import (
    DEFAULT_DEVICE_ID,
    MalformedBodyError,
    PayloadValidationError,
    build_hardware_point,
    parse_ingest_body,
)
from services.points import isoformat
from services.rate_limiter import FixedWindowRateLimiter
from services.telemetry import StoreUnavailableError, TelemetryService

from .dependencies import get_current_user, get_rate_limiter, get_telemetry_service

router = APIRouter(prefix="/telemetry", tags=["telemetry"])
logger = logging.getLogger("solar.dashboard.ingest")


@router.get("/live")
async def get_live_telemetry(
    device_id: Optional[str] = Query(default=None, alias="deviceId", max_length=50),
    _: UserAccount = Depends(get_current_user),
    service: TelemetryService = Depends(get_telemetry_service),
):
    window = await service.live(device_id or None)
    return {
        "points": [point.to_payload() for point in window.points],
        "source": window.source,
        "count": len(window.points),
        "deviceId": device_id or None,
    }


@router.get("/latest")
async def get_latest_telemetry(
    device_id: Optional[str] = Query(default=None, alias="deviceId", max_length=50),
    _: UserAccount = Depends(get_current_user),
    service: TelemetryService = Depends(get_telemetry_service),
):
    point = await service.latest(device_id or None)
    if point is None:
        if device_id:
            message = f'No data for device "{device_id}". Connect hardware or select a different device.'
        else:
            message = "No data available. Connect hardware or seed demo data."
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"error": "No telemetry data", "message": message},
        )
    return point.to_payload()


@router.get("/hourly")
async def get_hourly_telemetry(
    _: UserAccount = Depends(get_current_user),
    service: TelemetryService = Depends(get_telemetry_service),
):
    window = await service.hourly()
    return {
        "points": [row.to_payload() for row in window.rows],
        "source": window.source,
        "count": len(window.rows),
    }


@router.get("/devices")
async def list_devices(
    _: UserAccount = Depends(get_current_user),
    service: TelemetryService = Depends(get_telemetry_service),
):
    devices = await service.devices()
    return {"devices": [device.to_payload() for device in devices], "count": len(devices)}


@router.get("/ingest")
async def describe_ingest(request: Request, limiter: FixedWindowRateLimiter = Depends(get_rate_limiter)):
    return {
        "status": "ok",
        "endpoint": request.url.path,
        "method": "POST",
        "description": "Hardware telemetry ingestion endpoint",
        "configured": bool(settings.ingest_api_key),
        "requiredHeaders": {
            "X-API-Key": "Shared secret configured as INGEST_API_KEY",
            "Content-Type": "application/json",
        },
        "payloadSchema": {
            "deviceId": f"string (optional, default: '{DEFAULT_DEVICE_ID}', 1-50 chars)",
            "voltage": "number (required, 0-1000 V)",
            "current": "number (required, 0-100 A)",
            "power": "number (optional, 0-100000 W, defaults to voltage * current)",
            "ts": "string|number (optional, ISO-8601 timestamp with Z or offset, or Unix ms)",
            "temperature": "number (optional, -50 to 150 C)",
            "batteryLevel": "number (optional, 0-100 %)",
            "solarIrradiance": "number (optional, 0-2000 W/m2)",
        },
        "examplePayload": {"deviceId": "esp32-solar-01", "voltage": 24.5, "current": 5.2, "temperature": 42.3},
        "rateLimit": {
            "maxRequests": limiter.max_requests,
            "windowSeconds": limiter.window_seconds,
            "description": f"{limiter.max_requests} requests per {limiter.window_seconds:g} s per device",
        },
    }


@router.post("/ingest")
async def ingest_telemetry(
    request: Request,
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    service: TelemetryService = Depends(get_telemetry_service),
    limiter: FixedWindowRateLimiter = Depends(get_rate_limiter),
):
    expected_key = settings.ingest_api_key
    if not expected_key:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Ingestion not configured", "message": "INGEST_API_KEY is not set"},
        )
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "message": "Missing X-API-Key header"},
        )
    if not hmac.compare_digest(x_api_key.encode("utf-8"), expected_key.encode("utf-8")):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={"error": "Unauthorized", "message": "Invalid API key"},
        )

    try:
        payload = parse_ingest_body(await request.body())
    except MalformedBodyError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Bad Request", "message": str(exc)},
        ) from exc
    except PayloadValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"error": "Validation Error", "message": str(exc), "details": exc.details},
        ) from exc

    decision = limiter.check(payload.device_id)
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={
                "error": "Rate Limit Exceeded",
                "message": f"Too many requests. Max {decision.limit} per {limiter.window_seconds:g} s.",
            },
            headers=decision.headers(),
        )

    point = build_hardware_point(payload)
    try:
        point_id = await service.ingest(point)
    except StoreUnavailableError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={"error": "Store unavailable", "message": "Telemetry could not be saved; retry later"},
            headers=decision.headers(),
        ) from exc

    logger.info("Ingested telemetry from %s (%.2f W)", point.device_id, point.power)
    return JSONResponse(
        {
            "success": True,
            "message": "Telemetry data saved successfully",
            "data": {
                "id": point_id,
                "ts": isoformat(point.timestamp),
                "deviceId": point.device_id,
                "voltage": point.voltage,
                "current": point.current,
                "power": point.power,
            },
        },
        headers=decision.headers(),
    )
