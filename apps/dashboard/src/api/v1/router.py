from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from config import settings
from services.telemetry import TelemetryService
from .auth_router import router as auth_router
from .dependencies import get_telemetry_service
from .seed_router import router as seed_router
from .telemetry_router import router as telemetry_router

router = APIRouter(prefix="/api/v1", tags=["v1"])
router.include_router(auth_router)
router.include_router(seed_router)
router.include_router(telemetry_router)


@router.get("/health")
async def health(service: TelemetryService = Depends(get_telemetry_service)):
    """Report API liveness and whether the telemetry store answers a ping."""
    if service.repository is None:
        store = {"status": "disabled", "backend": settings.telemetry_backend}
    else:
        error = await service.ping()
        store = {"status": "ok" if error is None else "unavailable", "backend": settings.telemetry_backend}
        if error is not None:
            # Reads still succeed from demo data, so the API itself stays healthy.
            store["message"] = str(error) or type(error).__name__
    return JSONResponse({"status": "ok", "version": settings.app_version, "store": store})


@router.get("/info")
async def info():
    return {
        "name": settings.app_name,
        "version": settings.app_version,
        "debug": settings.debug,
        "environment": settings.environment,
        "cors_origins": settings.cors_origins,
        "telemetry_backend": settings.telemetry_backend,
        "ingest_configured": bool(settings.ingest_api_key),
        "demo_profile": settings.demo_profile,
        "demo_timezone": settings.demo_timezone,
        "rate_limit": {
            "window_seconds": settings.rate_limit_window_seconds,
            "max_requests": settings.rate_limit_max_requests,
        },
    }
