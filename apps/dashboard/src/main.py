from fastapi import FastAPI, Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware
import logging, time

from config import settings
from api.v1.router import router as v1_router
from services.demo_cache import demo_cache
from services.mailer import account_mailer
from services.rate_limiter import FixedWindowRateLimiter
from services.telemetry import TelemetryService
from services.telemetry_store import build_repository

logger = logging.getLogger("solar.dashboard")
if not logger.handlers:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

def create_app() -> FastAPI:
    app = FastAPI(title=settings.app_name, version=settings.app_version)

    app.state.telemetry_service = TelemetryService(
        build_repository(settings),
        demo_cache,
        tz=settings.demo_timezone,
        demo_device_id=settings.demo_device_id,
    )
    app.state.rate_limiter = FixedWindowRateLimiter(
        window_seconds=settings.rate_limit_window_seconds,
        max_requests=settings.rate_limit_max_requests,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        dur_ms = (time.perf_counter() - start) * 1000.0
        logger.info("%s %s -> %s (%.1f ms)", request.method, request.url.path, response.status_code, dur_ms)
        return response

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        body = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
        return JSONResponse(body, status_code=exc.status_code, headers=exc.headers)

    @app.get("/", tags=["meta"])
    async def root():
        return {"name": settings.app_name, "version": settings.app_version}

    @app.get("/health", tags=["meta"])
    async def health():
        return JSONResponse({"status": "ok", "version": settings.app_version})

    app.include_router(v1_router)

    @app.on_event("startup")
    async def _startup():
        service: TelemetryService = app.state.telemetry_service
        if service.repository is None:
            logger.info("Telemetry store disabled; dashboards will show demo data.")
        elif await service.ensure_indexes():
            logger.info("Telemetry store ready (backend=%s).", settings.telemetry_backend)
        else:
            logger.warning("Telemetry store unreachable at startup; serving demo data until it recovers.")
        if not settings.ingest_api_key:
            logger.info("Hardware ingestion disabled (set INGEST_API_KEY to enable).")

    @app.on_event("shutdown")
    async def _shutdown():
        await app.state.telemetry_service.close()
        await account_mailer.close()

    return app

app = create_app()
