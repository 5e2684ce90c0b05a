from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from config import settings
from mock.demo_telemetry import PROFILES, generate_demo_telemetry, resolve_timezone
from services.aggregation import HourlyRow, aggregate_hourly, window_start
from services.demo_cache import DemoTelemetryCache
from services.points import TelemetryPoint, TelemetrySource
from services.telemetry_store import (
    MAX_QUERY_POINTS,
    DeviceSummary,
    TelemetryRepository,
    attempt,
)

logger = logging.getLogger("solar.dashboard.telemetry")

LIVE_WINDOW = timedelta(minutes=10)
HISTORY_HOURS = 24.0


class StoreUnavailableError(RuntimeError):
    """Raised when a write cannot reach the telemetry store."""


@dataclass(frozen=True, slots=True)
class TelemetryWindow:
    points: List[TelemetryPoint]
    source: TelemetrySource


@dataclass(frozen=True, slots=True)
class HourlyWindow:
    rows: List[HourlyRow]
    source: TelemetrySource


@dataclass(frozen=True, slots=True)
class SeedOutcome:
    inserted: int
    source: TelemetrySource


def _stored_source(points: List[TelemetryPoint]) -> TelemetrySource:
    return "hardware" if any(point.source == "hardware" for point in points) else "stored"


class TelemetryService:
    """Read, seed and ingest telemetry, falling back to demo data when the store fails."""

    def __init__(
        self,
        repository: Optional[TelemetryRepository],
        demo_cache: DemoTelemetryCache,
        *,
        tz: str = "UTC",
        demo_device_id: str = "demo-device",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repository = repository
        self._demo_cache = demo_cache
        self._tz_name = tz
        self._tz = resolve_timezone(tz)
        self._demo_device_id = demo_device_id
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def repository(self) -> Optional[TelemetryRepository]:
        return self._repository

    async def live(self, device_id: Optional[str] = None, *, now: Optional[datetime] = None) -> TelemetryWindow:
        now = now or self._clock()
        start = now - LIVE_WINDOW
        result = await attempt(
            self._repository,
            "live query",
            lambda repo: repo.find_since(start, device_id=device_id, limit=MAX_QUERY_POINTS),
        )
        if result.ok:
            points = result.value or []
            return TelemetryWindow(points=points, source=_stored_source(points))

        series = self._demo_series(device_id)
        if not series:
            return TelemetryWindow(points=[], source="demo")
        # The cached series may be older than the request; anchor the window at its last sample.
        demo_start = series[-1].timestamp - LIVE_WINDOW
        return TelemetryWindow(points=[p for p in series if p.timestamp >= demo_start], source="demo")

    async def latest(self, device_id: Optional[str] = None) -> Optional[TelemetryPoint]:
        result = await attempt(
            self._repository,
            "latest query",
            lambda repo: repo.find_latest(device_id=device_id),
        )
        if result.ok:
            return result.value

        series = self._demo_series(device_id)
        return series[-1] if series else None

    async def hourly(self, *, now: Optional[datetime] = None) -> HourlyWindow:
        now = now or self._clock()
        start = window_start(now, hours=HISTORY_HOURS)

        async def _query(repo: TelemetryRepository) -> tuple[int, List[HourlyRow]]:
            hardware = await repo.count(start=start, source="hardware")
            rows = await repo.hourly(start, tz=self._tz_name)
            return hardware, rows

        result = await attempt(self._repository, "hourly aggregation", _query)
        if result.ok and result.value is not None:
            hardware, rows = result.value
            return HourlyWindow(rows=rows, source="hardware" if hardware > 0 else "stored")

        series = self._demo_cache.get_or_create()
        if not series:
            return HourlyWindow(rows=[], source="demo")
        demo_start = window_start(series[-1].timestamp, hours=HISTORY_HOURS)
        rows = aggregate_hourly((p for p in series if p.timestamp >= demo_start), tz=self._tz)
        return HourlyWindow(rows=rows, source="demo")

    async def devices(self) -> List[DeviceSummary]:
        result = await attempt(self._repository, "device listing", lambda repo: repo.device_summaries())
        if result.ok:
            return result.value or []

        series = self._demo_cache.get_or_create()
        return [
            DeviceSummary(
                device_id=self._demo_device_id,
                last_seen=series[-1].timestamp if series else None,
                source="demo",
                data_points=len(series),
            )
        ]

    async def seed(self, *, now: Optional[datetime] = None) -> SeedOutcome:
        """Replace stored demo telemetry with a freshly generated day.

        Only demo documents are purged; hardware readings are preserved. If the
        store cannot be written, the in-memory demo series is regenerated instead.
        """
        now = now or self._clock()
        points = generate_demo_telemetry(
            now,
            profile=PROFILES[settings.demo_profile],
            device_id=self._demo_device_id,
            tz=self._tz,
            midday_hour=settings.demo_midday_hour,
        )

        async def _reseed(repo: TelemetryRepository) -> int:
            purged = await repo.delete_many(source="demo")
            inserted = await repo.insert_many(points)
            await repo.ensure_indexes()
            logger.info("Seeded %d demo telemetry points (purged %d)", inserted, purged)
            return inserted

        result = await attempt(self._repository, "demo reseed", _reseed)
        if result.ok:
            return SeedOutcome(inserted=result.value or 0, source="stored")

        series = self._demo_cache.reset()
        logger.info("Telemetry store unavailable; regenerated %d in-memory demo points", len(series))
        return SeedOutcome(inserted=len(series), source="demo")

    async def ingest(self, point: TelemetryPoint) -> str:
        result = await attempt(self._repository, "hardware ingest", lambda repo: repo.insert_one(point))
        if not result.ok:
            raise StoreUnavailableError("Telemetry store unavailable") from result.error
        return result.value or ""

    async def ensure_indexes(self) -> bool:
        result = await attempt(self._repository, "index setup", lambda repo: repo.ensure_indexes())
        return result.ok

    async def ping(self) -> Optional[BaseException]:
        result = await attempt(self._repository, "ping", lambda repo: repo.ping())
        return result.error

    async def close(self) -> None:
        if self._repository is not None:
            await self._repository.close()

    def _demo_series(self, device_id: Optional[str]) -> List[TelemetryPoint]:
        if device_id and device_id != self._demo_device_id:
            return []
        return self._demo_cache.get_or_create()


__all__ = [
    "HourlyWindow",
    "SeedOutcome",
    "StoreUnavailableError",
    "TelemetryService",
    "TelemetryWindow",
]
