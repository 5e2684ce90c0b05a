from __future__ import annotations

import logging
import threading
from datetime import datetime, timezone
from typing import Callable, List, Optional

from config import settings
from mock.demo_telemetry import PROFILES, generate_demo_telemetry
from services.points import TelemetryPoint

logger = logging.getLogger("solar.dashboard.demo")

SeriesFactory = Callable[[datetime], List[TelemetryPoint]]


def _default_factory(now: datetime) -> List[TelemetryPoint]:
    return generate_demo_telemetry(
        now,
        profile=PROFILES[settings.demo_profile],
        device_id=settings.demo_device_id,
        tz=settings.demo_timezone,
        midday_hour=settings.demo_midday_hour,
    )


class DemoTelemetryCache:
    """Holds one generated demo series for the lifetime of the process."""

    def __init__(
        self,
        factory: SeriesFactory | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._factory = factory or _default_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._series: Optional[List[TelemetryPoint]] = None
        self._lock = threading.Lock()

    def get_or_create(self) -> List[TelemetryPoint]:
        with self._lock:
            if self._series is None:
                self._series = self._generate_locked()
            return self._series

    def reset(self) -> List[TelemetryPoint]:
        with self._lock:
            self._series = self._generate_locked()
            return self._series

    def peek(self) -> Optional[List[TelemetryPoint]]:
        with self._lock:
            return self._series

    def clear(self) -> None:
        with self._lock:
            self._series = None

    def _generate_locked(self) -> List[TelemetryPoint]:
        now = self._clock()
        series = self._factory(now)
        logger.debug("Generated %d demo telemetry points ending %s", len(series), now.isoformat())
        return series


demo_cache = DemoTelemetryCache()

__all__ = ["DemoTelemetryCache", "demo_cache"]
