from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, Iterable, List, Tuple

from services.points import TelemetryPoint, isoformat

HourKey = Tuple[int, int, int, int]


def hour_key(timestamp: datetime, tz: tzinfo = timezone.utc) -> HourKey:
    """Calendar hour (local fields) a sample belongs to."""
    local = timestamp.astimezone(tz)
    return (local.year, local.month, local.day, local.hour)


def window_start(now: datetime, *, hours: float = 24.0) -> datetime:
    return now - timedelta(hours=hours)


@dataclass(slots=True)
class HourBucket:
    hour_key: HourKey
    sum_voltage: float
    sum_current: float
    sum_power: float
    count: int
    last_timestamp: datetime

    def add(self, point: TelemetryPoint) -> None:
        self.sum_voltage += point.voltage
        self.sum_current += point.current
        self.sum_power += point.power
        self.count += 1
        if point.timestamp > self.last_timestamp:
            self.last_timestamp = point.timestamp


@dataclass(frozen=True, slots=True)
class HourlyRow:
    timestamp: datetime
    voltage: float
    current: float
    power: float

    def to_payload(self) -> dict[str, object]:
        return {
            "ts": isoformat(self.timestamp),
            "voltage": self.voltage,
            "current": self.current,
            "power": self.power,
        }


def aggregate_hourly(samples: Iterable[TelemetryPoint], *, tz: tzinfo = timezone.utc) -> List[HourlyRow]:
    """Average samples per calendar hour, one row per hour ordered by last sample time."""
    buckets: Dict[HourKey, HourBucket] = {}
    for point in samples:
        key = hour_key(point.timestamp, tz)
        bucket = buckets.get(key)
        if bucket is None:
            buckets[key] = HourBucket(
                hour_key=key,
                sum_voltage=point.voltage,
                sum_current=point.current,
                sum_power=point.power,
                count=1,
                last_timestamp=point.timestamp,
            )
        else:
            bucket.add(point)

    rows = [
        HourlyRow(
            timestamp=bucket.last_timestamp,
            voltage=round(bucket.sum_voltage / bucket.count, 2),
            current=round(bucket.sum_current / bucket.count, 2),
            power=round(bucket.sum_power / bucket.count, 2),
        )
        for bucket in buckets.values()
    ]
    rows.sort(key=lambda row: row.timestamp)
    return rows


__all__ = ["HourBucket", "HourKey", "HourlyRow", "aggregate_hourly", "hour_key", "window_start"]
