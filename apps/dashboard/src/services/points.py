from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Literal, Mapping, Optional

TelemetrySource = Literal["demo", "stored", "hardware"]


def ensure_utc(timestamp: Optional[datetime] = None) -> datetime:
    """Normalize timestamps so everything is stored in UTC."""
    if timestamp is None:
        return datetime.now(timezone.utc)
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


def isoformat(timestamp: datetime) -> str:
    """Serialize timestamps with millisecond precision and trailing Z."""
    iso = timestamp.astimezone(timezone.utc).isoformat(timespec="milliseconds")
    if iso.endswith("+00:00"):
        return iso[:-6] + "Z"
    return iso


@dataclass(frozen=True, slots=True)
class TelemetryPoint:
    """A single timestamped voltage/current/power reading."""

    timestamp: datetime
    voltage: float
    current: float
    power: float
    device_id: str
    source: TelemetrySource
    temperature: Optional[float] = None
    battery_level: Optional[float] = None
    solar_irradiance: Optional[float] = None
    ingested_at: Optional[datetime] = None
    id: Optional[str] = field(default=None, compare=False)

    def with_source(self, source: TelemetrySource) -> "TelemetryPoint":
        return replace(self, source=source)

    def to_payload(self) -> dict[str, object]:
        return {
            "ts": isoformat(self.timestamp),
            "voltage": self.voltage,
            "current": self.current,
            "power": self.power,
            "deviceId": self.device_id,
            "source": self.source,
        }

    def to_document(self) -> dict[str, Any]:
        """Document layout persisted in the telemetry collection."""
        doc: dict[str, Any] = {
            "ts": self.timestamp,
            "deviceId": self.device_id,
            "voltage": self.voltage,
            "current": self.current,
            "power": self.power,
            "source": self.source,
        }
        if self.temperature is not None:
            doc["temperature"] = self.temperature
        if self.battery_level is not None:
            doc["batteryLevel"] = self.battery_level
        if self.solar_irradiance is not None:
            doc["solarIrradiance"] = self.solar_irradiance
        if self.ingested_at is not None:
            doc["ingestedAt"] = self.ingested_at
        return doc

    @classmethod
    def from_document(cls, doc: Mapping[str, Any]) -> "TelemetryPoint":
        # Demo documents read back from the store are reported as stored data.
        source: TelemetrySource = "hardware" if doc.get("source") == "hardware" else "stored"
        ingested_at = doc.get("ingestedAt")
        return cls(
            timestamp=ensure_utc(doc["ts"]),
            voltage=float(doc.get("voltage", 0.0)),
            current=float(doc.get("current", 0.0)),
            power=float(doc.get("power", 0.0)),
            device_id=str(doc.get("deviceId") or ""),
            source=source,
            temperature=doc.get("temperature"),
            battery_level=doc.get("batteryLevel"),
            solar_irradiance=doc.get("solarIrradiance"),
            ingested_at=ensure_utc(ingested_at) if isinstance(ingested_at, datetime) else None,
            id=str(doc["_id"]) if doc.get("_id") is not None else None,
        )


__all__ = ["TelemetryPoint", "TelemetrySource", "ensure_utc", "isoformat"]
