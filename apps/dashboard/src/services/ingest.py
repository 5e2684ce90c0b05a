from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from services.points import TelemetryPoint, ensure_utc

DEFAULT_DEVICE_ID = "hardware-1"
MAX_DEVICE_ID_LENGTH = 50


class IngestError(ValueError):
    """Base class for rejected ingestion payloads."""


class MalformedBodyError(IngestError):
    """Raised when the request body is not valid JSON."""


class PayloadValidationError(IngestError):
    """Raised when a JSON payload violates the ingestion schema."""

    def __init__(self, details: Dict[str, List[str]]) -> None:
        super().__init__("Invalid payload format")
        self.details = details


class IngestPayload(BaseModel):
    """Telemetry submitted by a hardware device."""

    model_config = ConfigDict(populate_by_name=True, allow_inf_nan=False, extra="ignore")

    device_id: str = Field(
        default=DEFAULT_DEVICE_ID,
        alias="deviceId",
        min_length=1,
        max_length=MAX_DEVICE_ID_LENGTH,
    )
    voltage: float = Field(..., ge=0, le=1000)
    current: float = Field(..., ge=0, le=100)
    power: Optional[float] = Field(default=None, ge=0, le=100_000)
    ts: Optional[datetime] = None
    temperature: Optional[float] = Field(default=None, ge=-50, le=150)
    battery_level: Optional[float] = Field(default=None, alias="batteryLevel", ge=0, le=100)
    solar_irradiance: Optional[float] = Field(default=None, alias="solarIrradiance", ge=0, le=2000)

    @field_validator("ts", mode="before")
    @classmethod
    def _coerce_epoch_millis(cls, value: Any) -> Any:
        if isinstance(value, bool):
            raise ValueError("ts must be an ISO-8601 string or Unix milliseconds")
        if isinstance(value, (int, float)):
            try:
                return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
            except (OverflowError, OSError, ValueError) as exc:
                raise ValueError("ts is out of range") from exc
        return value

    @field_validator("ts")
    @classmethod
    def _normalize_to_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            raise ValueError("ts must carry a timezone designator such as Z")
        try:
            return value.astimezone(timezone.utc)
        except OverflowError as exc:
            raise ValueError("ts is out of range") from exc


def _error_details(exc: ValidationError) -> Dict[str, List[str]]:
    details: Dict[str, List[str]] = {}
    for error in exc.errors():
        location = error.get("loc") or ()
        field = str(location[0]) if location else "body"
        details.setdefault(field, []).append(str(error.get("msg", "Invalid value")))
    return details


def parse_ingest_body(raw: bytes | str) -> IngestPayload:
    """Decode and validate an ingestion request body.

    Structural JSON errors are reported before any schema validation runs.
    """
    try:
        body = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        raise MalformedBodyError("Invalid JSON body") from exc
    try:
        return IngestPayload.model_validate(body)
    except ValidationError as exc:
        raise PayloadValidationError(_error_details(exc)) from exc


def build_hardware_point(payload: IngestPayload, *, now: Optional[datetime] = None) -> TelemetryPoint:
    received_at = ensure_utc(now)
    timestamp = payload.ts if payload.ts is not None else received_at
    power = payload.power if payload.power is not None else payload.voltage * payload.current
    return TelemetryPoint(
        timestamp=timestamp,
        voltage=payload.voltage,
        current=payload.current,
        power=round(power, 3),
        device_id=payload.device_id,
        source="hardware",
        temperature=payload.temperature,
        battery_level=payload.battery_level,
        solar_irradiance=payload.solar_irradiance,
        ingested_at=received_at,
    )


__all__ = [
    "DEFAULT_DEVICE_ID",
    "IngestError",
    "IngestPayload",
    "MalformedBodyError",
    "PayloadValidationError",
    "build_hardware_point",
    "parse_ingest_body",
]
