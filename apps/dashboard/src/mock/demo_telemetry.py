"""Synthetic solar-panel telemetry used when no hardware data is available."""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import List, Optional
from zoneinfo import ZoneInfo

from services.points import TelemetryPoint, ensure_utc

HISTORY_SPAN = timedelta(hours=24)
LIVE_SPAN = timedelta(minutes=10)
COARSE_STEP = timedelta(seconds=60)
FINE_STEP = timedelta(seconds=10)
NIGHT_EPSILON = 1e-3
WOBBLE_PERIOD_S = 30.0


@dataclass(frozen=True, slots=True)
class DeviceProfile:
    name: str
    voltage_base: float
    voltage_gain: float
    voltage_min: float
    voltage_max: float
    max_power_w: float
    max_current_a: float
    coarse_voltage_jitter: float
    fine_voltage_jitter: float
    wobble_v: float
    power_jitter_w: float


SMALL_PANEL = DeviceProfile(
    name="small",
    voltage_base=5.0,
    voltage_gain=1.4,
    voltage_min=4.8,
    voltage_max=6.7,
    max_power_w=6.0,
    max_current_a=1.2,
    coarse_voltage_jitter=0.15,
    fine_voltage_jitter=0.06,
    wobble_v=0.08,
    power_jitter_w=0.25,
)

LARGE_RIG = DeviceProfile(
    name="large",
    voltage_base=17.0,
    voltage_gain=6.0,
    voltage_min=12.0,
    voltage_max=24.0,
    max_power_w=200.0,
    max_current_a=10.0,
    coarse_voltage_jitter=0.6,
    fine_voltage_jitter=0.3,
    wobble_v=0.5,
    power_jitter_w=8.0,
)

PROFILES = {profile.name: profile for profile in (SMALL_PANEL, LARGE_RIG)}


def resolve_timezone(tz: str | tzinfo | None) -> tzinfo:
    if tz is None:
        return timezone.utc
    if isinstance(tz, tzinfo):
        return tz
    name = tz.strip()
    if not name or name.upper() == "UTC":
        return timezone.utc
    return ZoneInfo(name)


def hour_of_day(timestamp: datetime, tz: tzinfo) -> float:
    local = timestamp.astimezone(tz)
    return local.hour + local.minute / 60.0 + local.second / 3600.0


def daylight_intensity(hour: float, *, midday_hour: float = 12.0) -> float:
    """Half-sine over the 12 hours centred on ``midday_hour``; zero at night."""
    offset = ((hour - midday_hour + 12.0) % 24.0) - 12.0
    if abs(offset) >= 6.0:
        return 0.0
    return max(0.0, math.sin(((offset + 6.0) / 12.0) * math.pi))


def phase_shift_hours(now: datetime, *, midday_hour: float = 12.0, tz: tzinfo = timezone.utc) -> float:
    """Shift that maps ``now`` onto midday so demo curves never start out dark."""
    return (midday_hour - hour_of_day(now, tz)) % 24.0


def _sample(
    ts: datetime,
    *,
    daylight: float,
    profile: DeviceProfile,
    rng: random.Random,
    fine: bool,
    device_id: str,
) -> TelemetryPoint:
    if daylight < NIGHT_EPSILON:
        return TelemetryPoint(timestamp=ts, voltage=0.0, current=0.0, power=0.0, device_id=device_id, source="demo")

    if fine:
        wobble = math.sin(ts.timestamp() / WOBBLE_PERIOD_S)
        jitter = profile.fine_voltage_jitter
    else:
        wobble = 0.0
        jitter = profile.coarse_voltage_jitter

    voltage = profile.voltage_base + daylight * profile.voltage_gain + wobble * profile.wobble_v
    voltage += rng.uniform(-jitter, jitter)
    voltage = round(min(profile.voltage_max, max(profile.voltage_min, voltage)), 2)

    power_jitter = profile.power_jitter_w * (0.4 if fine else 1.0)
    target_power = daylight * profile.max_power_w * (1.0 + 0.04 * wobble) + rng.uniform(-power_jitter, power_jitter)
    target_power = min(profile.max_power_w, max(0.0, target_power))

    current = min(target_power / voltage, profile.max_current_a, profile.max_power_w / voltage)
    # Truncate so the rounded V*I never exceeds the power cap.
    current = math.floor(max(0.0, current) * 100.0) / 100.0
    power = round(min(profile.max_power_w, voltage * current), 2)

    return TelemetryPoint(
        timestamp=ts,
        voltage=voltage,
        current=current,
        power=power,
        device_id=device_id,
        source="demo",
    )


def generate_demo_telemetry(
    now: Optional[datetime] = None,
    *,
    profile: DeviceProfile = SMALL_PANEL,
    seed: int | None = None,
    rng: random.Random | None = None,
    device_id: str = "demo-device",
    tz: str | tzinfo | None = None,
    midday_hour: float = 12.0,
) -> List[TelemetryPoint]:
    """Build 24h of demo readings ending at ``now``.

    The history uses 60 second steps up to ten minutes before ``now``; the
    last ten minutes use 10 second steps (inclusive of ``now``).
    """
    now = ensure_utc(now)
    zone = resolve_timezone(tz)
    rng = rng or random.Random(seed)
    shift = phase_shift_hours(now, midday_hour=midday_hour, tz=zone)

    start = now - HISTORY_SPAN
    live_start = now - LIVE_SPAN
    points: list[TelemetryPoint] = []

    def _daylight(ts: datetime) -> float:
        return daylight_intensity((hour_of_day(ts, zone) + shift) % 24.0, midday_hour=midday_hour)

    ts = start
    while ts < live_start:
        points.append(_sample(ts, daylight=_daylight(ts), profile=profile, rng=rng, fine=False, device_id=device_id))
        ts += COARSE_STEP

    ts = live_start
    while ts <= now:
        points.append(_sample(ts, daylight=_daylight(ts), profile=profile, rng=rng, fine=True, device_id=device_id))
        ts += FINE_STEP

    return points


__all__ = [
    "DeviceProfile",
    "LARGE_RIG",
    "PROFILES",
    "SMALL_PANEL",
    "daylight_intensity",
    "generate_demo_telemetry",
    "hour_of_day",
    "phase_shift_hours",
    "resolve_timezone",
]
