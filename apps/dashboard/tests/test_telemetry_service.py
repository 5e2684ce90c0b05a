from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from mock.demo_telemetry import generate_demo_telemetry
from services.demo_cache import DemoTelemetryCache
from services.points import TelemetryPoint
from services.telemetry import StoreUnavailableError, TelemetryService
from services.telemetry_store import MemoryTelemetryRepository

NOW = datetime(2024, 1, 15, 0, 0, tzinfo=timezone.utc)
SERIES_LENGTH = 1430 + 61


def _cache() -> DemoTelemetryCache:
    return DemoTelemetryCache(lambda now: generate_demo_telemetry(now, seed=9), clock=lambda: NOW)


def _hardware(ts: datetime, device_id: str = "esp32-solar-01") -> TelemetryPoint:
    return TelemetryPoint(
        timestamp=ts,
        voltage=24.0,
        current=2.0,
        power=48.0,
        device_id=device_id,
        source="hardware",
        ingested_at=ts,
    )


class UnreachableRepository:
    """Every call fails the way an unreachable MongoDB does."""

    def __init__(self) -> None:
        self.calls = 0

    async def _fail(self, *args, **kwargs):
        self.calls += 1
        raise ServerSelectionTimeoutError("no servers available")

    insert_one = insert_many = delete_many = _fail
    find_since = find_latest = count = _fail
    device_summaries = hourly = ensure_indexes = ping = _fail

    async def close(self) -> None:
        return None


@pytest.mark.anyio
async def test_reads_fall_back_to_demo_series_without_store():
    service = TelemetryService(None, _cache())

    live = await service.live(now=NOW)
    assert live.source == "demo"
    assert live.points
    assert live.points[-1].timestamp == NOW
    assert all(point.timestamp >= NOW - timedelta(minutes=10) for point in live.points)

    latest = await service.latest()
    assert latest is not None
    assert latest.timestamp == NOW

    hourly = await service.hourly(now=NOW)
    assert hourly.source == "demo"
    assert 24 <= len(hourly.rows) <= 25

    devices = await service.devices()
    assert [device.device_id for device in devices] == ["demo-device"]
    assert devices[0].data_points == SERIES_LENGTH
    assert devices[0].source == "demo"


@pytest.mark.anyio
async def test_fallback_ignores_unknown_device_filter():
    service = TelemetryService(None, _cache())
    assert await service.latest("esp32-solar-01") is None
    window = await service.live("esp32-solar-01", now=NOW)
    assert window.points == []
    assert window.source == "demo"


@pytest.mark.anyio
async def test_store_errors_are_captured_and_served_from_demo_data():
    repository = UnreachableRepository()
    service = TelemetryService(repository, _cache())

    assert (await service.live(now=NOW)).source == "demo"
    assert (await service.hourly(now=NOW)).source == "demo"
    assert (await service.devices())[0].device_id == "demo-device"
    assert isinstance(await service.ping(), ServerSelectionTimeoutError)
    assert repository.calls == 4

    with pytest.raises(StoreUnavailableError):
        await service.ingest(_hardware(NOW))


@pytest.mark.anyio
async def test_seed_without_store_regenerates_demo_cache():
    cache = _cache()
    service = TelemetryService(None, cache)
    first = cache.get_or_create()

    outcome = await service.seed(now=NOW)
    assert outcome.source == "demo"
    assert outcome.inserted == SERIES_LENGTH
    assert cache.peek() is not first


@pytest.mark.anyio
async def test_seed_replaces_demo_rows_and_preserves_hardware():
    repository = MemoryTelemetryRepository()
    service = TelemetryService(repository, _cache())
    await service.ingest(_hardware(NOW - timedelta(minutes=1)))

    first = await service.seed(now=NOW)
    second = await service.seed(now=NOW)
    assert first.source == second.source == "stored"
    assert second.inserted == SERIES_LENGTH

    assert await repository.count(source="hardware") == 1
    assert await repository.count(source="demo") == SERIES_LENGTH
    assert await repository.count() == SERIES_LENGTH + 1


@pytest.mark.anyio
async def test_stored_reads_label_their_source():
    repository = MemoryTelemetryRepository()
    service = TelemetryService(repository, _cache())
    await service.seed(now=NOW)

    live = await service.live("demo-device", now=NOW)
    assert live.source == "stored"
    assert len(live.points) == 61
    assert [p.timestamp for p in live.points] == sorted(p.timestamp for p in live.points)

    hourly = await service.hourly(now=NOW)
    assert hourly.source == "stored"

    await service.ingest(_hardware(NOW - timedelta(seconds=5)))
    assert (await service.live(now=NOW)).source == "hardware"
    assert (await service.hourly(now=NOW)).source == "hardware"

    latest = await service.latest()
    assert latest is not None
    assert latest.timestamp == NOW
    assert latest.source == "stored"


@pytest.mark.anyio
async def test_device_summaries_sorted_by_last_seen():
    repository = MemoryTelemetryRepository()
    service = TelemetryService(repository, _cache())
    await service.ingest(_hardware(NOW - timedelta(hours=2), device_id="older"))
    await service.ingest(_hardware(NOW - timedelta(hours=1), device_id="newer"))
    await service.ingest(_hardware(NOW - timedelta(hours=3), device_id="newer"))

    devices = await service.devices()
    assert [device.device_id for device in devices] == ["newer", "older"]
    assert devices[0].data_points == 2
    payload = devices[0].to_payload()
    assert payload["deviceId"] == "newer"
    assert payload["source"] == "hardware"


def test_documents_read_back_as_stored_or_hardware():
    naive = datetime(2024, 1, 15, 10, 30)
    demo_doc = {"_id": "abc", "ts": naive, "deviceId": "demo-device", "voltage": 5, "current": 1, "power": 5, "source": "demo"}
    point = TelemetryPoint.from_document(demo_doc)
    assert point.source == "stored"
    assert point.id == "abc"
    assert point.timestamp.tzinfo is not None
    assert point.to_payload()["ts"] == "2024-01-15T10:30:00.000Z"

    hardware = _hardware(NOW)
    assert TelemetryPoint.from_document(hardware.to_document()).source == "hardware"
    assert hardware.to_document()["ingestedAt"] == NOW
