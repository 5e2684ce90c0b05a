from __future__ import annotations

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from config import Settings
from services.aggregation import HourlyRow
from services.points import TelemetryPoint
from services.telemetry_store import (
    MemoryTelemetryRepository,
    MongoTelemetryRepository,
    build_hourly_pipeline,
    build_repository,
)

START = datetime(2024, 1, 14, 0, 0, tzinfo=timezone.utc)


class _Cursor:
    def __init__(self, docs):
        self._docs = list(docs)

    def sort(self, *args, **kwargs):
        return self

    def limit(self, count):
        self._docs = self._docs[:count]
        return self

    def __aiter__(self):
        return self._iterate()

    async def _iterate(self):
        for doc in self._docs:
            yield doc


class RecordingCollection:
    """Answers motor collection calls from canned documents and records the queries."""

    def __init__(self, docs=(), rows=()):
        self.docs = list(docs)
        self.rows = list(rows)
        self.calls: list[tuple[str, object]] = []

    def aggregate(self, pipeline):
        self.calls.append(("aggregate", pipeline))
        return _Cursor(self.rows)

    def find(self, query):
        self.calls.append(("find", query))
        return _Cursor(self.docs)

    async def find_one(self, query, sort=None, projection=None):
        self.calls.append(("find_one", query))
        matching = [doc for doc in self.docs if all(doc.get(k) == v for k, v in query.items())]
        return max(matching, key=lambda doc: doc["ts"]) if matching else None

    async def count_documents(self, query):
        self.calls.append(("count_documents", query))
        return len([doc for doc in self.docs if all(doc.get(k) == v for k, v in query.items())])

    async def distinct(self, field):
        return list(dict.fromkeys(doc.get(field) for doc in self.docs))

    async def delete_many(self, query):
        self.calls.append(("delete_many", query))
        return SimpleNamespace(deleted_count=3)

    async def insert_one(self, doc):
        self.calls.append(("insert_one", doc))
        return SimpleNamespace(inserted_id="65a4f0c2e4b0a1b2c3d4e5f6")


def _repository(collection: RecordingCollection) -> MongoTelemetryRepository:
    repository = MongoTelemetryRepository("mongodb://localhost:27017", database="solar", collection="telemetry")
    repository._collection = collection
    return repository


def _doc(hour: int, device_id: str, source: str) -> dict:
    return {
        "_id": f"{device_id}-{hour}",
        "ts": datetime(2024, 1, 14, hour, 0),
        "deviceId": device_id,
        "voltage": 24.0,
        "current": 2.0,
        "power": 48.0,
        "source": source,
    }


def test_hourly_pipeline_groups_by_calendar_hour_in_timezone():
    pipeline = build_hourly_pipeline(START, "Europe/Berlin")

    assert pipeline[0] == {"$match": {"ts": {"$gte": START}}}
    group = pipeline[1]["$group"]
    assert set(group["_id"]) == {"y", "m", "d", "h"}
    assert group["_id"]["h"] == {"$hour": {"date": "$ts", "timezone": "Europe/Berlin"}}
    assert group["_id"]["d"] == {"$dayOfMonth": {"date": "$ts", "timezone": "Europe/Berlin"}}
    assert group["avgPower"] == {"$avg": "$power"}
    assert pipeline[2] == {"$sort": {"lastTs": 1}}
    project = pipeline[3]["$project"]
    assert project["ts"] == "$lastTs"
    assert project["voltage"] == {"$round": ["$avgVoltage", 2]}
    assert project["power"] == {"$round": ["$avgPower", 2]}


@pytest.mark.anyio
async def test_hourly_maps_aggregation_rows_to_utc():
    collection = RecordingCollection(
        rows=[
            {"ts": datetime(2024, 1, 14, 10, 59), "voltage": 24.12, "current": 2.5, "power": 60.3},
            {"ts": datetime(2024, 1, 14, 11, 59), "voltage": 25, "current": 3, "power": 75},
        ]
    )
    repository = _repository(collection)

    rows = await repository.hourly(START, tz="America/New_York")
    repository._client.close()

    assert collection.calls == [("aggregate", build_hourly_pipeline(START, "America/New_York"))]
    assert rows[0] == HourlyRow(
        timestamp=datetime(2024, 1, 14, 10, 59, tzinfo=timezone.utc),
        voltage=24.12,
        current=2.5,
        power=60.3,
    )
    assert isinstance(rows[1].power, float)


@pytest.mark.anyio
async def test_find_since_filters_by_device_and_labels_sources():
    collection = RecordingCollection(docs=[_doc(9, "esp32-solar-01", "hardware"), _doc(10, "esp32-solar-01", "demo")])
    repository = _repository(collection)

    points = await repository.find_since(START, device_id="esp32-solar-01")
    repository._client.close()

    assert collection.calls == [("find", {"ts": {"$gte": START}, "deviceId": "esp32-solar-01"})]
    assert [point.source for point in points] == ["hardware", "stored"]
    assert points[0].timestamp.tzinfo is not None
    assert points[0].id == "esp32-solar-01-9"


@pytest.mark.anyio
async def test_writes_and_purges_use_collection_documents():
    collection = RecordingCollection()
    repository = _repository(collection)
    point = TelemetryPoint.from_document(_doc(9, "esp32-solar-01", "hardware"))

    inserted_id = await repository.insert_one(point)
    deleted = await repository.delete_many(source="demo")
    repository._client.close()

    assert inserted_id == "65a4f0c2e4b0a1b2c3d4e5f6"
    assert collection.calls[0][1]["deviceId"] == "esp32-solar-01"
    assert deleted == 3
    assert collection.calls[1] == ("delete_many", {"source": "demo"})


@pytest.mark.anyio
async def test_device_summaries_skip_blank_ids_and_sort_by_last_seen():
    collection = RecordingCollection(
        docs=[
            _doc(8, "older-device", "hardware"),
            _doc(12, "esp32-solar-01", "hardware"),
            _doc(11, "esp32-solar-01", "hardware"),
            {**_doc(13, "", "hardware"), "deviceId": ""},
        ]
    )
    repository = _repository(collection)

    summaries = await repository.device_summaries()
    repository._client.close()

    assert [summary.device_id for summary in summaries] == ["esp32-solar-01", "older-device"]
    assert summaries[0].data_points == 2
    assert summaries[0].last_seen == datetime(2024, 1, 14, 12, 0, tzinfo=timezone.utc)


@pytest.mark.anyio
async def test_build_repository_selects_backend():
    mongo = build_repository(
        Settings(_env_file=None, telemetry_backend="mongo", mongodb_uri="mongodb://localhost:27017")
    )
    assert isinstance(mongo, MongoTelemetryRepository)
    mongo._client.close()

    assert isinstance(build_repository(Settings(_env_file=None, telemetry_backend="memory")), MemoryTelemetryRepository)
    assert build_repository(Settings(_env_file=None, telemetry_backend="none")) is None
    assert build_repository(Settings(_env_file=None, telemetry_backend="mongo", mongodb_uri=None)) is None
