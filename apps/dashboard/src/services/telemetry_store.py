from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Generic, List, Optional, Protocol, Sequence, TypeVar
from uuid import uuid4

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo.errors import PyMongoError

from config import Settings
from mock.demo_telemetry import resolve_timezone
from services.aggregation import HourlyRow, aggregate_hourly
from services.points import TelemetryPoint, TelemetrySource, ensure_utc, isoformat

logger = logging.getLogger("solar.dashboard.store")

T = TypeVar("T")

MAX_QUERY_POINTS = 1000


class StoreError(RuntimeError):
    """Base class for telemetry store failures."""


class StoreNotConfiguredError(StoreError):
    """Raised when no telemetry store backend is configured."""


STORE_ERRORS = (StoreError, PyMongoError, OSError, asyncio.TimeoutError)


@dataclass(frozen=True, slots=True)
class StoreResult(Generic[T]):
    """Outcome of a store call: either a value or the error that prevented it."""

    value: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "StoreResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> "StoreResult[T]":
        return cls(error=error)


@dataclass(frozen=True, slots=True)
class DeviceSummary:
    device_id: str
    last_seen: Optional[datetime]
    source: str
    data_points: int

    def to_payload(self) -> dict[str, object]:
        return {
            "deviceId": self.device_id,
            "lastSeen": isoformat(self.last_seen) if self.last_seen else None,
            "source": self.source,
            "dataPoints": self.data_points,
        }


def sort_device_summaries(summaries: Sequence[DeviceSummary]) -> List[DeviceSummary]:
    """Most recently seen first; devices never seen go last."""
    seen = [s for s in summaries if s.last_seen is not None]
    unseen = [s for s in summaries if s.last_seen is None]
    seen.sort(key=lambda s: s.last_seen, reverse=True)
    return seen + unseen


class TelemetryRepository(Protocol):
    async def insert_one(self, point: TelemetryPoint) -> str: ...

    async def insert_many(self, points: Sequence[TelemetryPoint]) -> int: ...

    async def delete_many(self, *, source: Optional[str] = None) -> int: ...

    async def find_since(
        self, start: datetime, *, device_id: Optional[str] = None, limit: int = MAX_QUERY_POINTS
    ) -> List[TelemetryPoint]: ...

    async def find_latest(self, *, device_id: Optional[str] = None) -> Optional[TelemetryPoint]: ...

    async def count(self, *, start: Optional[datetime] = None, source: Optional[str] = None) -> int: ...

    async def device_summaries(self) -> List[DeviceSummary]: ...

    async def hourly(self, start: datetime, *, tz: str) -> List[HourlyRow]: ...

    async def ensure_indexes(self) -> None: ...

    async def ping(self) -> None: ...

    async def close(self) -> None: ...


def build_hourly_pipeline(start: datetime, tz: str) -> List[Dict[str, Any]]:
    """Aggregation grouping documents by calendar hour in ``tz``."""

    def _part(op: str) -> Dict[str, Any]:
        return {op: {"date": "$ts", "timezone": tz}}

    return [
        {"$match": {"ts": {"$gte": start}}},
        {
            "$group": {
                "_id": {
                    "y": _part("$year"),
                    "m": _part("$month"),
                    "d": _part("$dayOfMonth"),
                    "h": _part("$hour"),
                },
                "avgVoltage": {"$avg": "$voltage"},
                "avgCurrent": {"$avg": "$current"},
                "avgPower": {"$avg": "$power"},
                "lastTs": {"$max": "$ts"},
            }
        },
        {"$sort": {"lastTs": 1}},
        {
            "$project": {
                "_id": 0,
                "ts": "$lastTs",
                "voltage": {"$round": ["$avgVoltage", 2]},
                "current": {"$round": ["$avgCurrent", 2]},
                "power": {"$round": ["$avgPower", 2]},
            }
        },
    ]


class MongoTelemetryRepository:
    """Telemetry documents in a MongoDB collection."""

    def __init__(self, uri: str, *, database: str, collection: str, timeout_ms: int = 3000) -> None:
        self._client = AsyncIOMotorClient(
            uri,
            tz_aware=True,
            serverSelectionTimeoutMS=timeout_ms,
            connectTimeoutMS=timeout_ms,
            socketTimeoutMS=timeout_ms,
        )
        self._db = self._client[database]
        self._collection = self._db[collection]

    async def insert_one(self, point: TelemetryPoint) -> str:
        result = await self._collection.insert_one(point.to_document())
        return str(result.inserted_id)

    async def insert_many(self, points: Sequence[TelemetryPoint]) -> int:
        if not points:
            return 0
        result = await self._collection.insert_many([point.to_document() for point in points])
        return len(result.inserted_ids)

    async def delete_many(self, *, source: Optional[str] = None) -> int:
        query: Dict[str, Any] = {"source": source} if source is not None else {}
        result = await self._collection.delete_many(query)
        return result.deleted_count

    async def find_since(
        self, start: datetime, *, device_id: Optional[str] = None, limit: int = MAX_QUERY_POINTS
    ) -> List[TelemetryPoint]:
        query: Dict[str, Any] = {"ts": {"$gte": start}}
        if device_id:
            query["deviceId"] = device_id
        cursor = self._collection.find(query).sort("ts", 1).limit(limit)
        return [TelemetryPoint.from_document(doc) async for doc in cursor]

    async def find_latest(self, *, device_id: Optional[str] = None) -> Optional[TelemetryPoint]:
        query: Dict[str, Any] = {"deviceId": device_id} if device_id else {}
        doc = await self._collection.find_one(query, sort=[("ts", -1)])
        return TelemetryPoint.from_document(doc) if doc else None

    async def count(self, *, start: Optional[datetime] = None, source: Optional[str] = None) -> int:
        query: Dict[str, Any] = {}
        if start is not None:
            query["ts"] = {"$gte": start}
        if source is not None:
            query["source"] = source
        return await self._collection.count_documents(query)

    async def device_summaries(self) -> List[DeviceSummary]:
        device_ids = await self._collection.distinct("deviceId")
        summaries: list[DeviceSummary] = []
        for device_id in device_ids:
            if not isinstance(device_id, str) or not device_id:
                continue
            last = await self._collection.find_one(
                {"deviceId": device_id},
                sort=[("ts", -1)],
                projection={"ts": 1, "source": 1},
            )
            count = await self._collection.count_documents({"deviceId": device_id})
            summaries.append(
                DeviceSummary(
                    device_id=device_id,
                    last_seen=ensure_utc(last["ts"]) if last and last.get("ts") else None,
                    source=str(last.get("source") or "unknown") if last else "unknown",
                    data_points=count,
                )
            )
        return sort_device_summaries(summaries)

    async def hourly(self, start: datetime, *, tz: str) -> List[HourlyRow]:
        rows: list[HourlyRow] = []
        async for doc in self._collection.aggregate(build_hourly_pipeline(start, tz)):
            rows.append(
                HourlyRow(
                    timestamp=ensure_utc(doc["ts"]),
                    voltage=float(doc["voltage"]),
                    current=float(doc["current"]),
                    power=float(doc["power"]),
                )
            )
        return rows

    async def ensure_indexes(self) -> None:
        await self._collection.create_index([("ts", -1)])
        await self._collection.create_index([("deviceId", 1), ("ts", -1)])

    async def ping(self) -> None:
        await self._client.admin.command("ping")

    async def close(self) -> None:
        self._client.close()


class MemoryTelemetryRepository:
    """Process-local telemetry store for development and tests."""

    def __init__(self) -> None:
        self._points: list[TelemetryPoint] = []
        self._lock = asyncio.Lock()

    async def insert_one(self, point: TelemetryPoint) -> str:
        point_id = uuid4().hex
        stored = _with_id(point, point_id)
        async with self._lock:
            self._points.append(stored)
        return point_id

    async def insert_many(self, points: Sequence[TelemetryPoint]) -> int:
        stored = [_with_id(point, uuid4().hex) for point in points]
        async with self._lock:
            self._points.extend(stored)
        return len(stored)

    async def delete_many(self, *, source: Optional[str] = None) -> int:
        async with self._lock:
            before = len(self._points)
            if source is None:
                self._points = []
            else:
                self._points = [p for p in self._points if p.source != source]
            return before - len(self._points)

    async def find_since(
        self, start: datetime, *, device_id: Optional[str] = None, limit: int = MAX_QUERY_POINTS
    ) -> List[TelemetryPoint]:
        snapshot = await self._snapshot()
        matches = [
            p for p in snapshot if p.timestamp >= start and (not device_id or p.device_id == device_id)
        ]
        matches.sort(key=lambda p: p.timestamp)
        return [_as_read(p) for p in matches[:limit]]

    async def find_latest(self, *, device_id: Optional[str] = None) -> Optional[TelemetryPoint]:
        snapshot = await self._snapshot()
        matches = [p for p in snapshot if not device_id or p.device_id == device_id]
        if not matches:
            return None
        return _as_read(max(matches, key=lambda p: p.timestamp))

    async def count(self, *, start: Optional[datetime] = None, source: Optional[str] = None) -> int:
        snapshot = await self._snapshot()
        return sum(
            1
            for p in snapshot
            if (start is None or p.timestamp >= start) and (source is None or p.source == source)
        )

    async def device_summaries(self) -> List[DeviceSummary]:
        snapshot = await self._snapshot()
        grouped: dict[str, list[TelemetryPoint]] = {}
        for point in snapshot:
            if point.device_id:
                grouped.setdefault(point.device_id, []).append(point)
        summaries = []
        for device_id, points in grouped.items():
            last = max(points, key=lambda p: p.timestamp)
            summaries.append(
                DeviceSummary(
                    device_id=device_id,
                    last_seen=last.timestamp,
                    source=last.source,
                    data_points=len(points),
                )
            )
        return sort_device_summaries(summaries)

    async def hourly(self, start: datetime, *, tz: str) -> List[HourlyRow]:
        snapshot = await self._snapshot()
        return aggregate_hourly((p for p in snapshot if p.timestamp >= start), tz=resolve_timezone(tz))

    async def ensure_indexes(self) -> None:
        return None

    async def ping(self) -> None:
        return None

    async def close(self) -> None:
        return None

    async def clear(self) -> None:
        async with self._lock:
            self._points = []

    async def _snapshot(self) -> list[TelemetryPoint]:
        async with self._lock:
            return list(self._points)


def _with_id(point: TelemetryPoint, point_id: str) -> TelemetryPoint:
    return replace(point, id=point_id)


def _as_read(point: TelemetryPoint) -> TelemetryPoint:
    # Mirrors how documents read back from MongoDB are labelled.
    source: TelemetrySource = "hardware" if point.source == "hardware" else "stored"
    return point.with_source(source)


def build_repository(config: Settings) -> Optional[TelemetryRepository]:
    if config.telemetry_backend == "memory":
        return MemoryTelemetryRepository()
    if config.telemetry_backend == "mongo" and config.mongodb_uri:
        return MongoTelemetryRepository(
            config.mongodb_uri,
            database=config.mongodb_db,
            collection=config.telemetry_collection,
            timeout_ms=config.mongodb_timeout_ms,
        )
    logger.info("No telemetry store configured; serving demo telemetry only.")
    return None


async def attempt(
    repository: Optional[TelemetryRepository],
    action: str,
    call: Callable[[TelemetryRepository], Awaitable[T]],
) -> StoreResult[T]:
    """Run ``call`` against the repository, capturing store failures as a result."""
    if repository is None:
        return StoreResult.failure(StoreNotConfiguredError("Telemetry store is not configured"))
    try:
        value = await call(repository)
    except STORE_ERRORS as exc:
        logger.warning("Telemetry store %s failed: %s", action, exc)
        return StoreResult.failure(exc)
    return StoreResult.success(value)


__all__ = [
    "DeviceSummary",
    "MemoryTelemetryRepository",
    "MongoTelemetryRepository",
    "StoreError",
    "StoreNotConfiguredError",
    "StoreResult",
    "TelemetryRepository",
    "attempt",
    "build_hourly_pipeline",
    "build_repository",
]
