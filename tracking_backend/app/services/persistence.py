"""
Tiered write-through for trip state.

The in-memory TripState is authoritative and is mutated by the caller before
anything here runs. This bridge then writes a snapshot to the Redis cache
(with TTL) and upserts the durable document. Both tiers are best-effort:
failures and timeouts are logged and absorbed so an outage degrades tracking
to in-memory only.
"""

import asyncio
import json
import logging
from typing import Any, Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from tracking_backend.app.domain.tracking.state import TripState
from tracking_backend.app.models.tracking_enums import TrackingStatus
from tracking_backend.app.models.trip_tracking import TripTrackingRecord

logger = logging.getLogger("tracking.persistence")

# Redis key prefix for live trip snapshots
TRIP_CACHE_PREFIX = "trip_tracking:"


def cache_key(trip_id: str) -> str:
    return f"{TRIP_CACHE_PREFIX}{trip_id}"


class PersistenceBridge:

    def __init__(
        self,
        redis_client,
        session_factory: async_sessionmaker,
        cache_ttl_seconds: int = 3600,
        timeout_seconds: float = 2.0,
    ):
        self.redis = redis_client
        self.session_factory = session_factory
        self.cache_ttl_seconds = cache_ttl_seconds
        self.timeout_seconds = timeout_seconds
        self.failures = 0

    async def save(self, state: TripState) -> None:
        """Best-effort write of a live trip to both tiers."""
        document = state.to_document()
        await self._guard("cache_write", state.trip_id, self._write_cache(state.trip_id, document))
        await self._guard("durable_write", state.trip_id, self._write_durable(state, document))

    async def finalize(self, state: TripState) -> None:
        """
        Final write on stop: the durable document keeps the history, the cache
        entry goes. The cache is overwritten with the final snapshot first so a
        failed delete leaves nothing that still reads as active.
        """
        document = state.to_document()
        await self._guard("durable_final_write", state.trip_id, self._write_durable(state, document), level=logging.ERROR)
        await self._guard("cache_final_write", state.trip_id, self._write_cache(state.trip_id, document))
        await self._guard("cache_delete", state.trip_id, self.redis.delete(cache_key(state.trip_id)))

    async def load(self, trip_id: str) -> Optional[TripState]:
        """
        Reconstruct a live trip after a restart: cache first, then the durable
        document. Only snapshots still marked active are returned, and a
        durable record that says the trip ended overrides any cached copy.
        Not on the read path for live trips.
        """
        record = await self._guard("durable_read", trip_id, self._read_durable(trip_id))
        if record is not None and record.status != TrackingStatus.ACTIVE:
            return None

        raw = await self._guard("cache_read", trip_id, self.redis.get(cache_key(trip_id)))
        if raw:
            cached = self._parse_snapshot(trip_id, "cache", lambda: json.loads(raw))
            if cached is not None and cached.status == TrackingStatus.ACTIVE:
                return cached

        if record is not None:
            return self._parse_snapshot(trip_id, "durable", lambda: record.snapshot)
        return None

    async def load_active(self) -> List[TripState]:
        """Every durable snapshot still marked active."""
        records = await self._guard("durable_scan", None, self._read_active()) or []
        states = []
        for record in records:
            state = self._parse_snapshot(record.trip_id, "durable", lambda: record.snapshot)
            if state is not None:
                states.append(state)
        return states

    @staticmethod
    def _parse_snapshot(trip_id: str, tier: str, read: Callable[[], Any]) -> Optional[TripState]:
        try:
            return TripState.model_validate(read())
        except ValueError:
            logger.warning("Discarding unreadable snapshot", extra={"trip_id": trip_id, "tier": tier})
            return None

    async def _guard(self, operation: str, trip_id: Optional[str], coro, level: int = logging.WARNING):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except Exception as exc:
            self.failures += 1
            logger.log(
                level,
                "Persistence tier unavailable",
                extra={"operation": operation, "trip_id": trip_id, "error": repr(exc)}
            )
            return None

    async def _write_cache(self, trip_id: str, document: dict) -> None:
        await self.redis.setex(cache_key(trip_id), self.cache_ttl_seconds, json.dumps(document))

    async def _write_durable(self, state: TripState, document: dict) -> None:
        async with self.session_factory() as session:
            record = await session.get(TripTrackingRecord, state.trip_id)
            if record is None:
                record = TripTrackingRecord(trip_id=state.trip_id)
                session.add(record)

            record.booking_id = state.booking_id
            record.driver_id = state.driver_id
            record.customer_id = state.customer_id
            record.status = state.status
            record.current_stage = state.progress.current_stage
            record.stop_reason = state.stop_reason
            record.snapshot = document
            record.started_at = state.start_time
            record.last_update = state.last_update
            record.ended_at = state.end_time

            await session.commit()

    async def _read_durable(self, trip_id: str) -> Optional[TripTrackingRecord]:
        async with self.session_factory() as session:
            return await session.get(TripTrackingRecord, trip_id)

    async def _read_active(self) -> List[TripTrackingRecord]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(TripTrackingRecord).where(TripTrackingRecord.status == TrackingStatus.ACTIVE)
            )
            return list(result.scalars().all())
