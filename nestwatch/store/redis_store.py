"""Redis-backed TelemetryStore.

Key layout (one key group per drone plus one global index):
    drones:{id}      hash   core aggregate fields
    pos:{id}         list   "timestamp x y" entries, newest first
    pilots:{id}      hash   pilot details, present once a pilot was attached
    timestamps       zset   ingested snapshot timestamps scored by epoch millis
    claims:{ts}      string short-lived ingestion claim for one timestamp

The merge and the dedup claim are Lua scripts, so Redis runs each as one
indivisible step.  All three per-drone keys get the same EXPIRE on every
merge, so a quiet drone disappears as a unit.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

import redis.asyncio as redis
from redis.exceptions import RedisError

from nestwatch.domain.errors import StoreError
from nestwatch.domain.record import AggregatedRecord, PilotRecord, PositionFix
from nestwatch.domain.snapshot import Observation
from nestwatch.foundation.clock import epoch_millis, utc_now
from nestwatch.store.base import DEFAULT_RECORD_TTL_SECONDS

logger = logging.getLogger(__name__)

TIMESTAMPS_KEY = "timestamps"

# KEYS: record, positions, pilot
# ARGV: id, timestamp, x, y, distance, restricted, ttl[, pilotId, firstName, lastName, phoneNumber, email]
_MERGE_SCRIPT = """
local record_key, pos_key, pilot_key = KEYS[1], KEYS[2], KEYS[3]
local id, ts, x, y, distance, restricted, ttl = ARGV[1], ARGV[2], ARGV[3], ARGV[4], ARGV[5], ARGV[6], ARGV[7]

local closest = redis.call('HGET', record_key, 'closestDistance')
if (not closest) or tonumber(distance) < tonumber(closest) then
    redis.call('HSET', record_key, 'closestDistance', distance)
end
redis.call('HSET', record_key, 'id', id, 'lastSeen', ts)

local ever = redis.call('HGET', record_key, 'restrictedEver')
if restricted == 'true' then
    if ever ~= 'true' then
        redis.call('HSET', record_key, 'restrictedEver', 'true', 'firstRestrictedAt', ts)
    end
    if #ARGV >= 12 then
        redis.call('DEL', pilot_key)
        redis.call('HSET', pilot_key,
            'pilotId', ARGV[8], 'firstName', ARGV[9], 'lastName', ARGV[10],
            'phoneNumber', ARGV[11], 'email', ARGV[12])
    end
elseif not ever then
    redis.call('HSET', record_key, 'restrictedEver', 'false')
end

redis.call('LPUSH', pos_key, ts .. ' ' .. x .. ' ' .. y)

redis.call('EXPIRE', record_key, ttl)
redis.call('EXPIRE', pos_key, ttl)
if redis.call('EXISTS', pilot_key) == 1 then
    redis.call('EXPIRE', pilot_key, ttl)
end
return 1
"""

# KEYS: timestamps, claim
# ARGV: timestamp, claim ttl in ms
_CLAIM_SCRIPT = """
if redis.call('ZSCORE', KEYS[1], ARGV[1]) then
    return 0
end
if redis.call('SET', KEYS[2], '1', 'NX', 'PX', ARGV[2]) then
    return 1
end
return 0
"""


def record_key(entity_id: str) -> str:
    return f"drones:{entity_id}"


def positions_key(entity_id: str) -> str:
    return f"pos:{entity_id}"


def pilot_key(entity_id: str) -> str:
    return f"pilots:{entity_id}"


def claim_key(timestamp: str) -> str:
    return f"claims:{timestamp}"


def encode_position(timestamp: str, x: float, y: float) -> str:
    return f"{timestamp} {x!r} {y!r}"


def decode_position(raw: str) -> PositionFix:
    # e.g. '2023-01-08T13:45:47.338Z 250000.0 500000.0'
    timestamp, x, y = raw.split(" ")
    return PositionFix(timestamp=timestamp, x=float(x), y=float(y))


def decode_record(
    fields: dict[str, str],
    positions: list[str],
    pilot_fields: dict[str, str],
) -> AggregatedRecord:
    """Rebuild an AggregatedRecord from the three per-drone keys."""
    return AggregatedRecord.restore(
        fields["id"],
        closest_distance=float(fields["closestDistance"]),
        last_seen=fields.get("lastSeen"),
        restricted_ever=fields.get("restrictedEver") == "true",
        first_restricted_at=fields.get("firstRestrictedAt"),
        position_history=[decode_position(p) for p in positions],
        pilot=PilotRecord.model_validate(pilot_fields) if pilot_fields else None,
    )


@contextmanager
def _store_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except RedisError as exc:
        raise StoreError(f"Redis {operation} failed: {exc}") from exc


class RedisTelemetryStore:
    """TelemetryStore over one shared Redis connection pool.

    Args:
        client: An asyncio Redis client created with ``decode_responses=True``.
        claim_ttl_ms: Lifetime of an ingestion claim, so a crashed cycle
            cannot block a timestamp forever.
        clock: Source of "now" for the dedup sweep.
    """

    def __init__(
        self,
        client: redis.Redis,
        claim_ttl_ms: int = 30_000,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._redis = client
        self._claim_ttl_ms = claim_ttl_ms
        self._clock = clock
        self._merge = client.register_script(_MERGE_SCRIPT)
        self._claim = client.register_script(_CLAIM_SCRIPT)

    @classmethod
    def from_url(cls, url: str, **kwargs) -> RedisTelemetryStore:
        return cls(redis.from_url(url, decode_responses=True), **kwargs)

    # ── Dedup gate ───────────────────────────────────────────────────────

    async def should_ingest(self, timestamp: str) -> bool:
        with _store_errors("dedup claim"):
            claimed = await self._claim(
                keys=[TIMESTAMPS_KEY, claim_key(timestamp)],
                args=[timestamp, self._claim_ttl_ms],
            )
        return claimed == 1

    async def record_ingested(self, timestamp: str, epoch_millis: int) -> None:
        with _store_errors("dedup insert"):
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zadd(TIMESTAMPS_KEY, {timestamp: epoch_millis})
                pipe.delete(claim_key(timestamp))
                await pipe.execute()

    async def release_claim(self, timestamp: str) -> None:
        with _store_errors("claim release"):
            await self._redis.delete(claim_key(timestamp))

    async def latest_timestamp(self) -> str | None:
        with _store_errors("latest timestamp"):
            latest = await self._redis.zrange(TIMESTAMPS_KEY, 0, 0, desc=True)
        return latest[0] if latest else None

    async def sweep_timestamps(self, retention_seconds: float) -> int:
        cutoff = epoch_millis(self._clock()) - retention_seconds * 1000
        with _store_errors("dedup sweep"):
            return await self._redis.zremrangebyscore(TIMESTAMPS_KEY, "-inf", cutoff)

    # ── Upsert engine ────────────────────────────────────────────────────

    async def merge(
        self,
        observation: Observation,
        timestamp: str,
        ttl_seconds: float = DEFAULT_RECORD_TTL_SECONDS,
        pilot: PilotRecord | None = None,
    ) -> AggregatedRecord:
        entity_id = observation.entity_id
        args = [
            entity_id,
            timestamp,
            repr(observation.position_x),
            repr(observation.position_y),
            repr(observation.distance),
            "true" if observation.restricted else "false",
            max(1, math.ceil(ttl_seconds)),
        ]
        if pilot is not None:
            args += [
                pilot.pilot_id,
                pilot.first_name,
                pilot.last_name,
                pilot.phone_number,
                pilot.email,
            ]

        with _store_errors("merge"):
            await self._merge(
                keys=[record_key(entity_id), positions_key(entity_id), pilot_key(entity_id)],
                args=args,
            )
            records = await self._load([entity_id])

        if not records:
            raise StoreError(f"Record for {entity_id} vanished right after merge")
        return records[0]

    async def has_pilot(self, entity_id: str) -> bool:
        with _store_errors("pilot lookup"):
            return await self._redis.exists(pilot_key(entity_id)) > 0

    async def all_records(self) -> list[AggregatedRecord]:
        with _store_errors("record scan"):
            entity_ids = [
                key.split(":", 1)[1]
                async for key in self._redis.scan_iter(match="drones:*")
            ]
            return await self._load(entity_ids)

    async def close(self) -> None:
        await self._redis.aclose()

    # ── Internals ────────────────────────────────────────────────────────

    async def _load(self, entity_ids: list[str]) -> list[AggregatedRecord]:
        """Read each drone's key group in one MULTI so no record is seen mid-merge."""
        if not entity_ids:
            return []

        async with self._redis.pipeline(transaction=True) as pipe:
            for entity_id in entity_ids:
                pipe.hgetall(record_key(entity_id))
                pipe.lrange(positions_key(entity_id), 0, -1)
                pipe.hgetall(pilot_key(entity_id))
            results = await pipe.execute()

        records: list[AggregatedRecord] = []
        for i, entity_id in enumerate(entity_ids):
            fields, positions, pilot_fields = results[3 * i : 3 * i + 3]
            if not fields:
                # Expired between the scan and the read
                continue
            try:
                records.append(decode_record(fields, positions, pilot_fields))
            except (KeyError, ValueError) as exc:
                logger.error("Skipping unreadable record for %s: %s", entity_id, exc)
        return records
