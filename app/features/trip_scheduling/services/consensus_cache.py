"""
Consensus option cache.

Ranked windows are derived data: they are recomputed from availability and
only cached in Redis, keyed by trip id and trip version. Any accepted write
bumps the version, so stale entries are never read; they expire by TTL.
A cache miss or Redis failure falls back to recomputation.
"""

from __future__ import annotations

import json
from collections.abc import Callable

from app.config import settings
from app.features.trip_scheduling.domain.models import ConsensusOption
from app.features.trip_scheduling.repository.serialization import (
    options_from_json,
    options_to_json,
)
from app.infrastructure.observability.logging import get_logger
from app.services.redis_client import FastRedisClient, fast_redis

logger = get_logger(__name__)

CACHE_KEY_PREFIX = "trip_consensus"


class ConsensusCache:
    def __init__(self, client: FastRedisClient | None = None, ttl_s: int | None = None):
        self.client = client or fast_redis
        self.ttl_s = ttl_s or settings.CONSENSUS_CACHE_TTL_S

    @staticmethod
    def cache_key(trip_id: str, version: int) -> str:
        return f"{CACHE_KEY_PREFIX}:{trip_id}:v{version}"

    async def get_or_compute(
        self,
        trip_id: str,
        version: int,
        compute: Callable[[], list[ConsensusOption]],
    ) -> list[ConsensusOption]:
        if not self.client.enabled:
            return compute()

        key = self.cache_key(trip_id, version)
        cached = await self.client.get(key)
        if cached:
            try:
                return options_from_json(json.loads(cached))
            except (ValueError, KeyError, TypeError) as e:
                logger.warning("Discarding unreadable consensus cache entry", key=key, error=str(e))

        options = compute()
        stored = await self.client.set_with_ttl(key, json.dumps(options_to_json(options)), self.ttl_s)
        logger.debug("Consensus options computed", trip_id=trip_id, version=version, cached=stored)
        return options

