"""
Candidate pool aggregation for retrieval.
"""

from __future__ import annotations

from datetime import datetime
from typing import Iterable, Optional

import recall.config as config
from recall.config import PoolConfig
from recall.models import MemoryRecord, MemoryType, utcnow
from recall.services.record_store import RecordStore

logger = config.logger


def _merge_unique(pools: Iterable[list[MemoryRecord]]) -> list[MemoryRecord]:
    seen: set[str] = set()
    merged: list[MemoryRecord] = []
    for pool in pools:
        for record in pool:
            if record.id in seen:
                continue
            seen.add(record.id)
            merged.append(record)
    return merged


class CandidateAggregator:
    def __init__(self, store: RecordStore, pools: PoolConfig):
        self.store = store
        self.pools = pools

    async def collect(
        self,
        owner_id: str,
        session_id: Optional[str] = None,
        memory_types: Optional[Iterable[MemoryType]] = None,
        include_archived: bool = False,
        now: Optional[datetime] = None,
    ) -> list[MemoryRecord]:
        """Union of the session, important and recent pools; first pool wins on id."""
        now = now or utcnow()
        pools = self.pools

        session_pool: list[MemoryRecord] = []
        if session_id:
            session_pool = await self.store.query(
                owner_id,
                session_id=session_id,
                min_importance=pools.session_min_importance,
                include_archived=include_archived,
                limit=pools.session_limit,
            )

        important_types = list(memory_types) if memory_types else [
            MemoryType(t) for t in pools.important_types
        ]
        important_pool = await self.store.query(
            owner_id,
            memory_types=important_types,
            min_importance=pools.important_min_importance,
            include_archived=include_archived,
            limit=pools.important_limit,
        )

        recent_pool = await self.store.query(
            owner_id,
            min_importance=pools.recent_min_importance,
            include_archived=include_archived,
            created_after=now - pools.recent_window,
            limit=pools.recent_limit,
        )

        candidates = _merge_unique([session_pool, important_pool, recent_pool])
        logger.debug(
            "Collected candidate pools",
            extra={
                "owner_id": owner_id,
                "session_pool": len(session_pool),
                "important_pool": len(important_pool),
                "recent_pool": len(recent_pool),
                "candidates": len(candidates),
            },
        )
        return candidates

    async def collect_broad(
        self,
        owner_id: str,
        include_archived: bool = False,
    ) -> list[MemoryRecord]:
        """Owner-wide pool without an importance floor, for the retry pass."""
        return await self.store.query(
            owner_id,
            include_archived=include_archived,
            limit=self.pools.broad_limit,
        )


def union(*pools: list[MemoryRecord]) -> list[MemoryRecord]:
    return _merge_unique(pools)
