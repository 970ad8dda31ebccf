from datetime import timedelta

from recall.config import PoolConfig
from recall.models import MemoryType
from recall.services.candidates import CandidateAggregator


async def _seed(record_store, record_factory):
    records = {
        "session_low": record_factory(session_id="s1", composite=0.25),
        "old_semantic": record_factory(
            session_id="s2", composite=0.8, memory_type=MemoryType.semantic, age=timedelta(days=30)
        ),
        "recent": record_factory(session_id="s2", composite=0.5, age=timedelta(days=1)),
        "weak": record_factory(session_id="s2", composite=0.1),
        "everywhere": record_factory(session_id="s1", composite=0.9, memory_type=MemoryType.semantic),
    }
    for record in records.values():
        await record_store.put(record)
    return records


async def test_collect_unions_pools_first_pool_wins(record_store, record_factory):
    records = await _seed(record_store, record_factory)
    aggregator = CandidateAggregator(record_store, PoolConfig())

    candidates = await aggregator.collect("user-1", session_id="s1")

    assert [r.id for r in candidates] == [
        records["everywhere"].id,
        records["session_low"].id,
        records["old_semantic"].id,
        records["recent"].id,
    ]


async def test_collect_without_session_skips_session_pool(record_store, record_factory):
    records = await _seed(record_store, record_factory)
    aggregator = CandidateAggregator(record_store, PoolConfig())

    ids = {r.id for r in await aggregator.collect("user-1")}

    assert records["session_low"].id not in ids
    assert records["weak"].id not in ids
    assert records["everywhere"].id in ids


async def test_requested_types_override_important_pool_types(record_store, record_factory):
    records = await _seed(record_store, record_factory)
    aggregator = CandidateAggregator(record_store, PoolConfig(recent_limit=0))

    candidates = await aggregator.collect("user-1", memory_types=[MemoryType.short_term])

    assert candidates == []
    assert records["weak"].id in {r.id for r in await aggregator.collect_broad("user-1")}


async def test_pool_limits_are_tunable(record_store, record_factory):
    await _seed(record_store, record_factory)
    aggregator = CandidateAggregator(
        record_store,
        PoolConfig(session_limit=1, important_limit=1, recent_limit=1),
    )

    candidates = await aggregator.collect("user-1", session_id="s1")

    assert len(candidates) <= 3
