import math
from datetime import timedelta

import pytest

from recall.config import DEFAULT_MEMORY_TYPES, EngineConfig
from recall.errors import ValidationIssue
from recall.models import MemoryType, utcnow
from recall.services.memory_weights import WeightCalculator


def test_ingestion_composite_is_clamped(engine_config):
    calculator = WeightCalculator(engine_config)

    assert calculator.ingestion_composite(0.9, MemoryType.semantic) == pytest.approx(0.99)
    assert calculator.ingestion_composite(0.5, MemoryType.working) == pytest.approx(0.4)
    assert calculator.ingestion_composite(-1.0, MemoryType.working) == 0.0


def test_unconfigured_type_is_a_validation_issue():
    config = EngineConfig(memory_types={"working": DEFAULT_MEMORY_TYPES["working"]})
    calculator = WeightCalculator(config)

    with pytest.raises(ValidationIssue) as exc:
        calculator.type_config(MemoryType.semantic)
    assert exc.value.error_type == "unconfigured_type"


def test_expiry_only_for_low_importance_non_semantic(engine_config):
    calculator = WeightCalculator(engine_config)
    now = utcnow()

    assert calculator.expires_at(MemoryType.semantic, 0.2, now) is None
    assert calculator.expires_at(MemoryType.short_term, 0.8, now) is None
    assert calculator.expires_at(MemoryType.short_term, 0.5, now) == now + timedelta(days=7)


def test_recency_decays_with_age(engine_config):
    calculator = WeightCalculator(engine_config)
    now = utcnow()

    assert calculator.recency(now, 0.05, now) == pytest.approx(1.0)
    assert calculator.recency(now - timedelta(days=10), 0.05, now) == pytest.approx(math.exp(-5))


def test_frequency_saturates(engine_config):
    calculator = WeightCalculator(engine_config)

    assert calculator.frequency(0) == 0.0
    assert calculator.frequency(5) == pytest.approx(0.5)
    assert calculator.frequency(50) == 1.0


def test_contextual_factor(engine_config, record_factory):
    calculator = WeightCalculator(engine_config)
    record = record_factory(session_id="s1", concepts=["strength", "training"])
    record.metadata.inferred_intent = "question"

    assert calculator.contextual(record, has_query=False) == 0.5
    full = calculator.contextual(
        record,
        has_query=True,
        session_id="s1",
        query_concepts=["strength", "training"],
        query_intent="question",
    )
    assert full == 1.0
    partial = calculator.contextual(record, has_query=True, session_id="other")
    assert partial == 0.5


def test_score_bounds_and_reason(engine_config, record_factory):
    calculator = WeightCalculator(engine_config)
    now = utcnow()
    record = record_factory(composite=0.6)

    scored = calculator.score(record, now, semantic=0.9, has_query=True)

    assert 0.0 <= scored.score <= 1.0
    assert scored.reason == "high_semantic_similarity"
    assert scored.components.importance == pytest.approx(0.6)

    unscored = calculator.score(record, now)
    assert unscored.components.semantic == 0.0
    assert unscored.score < scored.score


def test_refresh_decays_within_floor(engine_config, record_factory):
    calculator = WeightCalculator(engine_config)
    record = record_factory(memory_type=MemoryType.working, composite=0.5, age=timedelta(days=5))
    base = calculator.ingestion_composite(record.content.importance, record.memory_type)

    weights = calculator.refresh(record, utcnow())

    assert weights.recency < 0.01
    assert base * 0.7 - 1e-9 <= weights.composite <= base
    assert 0.0 <= weights.composite <= 1.0
