"""
Weight and decay calculations for memory records.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional

from recall.config import EngineConfig, MemoryTypeConfig
from recall.errors import ValidationIssue
from recall.models import MemoryRecord, MemoryType, MemoryWeights

INGESTION_COMPOSITE_MAX = 0.99
RETAIN_INDEFINITELY_IMPORTANCE = 0.7
FREQUENCY_SATURATION = 10
ACCESS_RECENCY_HALF_DAY_HOURS = 12.0
DECAY_FLOOR = 0.7


def clamp(value: float, min_value: float = 0.0, max_value: float = 1.0) -> float:
    if value < min_value:
        return min_value
    if value > max_value:
        return max_value
    return value


def _days_between(earlier: datetime, later: datetime) -> float:
    return max(0.0, (later - earlier).total_seconds() / 86400)


@dataclass
class ScoreComponents:
    semantic: float
    temporal: float
    importance: float
    contextual: float


@dataclass
class ScoredMemory:
    record: MemoryRecord
    score: float
    components: ScoreComponents
    reason: str
    match_type: Optional[str] = None


class WeightCalculator:
    def __init__(self, engine_config: EngineConfig):
        self.config = engine_config

    def type_config(self, memory_type: MemoryType) -> MemoryTypeConfig:
        key = memory_type.value if isinstance(memory_type, MemoryType) else str(memory_type)
        try:
            return self.config.memory_types[key]
        except KeyError as exc:
            raise ValidationIssue(
                f"memory type {key!r} is not configured",
                field="memory_type",
                error_type="unconfigured_type",
            ) from exc

    # ------------------------------------------------------------------
    # Component weights
    # ------------------------------------------------------------------

    def recency(self, created_at: datetime, decay_rate: float, now: datetime) -> float:
        age_days = _days_between(created_at, now)
        return clamp(math.exp(-age_days * decay_rate / self.config.recency_normalizer))

    def access_recency(self, last_accessed: datetime, now: datetime) -> float:
        hours = max(0.0, (now - last_accessed).total_seconds() / 3600)
        return clamp(
            math.exp(-hours * self.config.temporal_decay_factor / ACCESS_RECENCY_HALF_DAY_HOURS)
        )

    def frequency(self, access_count: int) -> float:
        return clamp(access_count / FREQUENCY_SATURATION)

    def ingestion_composite(self, importance: float, memory_type: MemoryType) -> float:
        multiplier = self.type_config(memory_type).multiplier
        return clamp(importance * multiplier, 0.0, INGESTION_COMPOSITE_MAX)

    def initial_weights(self, importance: float, memory_type: MemoryType) -> MemoryWeights:
        return MemoryWeights(
            importance=clamp(importance),
            recency=1.0,
            frequency=0.0,
            context=0.5,
            composite=self.ingestion_composite(importance, memory_type),
        )

    def expires_at(
        self,
        memory_type: MemoryType,
        importance: float,
        created_at: datetime,
    ) -> Optional[datetime]:
        if memory_type == MemoryType.semantic or importance >= RETAIN_INDEFINITELY_IMPORTANCE:
            return None
        return created_at + self.type_config(memory_type).max_age

    def temporal(self, record: MemoryRecord, now: datetime) -> float:
        recency = self.recency(record.created_at, record.retention.decay_rate, now)
        access = self.access_recency(record.retention.last_accessed, now)
        frequency = self.frequency(record.retention.access_count)
        return clamp(0.5 * recency + 0.3 * access + 0.2 * frequency)

    def contextual(
        self,
        record: MemoryRecord,
        has_query: bool,
        session_id: Optional[str] = None,
        query_concepts: Optional[Iterable[str]] = None,
        query_intent: Optional[str] = None,
    ) -> float:
        if not has_query:
            return 0.5
        score = 0.5
        if session_id and record.session_id == session_id:
            score += 0.3
        concepts = set(query_concepts or ())
        if concepts and record.content.concepts:
            overlap = len(concepts.intersection(record.content.concepts)) / len(concepts)
            score += 0.2 * overlap
        if query_intent and record.metadata.inferred_intent == query_intent:
            score += 0.1
        return clamp(score)

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self,
        record: MemoryRecord,
        now: datetime,
        semantic: float = 0.0,
        has_query: bool = False,
        session_id: Optional[str] = None,
        query_concepts: Optional[Iterable[str]] = None,
        query_intent: Optional[str] = None,
        match_type: Optional[str] = None,
    ) -> ScoredMemory:
        weights = self.config.scoring
        components = ScoreComponents(
            semantic=clamp(semantic),
            temporal=self.temporal(record, now),
            importance=clamp(record.weights.composite),
            contextual=self.contextual(record, has_query, session_id, query_concepts, query_intent),
        )
        total = (
            weights.semantic * components.semantic
            + weights.temporal * components.temporal
            + weights.importance * components.importance
            + weights.contextual * components.contextual
        )
        return ScoredMemory(
            record=record,
            score=clamp(total),
            components=components,
            reason=self.retrieval_reason(components),
            match_type=match_type,
        )

    def retrieval_reason(self, components: ScoreComponents) -> str:
        if components.semantic > 0.7:
            return "high_semantic_similarity"
        if components.importance > 0.8:
            return "high_importance"
        if components.temporal > 0.8:
            return "recent_relevance"
        if components.contextual > 0.7:
            return "contextual_match"
        return "balanced_relevance"

    def refresh(self, record: MemoryRecord, now: datetime) -> MemoryWeights:
        """Recompute the persisted weights for a decay tick."""
        recency = self.recency(record.created_at, record.retention.decay_rate, now)
        frequency = self.frequency(record.retention.access_count)
        base = self.ingestion_composite(record.content.importance, record.memory_type)
        # Decay never takes a record below DECAY_FLOOR of its ingestion value.
        composite = clamp(
            base * (DECAY_FLOOR + (1 - DECAY_FLOOR) * max(recency, frequency)),
            0.0,
            INGESTION_COMPOSITE_MAX,
        )
        return MemoryWeights(
            importance=record.weights.importance,
            recency=recency,
            frequency=frequency,
            context=record.weights.context,
            composite=composite,
        )
