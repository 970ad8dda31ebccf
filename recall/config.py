"""
Shared configuration for the recall engine.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Mapping

from recall.models import MemoryType

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("recall")


def _get_bool(env_name: str, default: bool) -> bool:
    value = os.environ.get(env_name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _get_int(env_name: str, default: int) -> int:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _get_float(env_name: str, default: float) -> float:
    value = os.environ.get(env_name)
    if value is None:
        return default
    try:
        return float(value)
    except ValueError:
        return default


# Storage settings
DATABASE_URL = os.environ.get("RECALL_DATABASE_URL", "sqlite:///./recall.db")
STORE_TIMEOUT_SECONDS = _get_float("RECALL_STORE_TIMEOUT_SECONDS", 3.0)
STORE_PAGE_SIZE = _get_int("RECALL_STORE_PAGE_SIZE", 100)
OWNER_FETCH_LIMIT = _get_int("RECALL_OWNER_FETCH_LIMIT", 500)
DURABLE_RECHECK_SECONDS = _get_int("RECALL_DURABLE_RECHECK_SECONDS", 60)

# Embedding settings
EMBEDDING_PROVIDER = os.environ.get("EMBEDDING_PROVIDER", "none").strip().lower()
OPENAI_API_KEY = os.environ.get("OPENAI_API_KEY")
EMBEDDING_MODEL = os.environ.get("EMBEDDING_MODEL", "text-embedding-3-small")
EMBEDDING_API_URL = os.environ.get("EMBEDDING_API_URL", "https://api.openai.com/v1/embeddings")
EMBEDDING_TIMEOUT_SECONDS = _get_float("EMBEDDING_TIMEOUT_SECONDS", 3.0)
EMBEDDING_RETRY_MAX = _get_int("EMBEDDING_RETRY_MAX", 1)
EMBEDDING_RETRY_BACKOFF_SECONDS = _get_float("EMBEDDING_RETRY_BACKOFF_SECONDS", 0.25)
EMBEDDING_RETRY_JITTER_SECONDS = _get_float("EMBEDDING_RETRY_JITTER_SECONDS", 0.1)
EMBEDDING_FAILURE_THRESHOLD = _get_int("EMBEDDING_FAILURE_THRESHOLD", 5)
EMBEDDING_COOLDOWN_SECONDS = _get_int("EMBEDDING_COOLDOWN_SECONDS", 60)
EMBEDDING_CACHE_SIZE = _get_int("EMBEDDING_CACHE_SIZE", 1000)
MAX_EMBEDDING_TEXT_LENGTH = _get_int("RECALL_MAX_EMBEDDING_TEXT_LENGTH", 8000)

# Request/input limits
MAX_TEXT_LENGTH = _get_int("RECALL_MAX_TEXT_LENGTH", 25000)
MAX_QUERY_LENGTH = _get_int("RECALL_MAX_QUERY_LENGTH", 4000)
MAX_ID_LENGTH = _get_int("RECALL_MAX_ID_LENGTH", 255)
MAX_RESULT_LIMIT = _get_int("RECALL_MAX_RESULT_LIMIT", 100)
MAX_CONTEXT_TOKENS = _get_int("RECALL_MAX_CONTEXT_TOKENS", 32000)
CONTEXT_MAX_RECORDS = _get_int("RECALL_CONTEXT_MAX_RECORDS", 20)

# Scoring
SCORE_WEIGHT_SEMANTIC = _get_float("SCORE_WEIGHT_SEMANTIC", 0.4)
SCORE_WEIGHT_TEMPORAL = _get_float("SCORE_WEIGHT_TEMPORAL", 0.3)
SCORE_WEIGHT_IMPORTANCE = _get_float("SCORE_WEIGHT_IMPORTANCE", 0.2)
SCORE_WEIGHT_CONTEXTUAL = _get_float("SCORE_WEIGHT_CONTEXTUAL", 0.1)
RECENCY_NORMALIZER = _get_float("RECENCY_NORMALIZER", 0.1)
TEMPORAL_DECAY_FACTOR = _get_float("TEMPORAL_DECAY_FACTOR", 0.1)
CHARS_PER_TOKEN = _get_int("RECALL_CHARS_PER_TOKEN", 4)

# Ranking and filtering
SIMILARITY_THRESHOLD = _get_float("SIMILARITY_THRESHOLD", 0.3)
RETRY_SIMILARITY_THRESHOLD = _get_float("RETRY_SIMILARITY_THRESHOLD", 0.25)
MIN_SEMANTIC_RESULTS = _get_int("MIN_SEMANTIC_RESULTS", 3)
KEYWORD_BONUS_WEIGHT = _get_float("KEYWORD_BONUS_WEIGHT", 0.2)
DIVERSITY_THRESHOLD = _get_float("DIVERSITY_THRESHOLD", 0.8)
HIGH_SCORE_OVERRIDE = _get_float("HIGH_SCORE_OVERRIDE", 0.8)
MIN_CONTENT_LENGTH = _get_int("MIN_CONTENT_LENGTH", 10)

# Candidate pools
SESSION_POOL_LIMIT = _get_int("SESSION_POOL_LIMIT", 15)
SESSION_POOL_MIN_IMPORTANCE = _get_float("SESSION_POOL_MIN_IMPORTANCE", 0.2)
IMPORTANT_POOL_LIMIT = _get_int("IMPORTANT_POOL_LIMIT", 20)
IMPORTANT_POOL_MIN_IMPORTANCE = _get_float("IMPORTANT_POOL_MIN_IMPORTANCE", 0.7)
RECENT_POOL_LIMIT = _get_int("RECENT_POOL_LIMIT", 10)
RECENT_POOL_MIN_IMPORTANCE = _get_float("RECENT_POOL_MIN_IMPORTANCE", 0.4)
RECENT_POOL_DAYS = _get_int("RECENT_POOL_DAYS", 7)
BROAD_POOL_LIMIT = _get_int("BROAD_POOL_LIMIT", 50)

# Forgetting
FORGETTING_INTERVAL_SECONDS = _get_int("FORGETTING_INTERVAL_SECONDS", 86400)
FORGET_ARCHIVED_UNACCESSED_DAYS = _get_float("FORGET_ARCHIVED_UNACCESSED_DAYS", 30)
FORGET_MAX_AGE_FACTOR = _get_float("FORGET_MAX_AGE_FACTOR", 2.0)
FORGET_LOW_COMPOSITE = _get_float("FORGET_LOW_COMPOSITE", 0.1)
FORGET_LOW_COMPOSITE_UNACCESSED_DAYS = _get_float("FORGET_LOW_COMPOSITE_UNACCESSED_DAYS", 7)
FORGET_LOW_QUALITY = _get_float("FORGET_LOW_QUALITY", 0.3)
FORGET_LOW_QUALITY_UNACCESSED_DAYS = _get_float("FORGET_LOW_QUALITY_UNACCESSED_DAYS", 14)
ARCHIVE_COMPOSITE = _get_float("ARCHIVE_COMPOSITE", 0.3)
ARCHIVE_UNACCESSED_DAYS = _get_float("ARCHIVE_UNACCESSED_DAYS", 3)
ARCHIVE_NEVER_ACCESSED_AGE_DAYS = _get_float("ARCHIVE_NEVER_ACCESSED_AGE_DAYS", 1)
ENFORCE_TYPE_LIMITS = _get_bool("ENFORCE_TYPE_LIMITS", True)


@dataclass(frozen=True)
class MemoryTypeConfig:
    max_age: timedelta
    decay_rate: float
    multiplier: float
    max_count: int


DEFAULT_MEMORY_TYPES: dict[str, MemoryTypeConfig] = {
    "working": MemoryTypeConfig(max_age=timedelta(days=1), decay_rate=0.1, multiplier=0.8, max_count=10),
    "short_term": MemoryTypeConfig(max_age=timedelta(days=7), decay_rate=0.05, multiplier=0.9, max_count=50),
    "episodic": MemoryTypeConfig(max_age=timedelta(days=14), decay_rate=0.02, multiplier=1.0, max_count=30),
    "long_term": MemoryTypeConfig(max_age=timedelta(days=90), decay_rate=0.01, multiplier=1.2, max_count=200),
    "semantic": MemoryTypeConfig(max_age=timedelta(days=365), decay_rate=0.005, multiplier=1.3, max_count=100),
}


@dataclass(frozen=True)
class ScoringWeights:
    semantic: float = SCORE_WEIGHT_SEMANTIC
    temporal: float = SCORE_WEIGHT_TEMPORAL
    importance: float = SCORE_WEIGHT_IMPORTANCE
    contextual: float = SCORE_WEIGHT_CONTEXTUAL

    def total(self) -> float:
        return self.semantic + self.temporal + self.importance + self.contextual


@dataclass(frozen=True)
class PoolConfig:
    session_limit: int = SESSION_POOL_LIMIT
    session_min_importance: float = SESSION_POOL_MIN_IMPORTANCE
    important_limit: int = IMPORTANT_POOL_LIMIT
    important_min_importance: float = IMPORTANT_POOL_MIN_IMPORTANCE
    important_types: tuple[str, ...] = ("semantic", "long_term")
    recent_limit: int = RECENT_POOL_LIMIT
    recent_min_importance: float = RECENT_POOL_MIN_IMPORTANCE
    recent_window: timedelta = timedelta(days=RECENT_POOL_DAYS)
    broad_limit: int = BROAD_POOL_LIMIT


@dataclass(frozen=True)
class ForgettingRules:
    archived_unaccessed: timedelta = timedelta(days=FORGET_ARCHIVED_UNACCESSED_DAYS)
    max_age_factor: float = FORGET_MAX_AGE_FACTOR
    low_composite: float = FORGET_LOW_COMPOSITE
    low_composite_unaccessed: timedelta = timedelta(days=FORGET_LOW_COMPOSITE_UNACCESSED_DAYS)
    low_quality: float = FORGET_LOW_QUALITY
    low_quality_unaccessed: timedelta = timedelta(days=FORGET_LOW_QUALITY_UNACCESSED_DAYS)
    archive_composite: float = ARCHIVE_COMPOSITE
    archive_unaccessed: timedelta = timedelta(days=ARCHIVE_UNACCESSED_DAYS)
    never_accessed_age: timedelta = timedelta(days=ARCHIVE_NEVER_ACCESSED_AGE_DAYS)
    enforce_type_limits: bool = ENFORCE_TYPE_LIMITS
    interval_seconds: int = FORGETTING_INTERVAL_SECONDS


@dataclass(frozen=True)
class EngineConfig:
    """Engine settings; every default comes from the environment constants above."""

    memory_types: Mapping[str, MemoryTypeConfig] = field(
        default_factory=lambda: dict(DEFAULT_MEMORY_TYPES)
    )
    scoring: ScoringWeights = field(default_factory=ScoringWeights)
    pools: PoolConfig = field(default_factory=PoolConfig)
    forgetting: ForgettingRules = field(default_factory=ForgettingRules)
    similarity_threshold: float = SIMILARITY_THRESHOLD
    retry_similarity_threshold: float = RETRY_SIMILARITY_THRESHOLD
    min_semantic_results: int = MIN_SEMANTIC_RESULTS
    keyword_bonus_weight: float = KEYWORD_BONUS_WEIGHT
    diversity_threshold: float = DIVERSITY_THRESHOLD
    high_score_override: float = HIGH_SCORE_OVERRIDE
    min_content_length: int = MIN_CONTENT_LENGTH
    recency_normalizer: float = RECENCY_NORMALIZER
    temporal_decay_factor: float = TEMPORAL_DECAY_FACTOR
    chars_per_token: int = CHARS_PER_TOKEN
    context_max_records: int = CONTEXT_MAX_RECORDS
    store_timeout_seconds: float = STORE_TIMEOUT_SECONDS
    store_page_size: int = STORE_PAGE_SIZE
    owner_fetch_limit: int = OWNER_FETCH_LIMIT
    embedding_timeout_seconds: float = EMBEDDING_TIMEOUT_SECONDS
    embedding_cache_size: int = EMBEDDING_CACHE_SIZE

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls()


def _unit_interval_errors(values: Mapping[str, float]) -> list[str]:
    return [
        f"{name} must be between 0.0 and 1.0"
        for name, value in values.items()
        if value < 0.0 or value > 1.0
    ]


def validate_and_prepare_config(engine_config: EngineConfig) -> EngineConfig:
    """Validate engine configuration before the service is built."""
    errors = []
    missing = [t.value for t in MemoryType if t.value not in engine_config.memory_types]
    if missing:
        errors.append(f"memory types not configured: {', '.join(missing)}")
    for name, type_config in engine_config.memory_types.items():
        if type_config.max_age <= timedelta(0):
            errors.append(f"{name}.max_age must be positive")
        if type_config.decay_rate < 0:
            errors.append(f"{name}.decay_rate must be non-negative")
        if type_config.multiplier < 0:
            errors.append(f"{name}.multiplier must be non-negative")

    total = engine_config.scoring.total()
    if abs(total - 1.0) > 1e-6:
        errors.append(f"scoring weights must sum to 1.0 (got {total:.3f})")

    errors.extend(
        _unit_interval_errors(
            {
                "similarity_threshold": engine_config.similarity_threshold,
                "retry_similarity_threshold": engine_config.retry_similarity_threshold,
                "diversity_threshold": engine_config.diversity_threshold,
                "high_score_override": engine_config.high_score_override,
                "keyword_bonus_weight": engine_config.keyword_bonus_weight,
                "session_min_importance": engine_config.pools.session_min_importance,
                "important_min_importance": engine_config.pools.important_min_importance,
                "recent_min_importance": engine_config.pools.recent_min_importance,
            }
        )
    )
    if engine_config.retry_similarity_threshold > engine_config.similarity_threshold:
        errors.append("retry_similarity_threshold must not exceed similarity_threshold")
    if engine_config.recency_normalizer <= 0:
        errors.append("recency_normalizer must be positive")
    if engine_config.chars_per_token <= 0:
        errors.append("chars_per_token must be positive")
    if engine_config.store_timeout_seconds <= 0:
        errors.append("store_timeout_seconds must be positive")

    if EMBEDDING_PROVIDER not in {"none", "openai"}:
        errors.append("EMBEDDING_PROVIDER must be 'none' or 'openai'")
    if EMBEDDING_PROVIDER == "openai" and not OPENAI_API_KEY:
        logger.warning("EMBEDDING_PROVIDER=openai without OPENAI_API_KEY; using local similarity only.")

    if errors:
        raise RuntimeError("Configuration invalid: " + "; ".join(errors))
    return engine_config
