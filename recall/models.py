"""
Recall data models.

Memory records are dataclasses serialised to JSON documents; the durable SQL
backend keeps one row per document in ``memory_records``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import Column, DateTime, Index, JSON, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def iso(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# Enums
# =============================================================================

class MemoryType(str, PyEnum):
    working = "working"
    short_term = "short_term"
    long_term = "long_term"
    semantic = "semantic"
    episodic = "episodic"


class Sentiment(str, PyEnum):
    positive = "positive"
    neutral = "neutral"
    negative = "negative"


class ForgettingAction(str, PyEnum):
    keep = "keep"
    archive = "archive"
    remove = "remove"


# =============================================================================
# Memory records
# =============================================================================

@dataclass
class MemoryContent:
    original: str
    compressed: str
    keywords: list[str] = field(default_factory=list)
    concepts: list[str] = field(default_factory=list)
    sentiment: Sentiment = Sentiment.neutral
    importance: float = 0.0


@dataclass
class MemoryMetadata:
    created_timestamp: datetime
    topic: str = ""
    inferred_intent: str = "conversation"
    response_quality: float = 0.5
    token_count: int = 0
    compressed_token_count: int = 0
    model_used: Optional[str] = None
    ensemble_mode: bool = False
    is_query: bool = False
    complexity: float = 0.0


@dataclass
class MemoryWeights:
    importance: float = 0.0
    recency: float = 1.0
    frequency: float = 0.0
    context: float = 0.5
    composite: float = 0.0


@dataclass
class MemoryRetention:
    last_accessed: datetime
    access_count: int = 0
    decay_rate: float = 0.0
    is_archived: bool = False
    expires_at: Optional[datetime] = None


@dataclass
class MemoryRecord:
    owner_id: str
    memory_type: MemoryType
    content: MemoryContent
    metadata: MemoryMetadata
    weights: MemoryWeights
    retention: MemoryRetention
    session_id: Optional[str] = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def age(self, now: datetime):
        return now - self.created_at

    def since_access(self, now: datetime):
        return now - self.retention.last_accessed

    def to_document(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "owner_id": self.owner_id,
            "session_id": self.session_id,
            "memory_type": self.memory_type.value,
            "content": {
                "original": self.content.original,
                "compressed": self.content.compressed,
                "keywords": list(self.content.keywords),
                "concepts": list(self.content.concepts),
                "sentiment": self.content.sentiment.value,
                "importance": self.content.importance,
            },
            "metadata": {
                "created_timestamp": iso(self.metadata.created_timestamp),
                "topic": self.metadata.topic,
                "inferred_intent": self.metadata.inferred_intent,
                "response_quality": self.metadata.response_quality,
                "token_count": self.metadata.token_count,
                "compressed_token_count": self.metadata.compressed_token_count,
                "model_used": self.metadata.model_used,
                "ensemble_mode": self.metadata.ensemble_mode,
                "is_query": self.metadata.is_query,
                "complexity": self.metadata.complexity,
            },
            "weights": {
                "importance": self.weights.importance,
                "recency": self.weights.recency,
                "frequency": self.weights.frequency,
                "context": self.weights.context,
                "composite": self.weights.composite,
            },
            "retention": {
                "expires_at": iso(self.retention.expires_at),
                "last_accessed": iso(self.retention.last_accessed),
                "access_count": self.retention.access_count,
                "decay_rate": self.retention.decay_rate,
                "is_archived": self.retention.is_archived,
            },
            "created_at": iso(self.created_at),
            "updated_at": iso(self.updated_at),
        }

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "MemoryRecord":
        content = document.get("content") or {}
        metadata = document.get("metadata") or {}
        weights = document.get("weights") or {}
        retention = document.get("retention") or {}
        created_at = parse_iso(document.get("created_at")) or utcnow()
        return cls(
            id=document["id"],
            owner_id=document["owner_id"],
            session_id=document.get("session_id"),
            memory_type=MemoryType(document["memory_type"]),
            content=MemoryContent(
                original=content.get("original", ""),
                compressed=content.get("compressed", ""),
                keywords=list(content.get("keywords") or []),
                concepts=list(content.get("concepts") or []),
                sentiment=Sentiment(content.get("sentiment", Sentiment.neutral.value)),
                importance=float(content.get("importance", 0.0)),
            ),
            metadata=MemoryMetadata(
                created_timestamp=parse_iso(metadata.get("created_timestamp")) or created_at,
                topic=metadata.get("topic", ""),
                inferred_intent=metadata.get("inferred_intent", "conversation"),
                response_quality=float(metadata.get("response_quality", 0.5)),
                token_count=int(metadata.get("token_count", 0)),
                compressed_token_count=int(metadata.get("compressed_token_count", 0)),
                model_used=metadata.get("model_used"),
                ensemble_mode=bool(metadata.get("ensemble_mode", False)),
                is_query=bool(metadata.get("is_query", False)),
                complexity=float(metadata.get("complexity", 0.0)),
            ),
            weights=MemoryWeights(
                importance=float(weights.get("importance", 0.0)),
                recency=float(weights.get("recency", 1.0)),
                frequency=float(weights.get("frequency", 0.0)),
                context=float(weights.get("context", 0.5)),
                composite=float(weights.get("composite", 0.0)),
            ),
            retention=MemoryRetention(
                expires_at=parse_iso(retention.get("expires_at")),
                last_accessed=parse_iso(retention.get("last_accessed")) or created_at,
                access_count=int(retention.get("access_count", 0)),
                decay_rate=float(retention.get("decay_rate", 0.0)),
                is_archived=bool(retention.get("is_archived", False)),
            ),
            created_at=created_at,
            updated_at=parse_iso(document.get("updated_at")) or created_at,
        )


# =============================================================================
# Durable storage
# =============================================================================

class MemoryDocument(Base):
    __tablename__ = "memory_records"

    id = Column(String(36), primary_key=True)
    owner_id = Column(String(255), nullable=False, index=True)
    session_id = Column(String(255))
    memory_type = Column(String(32), nullable=False)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    __table_args__ = (
        Index("ix_memory_records_owner_created", "owner_id", "created_at"),
    )
