"""
Memory ingestion, retrieval and context assembly.

``MemoryService`` is the engine facade: it wires the content analyzer,
weight calculator, record store, candidate pools, semantic ranker,
diversity filter and forgetting engine together.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Optional, Sequence

import recall.config as config
from recall.config import EngineConfig
from recall.models import (
    MemoryContent,
    MemoryMetadata,
    MemoryRecord,
    MemoryRetention,
    MemoryType,
    iso,
    utcnow,
)
from recall.services.candidates import CandidateAggregator, union
from recall.services.content_analysis import ContentAnalyzer, estimate_tokens, tokenize
from recall.services.diversity import DiversityFilter
from recall.services.document_stores import SqlDocumentStore
from recall.services.forgetting_service import ForgettingEngine, ForgettingReport
from recall.services.memory_embeddings import EmbeddingCache, EmbeddingProvider
from recall.services.memory_weights import ScoredMemory, WeightCalculator
from recall.services.record_store import RecordStore
from recall.services.semantic_ranker import SemanticRanker
from recall.validators import (
    validate_fraction as _validate_fraction,
    validate_limit as _validate_limit,
    validate_memory_types as _validate_memory_types,
    validate_optional_text as _validate_optional_text,
    validate_owner_id as _validate_owner_id,
    validate_required_text as _validate_required_text,
)

logger = config.logger

MAX_TEXT_LENGTH = config.MAX_TEXT_LENGTH
MAX_QUERY_LENGTH = config.MAX_QUERY_LENGTH
MAX_ID_LENGTH = config.MAX_ID_LENGTH
MAX_RESULT_LIMIT = config.MAX_RESULT_LIMIT
MAX_CONTEXT_TOKENS = config.MAX_CONTEXT_TOKENS


class MemoryService:
    def __init__(
        self,
        store: RecordStore,
        engine_config: Optional[EngineConfig] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
        analyzer: Optional[ContentAnalyzer] = None,
    ):
        self.config = engine_config or EngineConfig()
        self.store = store
        self.analyzer = analyzer or ContentAnalyzer(chars_per_token=self.config.chars_per_token)
        self.calculator = WeightCalculator(self.config)
        self.candidates = CandidateAggregator(store, self.config.pools)
        self.ranker = SemanticRanker(
            provider=embedding_provider,
            embedding_timeout_seconds=self.config.embedding_timeout_seconds,
            keyword_bonus_weight=self.config.keyword_bonus_weight,
            cache=EmbeddingCache(self.config.embedding_cache_size),
        )
        self.diversity = DiversityFilter(
            diversity_threshold=self.config.diversity_threshold,
            high_score_override=self.config.high_score_override,
            min_content_length=self.config.min_content_length,
        )
        self.forgetting = ForgettingEngine(store, self.calculator, self.config.forgetting)

    @classmethod
    def from_config(
        cls,
        engine_config: EngineConfig,
        session_factory: Optional[Callable] = None,
        embedding_provider: Optional[EmbeddingProvider] = None,
    ) -> "MemoryService":
        durable = None
        if session_factory is not None:
            durable = SqlDocumentStore(session_factory, timeout_seconds=engine_config.store_timeout_seconds)
        store = RecordStore(
            durable,
            owner_fetch_limit=engine_config.owner_fetch_limit,
            page_size=engine_config.store_page_size,
        )
        return cls(store, engine_config, embedding_provider=embedding_provider)

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def store_memory(
        self,
        owner_id: str,
        session_id: Optional[str],
        text: str,
        is_query: bool,
        response_quality: float = 0.5,
        model_used: Optional[str] = None,
        ensemble_mode: bool = False,
    ) -> MemoryRecord:
        """
        Analyze, weight and persist one conversational snippet.

        Args:
            owner_id: Owner of the memory
            session_id: Optional conversation/session id
            text: Raw text to remember
            is_query: True for user input, False for a response
            response_quality: Quality rating 0.0-1.0 (default 0.5)
            model_used: Model that produced the response, if any
            ensemble_mode: Whether the response came from an ensemble

        Returns:
            The stored MemoryRecord
        """
        _validate_owner_id(owner_id)
        _validate_optional_text(session_id, "session_id", MAX_ID_LENGTH)
        _validate_required_text(text, "text", MAX_TEXT_LENGTH)
        _validate_fraction(response_quality, "response_quality")
        _validate_optional_text(model_used, "model_used", MAX_ID_LENGTH)

        analysis = self.analyzer.analyze(text, is_query)
        memory_type = self.analyzer.classify(analysis, text, is_query)
        type_config = self.calculator.type_config(memory_type)

        now = utcnow()
        record = MemoryRecord(
            owner_id=owner_id,
            session_id=session_id,
            memory_type=memory_type,
            content=MemoryContent(
                original=text,
                compressed=analysis.compressed,
                keywords=analysis.keywords,
                concepts=analysis.concepts,
                sentiment=analysis.sentiment,
                importance=analysis.importance,
            ),
            metadata=MemoryMetadata(
                created_timestamp=now,
                topic=analysis.topic,
                inferred_intent=analysis.inferred_intent,
                response_quality=response_quality,
                token_count=analysis.token_count,
                compressed_token_count=analysis.compressed_token_count,
                model_used=model_used,
                ensemble_mode=ensemble_mode,
                is_query=is_query,
                complexity=analysis.complexity,
            ),
            weights=self.calculator.initial_weights(analysis.importance, memory_type),
            retention=MemoryRetention(
                last_accessed=now,
                access_count=0,
                decay_rate=type_config.decay_rate,
                is_archived=False,
                expires_at=self.calculator.expires_at(memory_type, analysis.importance, now),
            ),
            created_at=now,
            updated_at=now,
        )
        await self.store.put(record)
        logger.info(
            "Stored memory",
            extra={
                "record_id": record.id,
                "owner_id": owner_id,
                "memory_type": memory_type.value,
                "composite": record.weights.composite,
            },
        )
        return record

    # =========================================================================
    # Retrieval
    # =========================================================================

    def _eligible(
        self,
        records: Sequence[MemoryRecord],
        memory_types: Optional[list[MemoryType]],
        min_importance: float,
        include_archived: bool,
    ) -> list[MemoryRecord]:
        allowed = set(memory_types) if memory_types else None
        return [
            record for record in records
            if (allowed is None or record.memory_type in allowed)
            and record.weights.composite >= min_importance
            and (include_archived or not record.retention.is_archived)
        ]

    async def retrieve_scored(
        self,
        owner_id: str,
        session_id: Optional[str] = None,
        memory_types: Optional[Sequence[str]] = None,
        max_results: int = 10,
        min_importance: float = 0.0,
        include_archived: bool = False,
        query: Optional[str] = None,
        track_access: bool = True,
    ) -> list[ScoredMemory]:
        """Ranked, diversity-filtered memories with their score breakdown."""
        _validate_owner_id(owner_id)
        _validate_optional_text(session_id, "session_id", MAX_ID_LENGTH)
        _validate_limit(max_results, "max_results", MAX_RESULT_LIMIT)
        _validate_fraction(min_importance, "min_importance")
        _validate_optional_text(query, "query", MAX_QUERY_LENGTH)
        types = _validate_memory_types(memory_types)

        now = utcnow()
        candidates = await self.candidates.collect(
            owner_id,
            session_id=session_id,
            memory_types=types,
            include_archived=include_archived,
            now=now,
        )
        candidates = self._eligible(candidates, types, min_importance, include_archived)

        if query and query.strip():
            scored = await self._score_with_query(
                owner_id, session_id, query, candidates, types, min_importance, include_archived, now
            )
        else:
            if len(candidates) < max_results:
                broad = await self.candidates.collect_broad(owner_id, include_archived=include_archived)
                candidates = self._eligible(
                    union(candidates, broad), types, min_importance, include_archived
                )
            scored = [
                self.calculator.score(record, now, session_id=session_id)
                for record in candidates
            ]

        scored.sort(key=lambda item: (item.score, item.record.weights.composite), reverse=True)
        selected = self.diversity.apply(scored, include_archived=include_archived)[:max_results]
        if track_access:
            await self._track_access(selected, now)
        return selected

    async def _score_with_query(
        self,
        owner_id: str,
        session_id: Optional[str],
        query: str,
        candidates: list[MemoryRecord],
        types: Optional[list[MemoryType]],
        min_importance: float,
        include_archived: bool,
        now: datetime,
    ) -> list[ScoredMemory]:
        results = self.ranker.filter(
            await self.ranker.similarities(query, candidates),
            self.config.similarity_threshold,
        )
        if len(results) < self.config.min_semantic_results:
            broad = await self.candidates.collect_broad(owner_id, include_archived=include_archived)
            pool = self._eligible(union(candidates, broad), types, min_importance, include_archived)
            results = self.ranker.filter(
                await self.ranker.similarities(query, pool),
                self.config.retry_similarity_threshold,
            )
            logger.info(
                "Semantic recall retried with broader pool",
                extra={"owner_id": owner_id, "pool": len(pool), "matches": len(results)},
            )

        query_concepts = self.analyzer.extract_concepts(tokenize(query))
        query_intent = self.analyzer.detect_intent(query, True)
        return [
            self.calculator.score(
                result.record,
                now,
                semantic=result.similarity,
                has_query=True,
                session_id=session_id,
                query_concepts=query_concepts,
                query_intent=query_intent,
                match_type=result.match_type,
            )
            for result in results
        ]

    async def _track_access(self, selected: list[ScoredMemory], now: datetime) -> None:
        updates = []
        for item in selected:
            retention = item.record.retention
            retention.access_count += 1
            retention.last_accessed = now
            updates.append(
                self.store.update(
                    item.record.id,
                    {
                        "retention": {
                            "access_count": retention.access_count,
                            "last_accessed": iso(now),
                        },
                        "updated_at": iso(now),
                    },
                )
            )
        results = await asyncio.gather(*updates, return_exceptions=True)
        for item, result in zip(selected, results):
            if isinstance(result, Exception):
                logger.warning(
                    "Access tracking failed",
                    extra={"record_id": item.record.id, "error": str(result)},
                )

    async def retrieve_memories(
        self,
        owner_id: str,
        session_id: Optional[str] = None,
        memory_types: Optional[Sequence[str]] = None,
        max_results: int = 10,
        min_importance: float = 0.0,
        include_archived: bool = False,
        query: Optional[str] = None,
    ) -> list[MemoryRecord]:
        scored = await self.retrieve_scored(
            owner_id,
            session_id=session_id,
            memory_types=memory_types,
            max_results=max_results,
            min_importance=min_importance,
            include_archived=include_archived,
            query=query,
        )
        return [item.record for item in scored]

    async def get_context(
        self,
        owner_id: str,
        session_id: Optional[str],
        max_tokens: int = 1000,
        current_query: Optional[str] = None,
    ) -> str:
        """Token-bounded conversation context, most relevant memories first."""
        _validate_limit(max_tokens, "max_tokens", MAX_CONTEXT_TOKENS)
        scored = await self.retrieve_scored(
            owner_id,
            session_id=session_id,
            max_results=min(self.config.context_max_records, MAX_RESULT_LIMIT),
            query=current_query,
            track_access=False,
        )

        lines: list[str] = []
        emitted: list[ScoredMemory] = []
        for item in scored:
            record = item.record
            prefix = "User: " if record.metadata.is_query else "AI: "
            line = prefix + (record.content.compressed or record.content.original)
            candidate = "\n".join(lines + [line])
            if estimate_tokens(candidate, self.config.chars_per_token) > max_tokens:
                break
            lines.append(line)
            emitted.append(item)
        await self._track_access(emitted, utcnow())
        return "\n".join(lines)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def run_forgetting_cycle(self, owner_id: Optional[str] = None) -> ForgettingReport:
        if owner_id is not None:
            _validate_owner_id(owner_id)
        return await self.forgetting.run(owner_id)

    async def refresh_weights(self, owner_id: Optional[str] = None) -> int:
        if owner_id is not None:
            _validate_owner_id(owner_id)
        return await self.forgetting.refresh_weights(owner_id)

    async def get_memory(self, record_id: str) -> Optional[MemoryRecord]:
        _validate_required_text(record_id, "record_id", MAX_ID_LENGTH)
        return await self.store.get(record_id)

    async def delete_memory(self, record_id: str) -> bool:
        """Administrative hard delete."""
        _validate_required_text(record_id, "record_id", MAX_ID_LENGTH)
        deleted = await self.store.delete(record_id)
        logger.info("Deleted memory", extra={"record_id": record_id, "deleted": deleted})
        return deleted

    # =========================================================================
    # Observability
    # =========================================================================

    async def get_memory_metrics(self, owner_id: str) -> dict:
        _validate_owner_id(owner_id)
        records = await self.store.all_records(owner_id)
        total = len(records)
        by_type = {memory_type.value: 0 for memory_type in MemoryType}
        for record in records:
            by_type[record.memory_type.value] += 1
        token_total = sum(record.metadata.token_count for record in records)
        compressed_total = sum(record.metadata.compressed_token_count for record in records)
        return {
            "owner_id": owner_id,
            "total": total,
            "by_type": by_type,
            "archived": sum(1 for record in records if record.retention.is_archived),
            "average_importance": (
                sum(record.content.importance for record in records) / total if total else 0.0
            ),
            "average_composite": (
                sum(record.weights.composite for record in records) / total if total else 0.0
            ),
            "token_count": token_total,
            "compressed_token_count": compressed_total,
            "compression_savings": (
                1 - compressed_total / token_total if token_total else 0.0
            ),
        }

    def health(self) -> dict:
        store_status = self.store.status()
        last_report = self.forgetting.last_report
        return {
            "status": "healthy" if store_status["durable_available"] else "degraded",
            "store": store_status,
            "embedding": self.ranker.status(),
            "last_forgetting_cycle": last_report.as_dict() if last_report else None,
        }

    async def close(self) -> None:
        await self.store.close()
        if self.ranker.provider is not None:
            await self.ranker.provider.aclose()
