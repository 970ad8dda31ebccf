"""
Semantic similarity ranking for retrieval candidates.

Embedding similarity is used when a provider is configured; otherwise, or
whenever the provider fails, a local term-frequency cosine with a
keyword/concept match bonus ranks the candidates.
"""

from __future__ import annotations

import asyncio
import math
from collections import Counter, OrderedDict
from dataclasses import dataclass
from typing import Optional

import numpy as np

import recall.config as config
from recall.models import MemoryRecord
from recall.services.content_analysis import STOP_WORDS, tokenize
from recall.services.memory_embeddings import EmbeddingCache, EmbeddingProvider

logger = config.logger

MIN_TERM_LENGTH = 3
CONCEPT_MATCH_WEIGHT = 0.7
TERM_VECTOR_CACHE_SIZE = 1000


def searchable_text(record: MemoryRecord) -> str:
    parts = [
        record.content.original,
        record.content.compressed,
        " ".join(record.content.keywords),
        " ".join(record.content.concepts),
        record.metadata.topic,
        record.metadata.inferred_intent,
    ]
    return " ".join(part for part in parts if part)


def query_terms(text: str) -> list[str]:
    terms: list[str] = []
    for token in tokenize(text):
        if len(token) >= MIN_TERM_LENGTH and token not in STOP_WORDS and token not in terms:
            terms.append(token)
    return terms


@dataclass
class SimilarityResult:
    record: MemoryRecord
    similarity: float
    match_type: str
    method: str


class SemanticRanker:
    def __init__(
        self,
        provider: Optional[EmbeddingProvider] = None,
        embedding_timeout_seconds: float = 3.0,
        keyword_bonus_weight: float = 0.2,
        cache: Optional[EmbeddingCache] = None,
    ):
        self.provider = provider
        self.embedding_timeout_seconds = embedding_timeout_seconds
        self.keyword_bonus_weight = keyword_bonus_weight
        self.cache = cache or EmbeddingCache()
        self.fallback_count = 0
        self._term_vectors: OrderedDict[str, dict[str, float]] = OrderedDict()

    async def similarities(self, query: str, candidates: list[MemoryRecord]) -> list[SimilarityResult]:
        """Similarity of every candidate to ``query``, highest first."""
        if not candidates:
            return []

        method = "local"
        scores: Optional[list[float]] = None
        if self.provider is not None:
            try:
                scores = await asyncio.wait_for(
                    self._embedding_scores(query, candidates),
                    timeout=self.embedding_timeout_seconds,
                )
                method = "embedding"
            except Exception as exc:
                self.fallback_count += 1
                logger.warning(
                    "Embedding similarity failed; using local similarity",
                    extra={"error": str(exc) or type(exc).__name__},
                )
        if scores is None:
            scores = [self._local_score(query, record) for record in candidates]

        results = [
            SimilarityResult(
                record=record,
                similarity=score,
                match_type=self.match_type(query, record),
                method=method,
            )
            for record, score in zip(candidates, scores)
        ]
        results.sort(key=lambda result: result.similarity, reverse=True)
        return results

    def filter(self, results: list[SimilarityResult], threshold: float) -> list[SimilarityResult]:
        kept = [result for result in results if result.similarity >= threshold]
        kept.sort(key=lambda result: result.similarity, reverse=True)
        return kept

    def match_type(self, query: str, record: MemoryRecord) -> str:
        normalized = query.strip().lower()
        if normalized and normalized in record.content.original.lower():
            return "exact_content"
        keywords = set(record.content.keywords)
        if any(term in keywords for term in query_terms(query)):
            return "keyword_match"
        return "semantic_similarity"

    # ------------------------------------------------------------------
    # Embedding path
    # ------------------------------------------------------------------

    async def _candidate_embedding(self, record: MemoryRecord) -> list[float]:
        text = searchable_text(record)
        key = EmbeddingCache.create_key(record.id, text)
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        vector = await self.provider.embed(text)
        self.cache.set(key, vector)
        return vector

    async def _embedding_scores(self, query: str, candidates: list[MemoryRecord]) -> list[float]:
        query_vector = await self.provider.embed(query)
        vectors = await asyncio.gather(*(self._candidate_embedding(r) for r in candidates))
        q = np.asarray(query_vector, dtype=float)
        matrix = np.asarray(vectors, dtype=float)
        norms = np.linalg.norm(matrix, axis=1) * np.linalg.norm(q)
        dots = matrix @ q
        sims = np.divide(dots, norms, out=np.zeros_like(dots), where=norms > 0)
        return np.clip(sims, 0.0, 1.0).tolist()

    # ------------------------------------------------------------------
    # Local path
    # ------------------------------------------------------------------

    def term_vector(self, text: str) -> dict[str, float]:
        cached = self._term_vectors.get(text)
        if cached is not None:
            self._term_vectors.move_to_end(text)
            return cached
        counts = Counter(
            token for token in tokenize(text)
            if len(token) >= MIN_TERM_LENGTH and token not in STOP_WORDS
        )
        norm = math.sqrt(sum(value * value for value in counts.values()))
        vector = {term: value / norm for term, value in counts.items()} if norm else {}
        if len(self._term_vectors) >= TERM_VECTOR_CACHE_SIZE:
            self._term_vectors.popitem(last=False)
        self._term_vectors[text] = vector
        return vector

    def _local_score(self, query: str, record: MemoryRecord) -> float:
        query_vector = self.term_vector(query)
        record_vector = self.term_vector(searchable_text(record))
        cosine = sum(weight * record_vector.get(term, 0.0) for term, weight in query_vector.items())

        terms = query_terms(query)
        bonus = 0.0
        if terms:
            keywords = set(record.content.keywords)
            concepts = set(record.content.concepts)
            matches = 0.0
            for term in terms:
                if term in keywords:
                    matches += 1.0
                elif term in concepts:
                    matches += CONCEPT_MATCH_WEIGHT
            bonus = self.keyword_bonus_weight * matches / len(terms)
        return max(0.0, min(cosine + bonus, 1.0))

    def status(self) -> dict:
        return {
            "provider": self.provider.status() if self.provider is not None else None,
            "fallback_count": self.fallback_count,
            "embedding_cache": self.cache.get_stats(),
        }
