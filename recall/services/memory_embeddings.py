"""
Embedding provider, circuit breaker and embedding cache.
"""

from __future__ import annotations

import asyncio
import hashlib
import random
import threading
import time
from abc import ABC, abstractmethod
from collections import OrderedDict
from typing import Any, Dict, List, Optional

import httpx

import recall.config as config
from recall.errors import EmbeddingProviderError

logger = config.logger

RETRYABLE_STATUS = {429, 500, 502, 503, 504}


class EmbeddingCircuitBreaker:
    def __init__(self, failure_threshold: int, cooldown_seconds: int):
        self._failure_threshold = max(1, failure_threshold)
        self._cooldown_seconds = max(1, cooldown_seconds)
        self._lock = threading.Lock()
        self._consecutive_failures = 0
        self._cooldown_until = 0.0
        self._last_error: Optional[str] = None
        self._last_failure_ts: Optional[float] = None
        self._last_success_ts: Optional[float] = None

    def is_open(self) -> bool:
        with self._lock:
            return time.time() < self._cooldown_until

    def record_success(self) -> None:
        with self._lock:
            self._consecutive_failures = 0
            self._cooldown_until = 0.0
            self._last_success_ts = time.time()

    def record_failure(self, error: str) -> None:
        with self._lock:
            self._consecutive_failures += 1
            self._last_error = error
            self._last_failure_ts = time.time()
            if self._consecutive_failures >= self._failure_threshold:
                self._cooldown_until = time.time() + self._cooldown_seconds

    def status(self) -> dict:
        with self._lock:
            return {
                "open": time.time() < self._cooldown_until,
                "consecutive_failures": self._consecutive_failures,
                "cooldown_until_epoch": int(self._cooldown_until) if self._cooldown_until else None,
                "last_error": self._last_error,
                "last_failure_epoch": int(self._last_failure_ts) if self._last_failure_ts else None,
                "last_success_epoch": int(self._last_success_ts) if self._last_success_ts else None,
            }


def _raise_embedding_unavailable(detail: str) -> None:
    logger.warning("Embedding provider unavailable", extra={"detail": detail})
    raise EmbeddingProviderError(f"embedding provider unavailable: {detail}")


class EmbeddingProvider(ABC):
    name = "embedding"

    @abstractmethod
    async def embed(self, text: str) -> List[float]: ...

    def status(self) -> dict:
        return {"provider": self.name}

    async def aclose(self) -> None:
        return None


class OpenAIEmbeddingProvider(EmbeddingProvider):
    """OpenAI-compatible ``/v1/embeddings`` client with retry and breaker."""

    name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = config.EMBEDDING_MODEL,
        api_url: str = config.EMBEDDING_API_URL,
        timeout_seconds: float = config.EMBEDDING_TIMEOUT_SECONDS,
        retry_max: int = config.EMBEDDING_RETRY_MAX,
        backoff_seconds: float = config.EMBEDDING_RETRY_BACKOFF_SECONDS,
        jitter_seconds: float = config.EMBEDDING_RETRY_JITTER_SECONDS,
        breaker: Optional[EmbeddingCircuitBreaker] = None,
        client: Optional[httpx.AsyncClient] = None,
        max_text_length: int = config.MAX_EMBEDDING_TEXT_LENGTH,
    ):
        self.api_key = api_key
        self.model = model
        self.api_url = api_url
        self.retry_max = max(0, retry_max)
        self.backoff_seconds = backoff_seconds
        self.jitter_seconds = jitter_seconds
        self.max_text_length = max_text_length
        self.breaker = breaker or EmbeddingCircuitBreaker(
            failure_threshold=config.EMBEDDING_FAILURE_THRESHOLD,
            cooldown_seconds=config.EMBEDDING_COOLDOWN_SECONDS,
        )
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds),
            limits=httpx.Limits(max_keepalive_connections=10, max_connections=100),
        )

    async def _sleep_backoff(self, attempt: int) -> None:
        base = self.backoff_seconds * (2 ** attempt)
        jitter = random.uniform(0, self.jitter_seconds)
        await asyncio.sleep(base + jitter)

    async def embed(self, text: str) -> List[float]:
        """Generate an embedding for ``text``."""
        if not text or not text.strip():
            _raise_embedding_unavailable("empty text")
        if self.breaker.is_open():
            _raise_embedding_unavailable("circuit breaker open")
        payload = {"model": self.model, "input": text[: self.max_text_length]}
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        for attempt in range(self.retry_max + 1):
            try:
                response = await self._client.post(self.api_url, headers=headers, json=payload)
            except httpx.RequestError as exc:
                if attempt >= self.retry_max:
                    self.breaker.record_failure(str(exc))
                    _raise_embedding_unavailable(str(exc))
                await self._sleep_backoff(attempt)
                continue

            if response.status_code in RETRYABLE_STATUS:
                if attempt >= self.retry_max:
                    self.breaker.record_failure(f"status {response.status_code}")
                    _raise_embedding_unavailable(f"status {response.status_code}")
                await self._sleep_backoff(attempt)
                continue
            if response.status_code >= 400:
                self.breaker.record_failure(f"status {response.status_code}")
                _raise_embedding_unavailable(f"status {response.status_code}")

            try:
                embedding = response.json()["data"][0]["embedding"]
            except (ValueError, KeyError, IndexError, TypeError) as exc:
                self.breaker.record_failure("malformed response")
                raise EmbeddingProviderError("embedding provider returned a malformed response") from exc
            self.breaker.record_success()
            return embedding

        _raise_embedding_unavailable("retries exhausted")

    def status(self) -> dict:
        return {
            "provider": self.name,
            "model": self.model,
            "circuit_breaker": self.breaker.status(),
        }

    async def aclose(self) -> None:
        await self._client.aclose()


class EmbeddingCache:
    """LRU cache of candidate embeddings keyed by record id and text hash."""

    def __init__(self, max_size: int = 1000):
        self.max_size = max(1, max_size)
        self.cache: OrderedDict[str, List[float]] = OrderedDict()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def create_key(record_id: str, text: str) -> str:
        digest = hashlib.sha256(text.encode("utf-8")).hexdigest()[:16]
        return f"{record_id}:{digest}"

    def get(self, key: str) -> Optional[List[float]]:
        if key not in self.cache:
            self.misses += 1
            return None
        self.cache.move_to_end(key)
        self.hits += 1
        return self.cache[key]

    def set(self, key: str, value: List[float]) -> None:
        if key in self.cache:
            self.cache.move_to_end(key)
        elif len(self.cache) >= self.max_size:
            self.cache.popitem(last=False)
        self.cache[key] = value

    def get_stats(self) -> Dict[str, Any]:
        total_requests = self.hits + self.misses
        return {
            "size": len(self.cache),
            "max_size": self.max_size,
            "hits": self.hits,
            "misses": self.misses,
            "hit_rate": self.hits / total_requests if total_requests > 0 else 0,
        }


def build_embedding_provider() -> Optional[EmbeddingProvider]:
    """Provider from environment settings, or None for local similarity only."""
    if config.EMBEDDING_PROVIDER == "none":
        return None
    if not config.OPENAI_API_KEY:
        logger.warning("OPENAI_API_KEY not set; embedding provider disabled")
        return None
    logger.info("Embedding provider initialized", extra={"model": config.EMBEDDING_MODEL})
    return OpenAIEmbeddingProvider(api_key=config.OPENAI_API_KEY)
