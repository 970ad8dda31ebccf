"""
Record store facade over the durable and fallback document stores.

Writes go to the durable store first; any failure flips the facade into
degraded mode where the in-process fallback serves reads and writes until
``recheck()`` reaches the durable store again.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, Optional

import recall.config as config
from recall.models import MemoryRecord, MemoryType, utcnow
from recall.services.document_stores import Document, DocumentStore, InMemoryDocumentStore

logger = config.logger


def _sort_key(record: MemoryRecord) -> tuple[float, float]:
    return (-record.weights.composite, -record.created_at.timestamp())


class RecordStore:
    def __init__(
        self,
        durable: Optional[DocumentStore],
        fallback: Optional[InMemoryDocumentStore] = None,
        owner_fetch_limit: int = 500,
        page_size: int = 100,
    ):
        self.durable = durable
        self.fallback = fallback or InMemoryDocumentStore()
        self.owner_fetch_limit = owner_fetch_limit
        self.page_size = page_size
        self.durable_available = durable is not None
        self.last_error: Optional[str] = None
        self.fallback_writes = 0

    def _mark_unavailable(self, operation: str, exc: Exception) -> None:
        self.last_error = str(exc)
        if self.durable_available:
            logger.warning(
                f"Durable store unavailable during {operation}; using fallback store",
                extra={"operation": operation, "error": str(exc)},
            )
        self.durable_available = False

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def put(self, record: MemoryRecord) -> None:
        document = record.to_document()
        if self.durable_available:
            try:
                await self.durable.put(document)
                return
            except Exception as exc:
                self._mark_unavailable("put", exc)
        await self.fallback.put(document)
        self.fallback_writes += 1

    async def get(self, record_id: str) -> Optional[MemoryRecord]:
        document = None
        if self.durable_available:
            try:
                document = await self.durable.get(record_id)
            except Exception as exc:
                self._mark_unavailable("get", exc)
        if document is None:
            document = await self.fallback.get(record_id)
        return MemoryRecord.from_document(document) if document is not None else None

    async def update(self, record_id: str, partial: dict[str, Any]) -> bool:
        updated = False
        if self.durable_available:
            try:
                updated = await self.durable.update(record_id, partial)
            except Exception as exc:
                self._mark_unavailable("update", exc)
        fallback_updated = await self.fallback.update(record_id, partial)
        return updated or fallback_updated

    async def delete(self, record_id: str) -> bool:
        deleted = False
        if self.durable_available:
            try:
                deleted = await self.durable.delete(record_id)
            except Exception as exc:
                self._mark_unavailable("delete", exc)
        fallback_deleted = await self.fallback.delete(record_id)
        return deleted or fallback_deleted

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def _page_all(
        self,
        store: DocumentStore,
        owner_id: Optional[str],
        cap: Optional[int],
    ) -> list[Document]:
        """Page until the cursor runs out, or until ``cap`` documents when one is given."""
        documents: list[Document] = []
        cursor = None
        while cap is None or len(documents) < cap:
            limit = self.page_size if cap is None else min(self.page_size, cap - len(documents))
            if owner_id is None:
                page, cursor = await store.scan(limit, cursor)
            else:
                page, cursor = await store.query(owner_id, limit, cursor)
            documents.extend(page)
            if cursor is None:
                break
        return documents

    async def documents(self, owner_id: Optional[str] = None, cap: Optional[int] = None) -> list[Document]:
        """Documents for an owner (or all owners), durable copies first.

        Without ``cap`` every document is listed; sweeps and metrics rely on that.
        """
        merged: dict[str, Document] = {}
        if self.durable_available:
            try:
                for document in await self._page_all(self.durable, owner_id, cap):
                    merged[document["id"]] = document
            except Exception as exc:
                self._mark_unavailable("query", exc)
        for document in await self._page_all(self.fallback, owner_id, cap):
            merged.setdefault(document["id"], document)
        return list(merged.values())

    def _to_records(self, documents: Iterable[Document]) -> list[MemoryRecord]:
        records = []
        for document in documents:
            try:
                records.append(MemoryRecord.from_document(document))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning(
                    "Skipping malformed memory document",
                    extra={"record_id": document.get("id"), "error": str(exc)},
                )
        return records

    async def query(
        self,
        owner_id: str,
        session_id: Optional[str] = None,
        memory_types: Optional[Iterable[MemoryType]] = None,
        min_importance: Optional[float] = None,
        include_archived: bool = False,
        created_after: Optional[datetime] = None,
        limit: Optional[int] = None,
    ) -> list[MemoryRecord]:
        """Fetch by owner only, then filter and sort here."""
        records = self._to_records(await self.documents(owner_id, cap=self.owner_fetch_limit))
        type_filter = {MemoryType(t) for t in memory_types} if memory_types else None

        selected = []
        for record in records:
            if session_id is not None and record.session_id != session_id:
                continue
            if type_filter is not None and record.memory_type not in type_filter:
                continue
            if min_importance is not None and record.weights.composite < min_importance:
                continue
            if not include_archived and record.retention.is_archived:
                continue
            if created_after is not None and record.created_at < created_after:
                continue
            selected.append(record)

        selected.sort(key=_sort_key)
        if limit is not None:
            selected = selected[:limit]
        return selected

    async def all_records(self, owner_id: Optional[str] = None) -> list[MemoryRecord]:
        """Every record, uncapped."""
        return self._to_records(await self.documents(owner_id))

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def recheck(self) -> bool:
        """Probe the durable store and flush fallback records once it answers."""
        if self.durable is None:
            return False
        try:
            await self.durable.ping()
        except Exception as exc:
            self.last_error = str(exc)
            self.durable_available = False
            logger.debug(f"Durable store still unavailable: {exc}")
            return False

        was_degraded = not self.durable_available
        self.durable_available = True
        flushed = 0
        for document in self.fallback.drain():
            try:
                await self.durable.put(document)
            except Exception as exc:
                self._mark_unavailable("flush", exc)
                return False
            await self.fallback.delete(document["id"])
            flushed += 1
        if was_degraded or flushed:
            logger.info(
                "Durable store available",
                extra={"flushed_records": flushed},
            )
        return True

    def status(self) -> dict:
        return {
            "durable_backend": self.durable.name if self.durable is not None else None,
            "durable_available": self.durable_available,
            "fallback_records": self.fallback.count(),
            "fallback_writes": self.fallback_writes,
            "last_error": self.last_error,
            "checked_at": utcnow().isoformat(),
        }

    async def close(self) -> None:
        if self.durable is not None:
            await self.durable.close()
        await self.fallback.close()
