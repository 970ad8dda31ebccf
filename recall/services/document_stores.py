"""
Document store backends for memory records.

Both backends speak the same CRUD contract over plain JSON documents:
the durable SQL store and the in-process fallback used while the durable
store is unreachable.
"""

from __future__ import annotations

import asyncio
import copy
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from sqlalchemy import select, text
from sqlalchemy.exc import SQLAlchemyError

from recall.errors import StoreUnavailableError
from recall.models import MemoryDocument, parse_iso, utcnow

Document = dict[str, Any]
Page = tuple[list[Document], Optional[str]]


def merge_document(target: Document, partial: Document) -> Document:
    """Deep-merge ``partial`` into a copy of ``target``."""
    merged = copy.deepcopy(target)
    for key, value in partial.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = merge_document(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _offset(cursor: Optional[str]) -> int:
    if not cursor:
        return 0
    try:
        return max(0, int(cursor))
    except ValueError:
        return 0


def _next_cursor(offset: int, returned: int, limit: int) -> Optional[str]:
    if returned < limit:
        return None
    return str(offset + returned)


class DocumentStore(ABC):
    name = "document_store"

    @abstractmethod
    async def get(self, document_id: str) -> Optional[Document]: ...

    @abstractmethod
    async def put(self, document: Document) -> None: ...

    @abstractmethod
    async def query(self, owner_id: str, limit: int, cursor: Optional[str] = None) -> Page: ...

    @abstractmethod
    async def update(self, document_id: str, partial: Document) -> bool: ...

    @abstractmethod
    async def delete(self, document_id: str) -> bool: ...

    @abstractmethod
    async def scan(self, limit: int, cursor: Optional[str] = None) -> Page: ...

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryDocumentStore(DocumentStore):
    """Process-local document map."""

    name = "memory"

    def __init__(self):
        self._lock = threading.Lock()
        self._documents: dict[str, Document] = {}

    def _ordered(self, owner_id: Optional[str]) -> list[Document]:
        documents = [
            doc for doc in self._documents.values()
            if owner_id is None or doc.get("owner_id") == owner_id
        ]
        return sorted(
            documents,
            key=lambda doc: (doc.get("created_at") or "", doc["id"]),
            reverse=owner_id is not None,
        )

    async def get(self, document_id: str) -> Optional[Document]:
        with self._lock:
            document = self._documents.get(document_id)
            return copy.deepcopy(document) if document is not None else None

    async def put(self, document: Document) -> None:
        with self._lock:
            self._documents[document["id"]] = copy.deepcopy(document)

    async def query(self, owner_id: str, limit: int, cursor: Optional[str] = None) -> Page:
        offset = _offset(cursor)
        with self._lock:
            page = self._ordered(owner_id)[offset:offset + limit]
            documents = copy.deepcopy(page)
        return documents, _next_cursor(offset, len(documents), limit)

    async def update(self, document_id: str, partial: Document) -> bool:
        with self._lock:
            existing = self._documents.get(document_id)
            if existing is None:
                return False
            self._documents[document_id] = merge_document(existing, partial)
            return True

    async def delete(self, document_id: str) -> bool:
        with self._lock:
            return self._documents.pop(document_id, None) is not None

    async def scan(self, limit: int, cursor: Optional[str] = None) -> Page:
        offset = _offset(cursor)
        with self._lock:
            documents = copy.deepcopy(self._ordered(None)[offset:offset + limit])
        return documents, _next_cursor(offset, len(documents), limit)

    def count(self) -> int:
        with self._lock:
            return len(self._documents)

    def drain(self) -> list[Document]:
        with self._lock:
            return [copy.deepcopy(doc) for doc in self._documents.values()]


class SqlDocumentStore(DocumentStore):
    """Durable store backed by the ``memory_records`` table.

    SQLAlchemy sessions are synchronous; each call runs in a worker thread
    and is bounded by ``timeout_seconds``.
    """

    name = "sql"

    def __init__(self, session_factory: Callable, timeout_seconds: float = 3.0):
        self._session_factory = session_factory
        self._timeout_seconds = timeout_seconds

    async def _run(self, fn: Callable, *args):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise StoreUnavailableError(
                f"durable store timed out after {self._timeout_seconds}s"
            ) from exc
        except SQLAlchemyError as exc:
            raise StoreUnavailableError(f"durable store error: {exc}") from exc

    def _with_session(self, fn: Callable, *args):
        db = self._session_factory()
        try:
            result = fn(db, *args)
            db.commit()
            return result
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    # Sync helpers run on worker threads

    @staticmethod
    def _get_sync(db, document_id: str) -> Optional[Document]:
        row = db.get(MemoryDocument, document_id)
        return copy.deepcopy(row.payload) if row is not None else None

    @staticmethod
    def _put_sync(db, document: Document) -> None:
        created_at = parse_iso(document.get("created_at")) or utcnow()
        row = db.get(MemoryDocument, document["id"])
        if row is None:
            row = MemoryDocument(id=document["id"], created_at=created_at)
            db.add(row)
        row.owner_id = document["owner_id"]
        row.session_id = document.get("session_id")
        row.memory_type = document["memory_type"]
        row.payload = copy.deepcopy(document)
        row.updated_at = parse_iso(document.get("updated_at")) or utcnow()

    @staticmethod
    def _query_sync(db, owner_id: str, limit: int, offset: int) -> list[Document]:
        stmt = (
            select(MemoryDocument)
            .where(MemoryDocument.owner_id == owner_id)
            .order_by(MemoryDocument.created_at.desc(), MemoryDocument.id)
            .offset(offset)
            .limit(limit)
        )
        return [copy.deepcopy(row.payload) for row in db.execute(stmt).scalars()]

    @staticmethod
    def _scan_sync(db, limit: int, offset: int) -> list[Document]:
        stmt = (
            select(MemoryDocument)
            .order_by(MemoryDocument.created_at, MemoryDocument.id)
            .offset(offset)
            .limit(limit)
        )
        return [copy.deepcopy(row.payload) for row in db.execute(stmt).scalars()]

    @staticmethod
    def _update_sync(db, document_id: str, partial: Document) -> bool:
        row = db.get(MemoryDocument, document_id)
        if row is None:
            return False
        merged = merge_document(row.payload or {}, partial)
        # JSON columns only persist on reassignment
        row.payload = merged
        row.session_id = merged.get("session_id")
        row.memory_type = merged.get("memory_type", row.memory_type)
        row.updated_at = parse_iso(merged.get("updated_at")) or utcnow()
        return True

    @staticmethod
    def _delete_sync(db, document_id: str) -> bool:
        row = db.get(MemoryDocument, document_id)
        if row is None:
            return False
        db.delete(row)
        return True

    @staticmethod
    def _ping_sync(db) -> bool:
        db.execute(text("SELECT 1"))
        return True

    # Async contract

    async def get(self, document_id: str) -> Optional[Document]:
        return await self._run(self._with_session, self._get_sync, document_id)

    async def put(self, document: Document) -> None:
        await self._run(self._with_session, self._put_sync, document)

    async def query(self, owner_id: str, limit: int, cursor: Optional[str] = None) -> Page:
        offset = _offset(cursor)
        documents = await self._run(self._with_session, self._query_sync, owner_id, limit, offset)
        return documents, _next_cursor(offset, len(documents), limit)

    async def update(self, document_id: str, partial: Document) -> bool:
        return await self._run(self._with_session, self._update_sync, document_id, partial)

    async def delete(self, document_id: str) -> bool:
        return await self._run(self._with_session, self._delete_sync, document_id)

    async def scan(self, limit: int, cursor: Optional[str] = None) -> Page:
        offset = _offset(cursor)
        documents = await self._run(self._with_session, self._scan_sync, limit, offset)
        return documents, _next_cursor(offset, len(documents), limit)

    async def ping(self) -> bool:
        return await self._run(self._with_session, self._ping_sync)
