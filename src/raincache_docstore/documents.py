"""
Document database contract consumed by the storage engine.

The engine only needs a narrow slice of a document store:

- ``DocumentDatabase.collection(name)`` resolves a collection handle
- ``DocumentCollection`` supports count / find_one / find / insert_one /
  insert_many / update_one / remove
- ``DocumentCursor`` is a lazy scan with has_next / next / to_list / close

Queries are plain dicts. A field maps to a literal (equality; array fields
match when they contain the literal) or to ``{"$in": [...]}``. Updates use
``{"$set": {...}}``. Both collaborators shipped here (in-memory and ScyllaDB)
share the matcher defined in this module.

Scans must be wrapped in :func:`scan`, which closes the cursor exactly once
however the ``async with`` block exits:

    async with scan(collection, {"list": False}) as cursor:
        async for document in cursor:
            ...
"""

import asyncio
import copy
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from raincache_docstore.errors import QueryError
from raincache_docstore.values import contains_value, values_equal

logger = logging.getLogger(__name__)

Document = dict[str, Any]
Query = dict[str, Any]

ID_FIELD = "_id"
_MISSING = object()


# ============================================================================
# Query evaluation
# ============================================================================

def _field_matches(actual: Any, condition: Any, query: Query) -> bool:
    if isinstance(condition, dict) and any(str(op).startswith("$") for op in condition):
        unknown = [op for op in condition if op != "$in"]
        if unknown:
            raise QueryError(f"Unsupported query operator(s): {unknown}", query=query)
        candidates = condition["$in"]
        if actual is _MISSING:
            return False
        if contains_value(candidates, actual):
            return True
        return isinstance(actual, list) and any(contains_value(candidates, item) for item in actual)

    if actual is _MISSING:
        return condition is None
    if isinstance(actual, list):
        return values_equal(actual, condition) or contains_value(actual, condition)
    return values_equal(actual, condition)


def matches(query: Query, document: Document) -> bool:
    """Return True when ``document`` satisfies every clause of ``query``."""
    for field, condition in query.items():
        if field.startswith("$"):
            raise QueryError(f"Unsupported top-level operator: {field}", query=query)
        if not _field_matches(document.get(field, _MISSING), condition, query):
            return False
    return True


def apply_update(document: Document, update: dict[str, Any]) -> Document:
    """Return a copy of ``document`` with a ``$set`` update applied."""
    unknown = [op for op in update if op != "$set"]
    if unknown:
        raise QueryError(f"Unsupported update operator(s): {unknown}", query=update)
    fields = update.get("$set", {})
    if ID_FIELD in fields:
        raise QueryError("Document id cannot be updated", query=update)
    updated = dict(document)
    updated.update(copy.deepcopy(fields))
    return updated


def project(document: Document, projection: dict[str, Any] | None) -> Document:
    """Keep only the projected fields (the id is always kept)."""
    if not projection:
        return document
    wanted = {field for field, include in projection.items() if include}
    return {
        field: value
        for field, value in document.items()
        if field == ID_FIELD or field in wanted
    }


# ============================================================================
# Contract
# ============================================================================

class DocumentCursor(ABC):
    """Lazy, single-pass sequence of documents."""

    @abstractmethod
    async def has_next(self) -> bool:
        ...

    @abstractmethod
    async def next(self) -> Document:
        """Return the next document or raise StopAsyncIteration."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the scan. Calling it again is a no-op."""
        ...

    async def to_list(self) -> list[Document]:
        """Drain the remaining documents and close the cursor."""
        try:
            return [document async for document in self]
        finally:
            await self.close()

    def __aiter__(self) -> "DocumentCursor":
        return self

    async def __anext__(self) -> Document:
        if not await self.has_next():
            raise StopAsyncIteration
        return await self.next()


class DocumentCollection(ABC):
    """A named collection of JSON-like documents."""

    name: str

    @abstractmethod
    async def count(self, query: Query) -> int:
        ...

    @abstractmethod
    async def find_one(self, query: Query, projection: dict[str, Any] | None = None) -> Document | None:
        ...

    @abstractmethod
    def find(self, query: Query) -> DocumentCursor:
        """Start a lazy scan. No I/O happens until the cursor is read."""
        ...

    @abstractmethod
    async def insert_one(self, document: Document) -> str:
        """Insert ``document`` and return its assigned id."""
        ...

    @abstractmethod
    async def insert_many(self, documents: list[Document]) -> list[str]:
        """Insert ``documents`` in order and return their ids."""
        ...

    @abstractmethod
    async def update_one(self, query: Query, update: dict[str, Any]) -> int:
        """Apply ``update`` to the first match; return the number updated."""
        ...

    @abstractmethod
    async def remove(self, query: Query) -> int:
        """Delete every match; return the number deleted."""
        ...


class DocumentDatabase(ABC):
    """Resolves logical collection names to collection handles."""

    @abstractmethod
    def collection(self, name: str) -> DocumentCollection:
        ...

    @abstractmethod
    async def ping(self) -> bool:
        """Cheap round trip used by health checks."""
        ...

    async def close(self) -> None:
        return None


@asynccontextmanager
async def scan(collection: DocumentCollection, query: Query) -> AsyncIterator[DocumentCursor]:
    """Open a cursor on ``collection`` and close it on every exit path."""
    cursor = collection.find(query)
    try:
        yield cursor
    finally:
        await cursor.close()


# ============================================================================
# In-memory implementation
# ============================================================================

class InMemoryCursor(DocumentCursor):
    """Cursor over a snapshot of the collection taken on first read."""

    def __init__(self, collection: "InMemoryCollection", query: Query):
        self._collection = collection
        self._query = query
        self._pending: list[Document] | None = None
        self._position = 0
        self.closed = False

    async def _load(self) -> None:
        if self._pending is None:
            await asyncio.sleep(0)
            self._pending = [
                copy.deepcopy(document)
                for document in self._collection.snapshot()
                if matches(self._query, document)
            ]

    async def has_next(self) -> bool:
        if self.closed:
            return False
        await self._load()
        return self._position < len(self._pending)

    async def next(self) -> Document:
        if not await self.has_next():
            raise StopAsyncIteration
        document = self._pending[self._position]
        self._position += 1
        return document

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._pending = None


class InMemoryCollection(DocumentCollection):
    """
    Dict-backed collection preserving insertion order.

    Every call yields to the event loop once, so concurrent callers
    interleave the way they would against a networked store.
    """

    def __init__(self, name: str):
        self.name = name
        self._documents: dict[str, Document] = {}

    def snapshot(self) -> list[Document]:
        return list(self._documents.values())

    def __len__(self) -> int:
        return len(self._documents)

    async def count(self, query: Query) -> int:
        await asyncio.sleep(0)
        return sum(1 for document in self._documents.values() if matches(query, document))

    async def find_one(self, query: Query, projection: dict[str, Any] | None = None) -> Document | None:
        await asyncio.sleep(0)
        for document in self._documents.values():
            if matches(query, document):
                return project(copy.deepcopy(document), projection)
        return None

    def find(self, query: Query) -> InMemoryCursor:
        return InMemoryCursor(self, query)

    def _store(self, document: Document) -> str:
        stored = copy.deepcopy(document)
        doc_id = stored.get(ID_FIELD) or uuid.uuid4().hex
        stored[ID_FIELD] = doc_id
        self._documents[doc_id] = stored
        return doc_id

    async def insert_one(self, document: Document) -> str:
        await asyncio.sleep(0)
        return self._store(document)

    async def insert_many(self, documents: list[Document]) -> list[str]:
        await asyncio.sleep(0)
        return [self._store(document) for document in documents]

    async def update_one(self, query: Query, update: dict[str, Any]) -> int:
        await asyncio.sleep(0)
        for doc_id, document in self._documents.items():
            if matches(query, document):
                self._documents[doc_id] = apply_update(document, update)
                return 1
        return 0

    async def remove(self, query: Query) -> int:
        await asyncio.sleep(0)
        doomed = [doc_id for doc_id, document in self._documents.items() if matches(query, document)]
        for doc_id in doomed:
            del self._documents[doc_id]
        return len(doomed)


class InMemoryDatabase(DocumentDatabase):
    """Process-local document database, for embedding and tests."""

    def __init__(self):
        self._collections: dict[str, InMemoryCollection] = {}

    def collection(self, name: str) -> InMemoryCollection:
        if name not in self._collections:
            self._collections[name] = InMemoryCollection(name)
            logger.debug(f"Created in-memory collection '{name}'")
        return self._collections[name]

    async def ping(self) -> bool:
        return True
