"""
Storage engine exposing keys, values and lists on top of a document database.

Keys are dotted paths (``"users.42.profile"``). Every entry stores its
ancestor namespaces, so ``filter``/``find`` can scope a scan to a namespace
with a single equality clause. Lists are entries flagged ``list=True`` whose
members live as separate documents in the list collection.

Example:
    engine = StorageEngine(InMemoryDatabase())
    await engine.initialize()

    await engine.upsert("users.42", {"name": "Alice"})
    await engine.upsert("users.42", {"age": 30})
    await engine.get("users.42")               # {"name": "Alice", "age": 30}

    await engine.add_to_list("online", ["users.42", "users.7"])
    await engine.get_list_members("online")    # ["users.42", "users.7"]
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Iterable

from raincache_docstore.config import CollectionNames, EngineConfig
from raincache_docstore.documents import DocumentCollection, DocumentDatabase, Query, scan
from raincache_docstore.errors import EngineNotInitializedError, NotFoundError, WrongKindError
from raincache_docstore.logging_utils import PerformanceLogger, setup_production_logging
from raincache_docstore.namespace import ROOT_NAMESPACE, split_partition
from raincache_docstore.observability import EngineMetrics, Tracer
from raincache_docstore.records import Entry, ListElement
from raincache_docstore.values import contains_value, merge_value

logger = logging.getLogger(__name__)

Predicate = Callable[[Any], bool]

# Fields needed to check existence and kind without loading the value.
_KIND_PROJECTION = {"_id": 1, "key": 1, "list": 1}


class CollectionRegistry:
    """
    Resolves keys and namespaces to key-value collection handles.

    Without partitions every key lives in the default collection. With
    partitions, keys whose first component is a registered partition live in
    ``"{kv}_{partition}"`` and everything else stays in the default one.
    """

    def __init__(self, database: DocumentDatabase, kv_name: str, partitions: Iterable[str] = ()):
        self.default = database.collection(kv_name)
        self._partitions: dict[str, DocumentCollection] = {
            partition: database.collection(f"{kv_name}_{partition}")
            for partition in partitions
        }

    @property
    def partitions(self) -> list[str]:
        return list(self._partitions)

    def for_key(self, key: str) -> DocumentCollection:
        partition, _ = split_partition(key)
        return self._partitions.get(partition, self.default)

    def for_namespace(self, namespace: str) -> list[DocumentCollection]:
        """Collections that may hold entries under ``namespace``."""
        if namespace == ROOT_NAMESPACE:
            return [self.default, *self._partitions.values()]
        return [self.for_key(namespace)]


class StorageEngine:
    """
    Key-value and list storage engine.

    Operations are not atomic across calls: two concurrent ``upsert`` calls on
    the same absent key, or two ``add_to_list`` calls adding the same value,
    may both insert. Errors from the document database propagate unchanged.
    """

    def __init__(
        self,
        database: DocumentDatabase,
        *,
        collection_names: CollectionNames | None = None,
        partitions: Iterable[str] | None = None,
        enable_tracing: bool = False,
        metrics: EngineMetrics | None = None,
        tracer_provider=None,
    ) -> None:
        """
        Args:
            database: Document database the engine persists through
            collection_names: Key-value and list collection names
            partitions: Top-level namespaces stored in their own collections
            enable_tracing: Wrap every operation in an OpenTelemetry span
            metrics: Metrics sink (a private one is created if omitted)
            tracer_provider: OpenTelemetry provider; the global one if omitted
        """
        self.database = database
        self.collection_names = collection_names or CollectionNames()
        self.partitions = list(partitions or [])
        self.metrics = metrics or EngineMetrics()
        self.tracer = Tracer(enabled=enable_tracing, tracer_provider=tracer_provider)

        self.registry: CollectionRegistry | None = None
        self.list_collection: DocumentCollection | None = None

    @classmethod
    @asynccontextmanager
    async def from_config(cls, config: EngineConfig) -> AsyncIterator["StorageEngine"]:
        """
        Connect to ScyllaDB and yield an initialized engine.

        Root logging is configured from ``log_level`` and ``log_format``
        unless ``configure_logging`` is off.

        Example:
            async with StorageEngine.from_config(load_config_from_env()) as engine:
                await engine.upsert("settings.theme", "dark")
        """
        from raincache_docstore.scylla import ScyllaDocumentDatabase

        if config.configure_logging:
            setup_production_logging(config.log_level, config.log_format)

        metrics = EngineMetrics()
        async with ScyllaDocumentDatabase.connect(config.scylla, retry=config.retry, metrics=metrics) as database:
            engine = cls(
                database,
                collection_names=config.collections,
                partitions=config.partitions,
                enable_tracing=config.enable_tracing,
                metrics=metrics,
            )
            async with engine:
                yield engine

    async def initialize(self) -> None:
        """Resolve collection handles. Idempotent."""
        if self.registry is not None:
            return
        self.registry = CollectionRegistry(self.database, self.collection_names.kv, self.partitions)
        self.list_collection = self.database.collection(self.collection_names.list)
        # TODO: create indices on key, namespaces and listID once the document contract exposes index creation
        logger.info(
            f"Storage engine initialized: kv='{self.collection_names.kv}', "
            f"list='{self.collection_names.list}', partitions={self.partitions}"
        )

    async def close(self) -> None:
        """Release collection handles. The database itself is left open."""
        if self.registry is None:
            return
        self.registry = None
        self.list_collection = None
        logger.info("Storage engine closed")

    async def __aenter__(self) -> "StorageEngine":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    @asynccontextmanager
    async def _instrument(self, operation: str, key: str):
        if self.registry is None:
            raise EngineNotInitializedError()

        start_time = time.perf_counter()
        try:
            async with PerformanceLogger(operation, logger, key=key):
                async with self.tracer.span(f"raincache.{operation}", attributes={"key": key}):
                    yield
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            self.metrics.record(operation, latency_ms, success=False, error_type=type(e).__name__)
            raise
        latency_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record(operation, latency_ms, success=True)

    async def _find_entry(self, key: str, projection: dict[str, Any] | None = None) -> Entry | None:
        document = await self.registry.for_key(key).find_one({"key": key}, projection)
        return Entry.model_validate(document) if document is not None else None

    async def _require_list(self, list_id: str) -> Entry:
        entry = await self._find_entry(list_id, _KIND_PROJECTION)
        if entry is None:
            raise NotFoundError(list_id)
        if not entry.is_list:
            raise WrongKindError(list_id, expected_list=True)
        return entry

    # ------------------------------------------------------------------
    # Key-value operations
    # ------------------------------------------------------------------

    async def get(self, key: str) -> Any:
        """
        Return the value stored at ``key``, or None if there is no entry.

        Raises:
            WrongKindError: If ``key`` holds a list
        """
        async with self._instrument("get", key):
            entry = await self._find_entry(key)
            if entry is None:
                return None
            if entry.is_list:
                raise WrongKindError(key, expected_list=False)
            return entry.value

    async def upsert(self, key: str, patch: Any) -> None:
        """
        Create or update the value at ``key``.

        Scalar (or missing) values are replaced by ``patch``; mapping values
        are shallow-merged with it.

        Raises:
            WrongKindError: If ``key`` holds a list
        """
        async with self._instrument("upsert", key):
            collection = self.registry.for_key(key)
            entry = await self._find_entry(key)

            if entry is None:
                await collection.insert_one(Entry.new(key, patch).to_document())
                return

            if entry.is_list:
                raise WrongKindError(key, expected_list=False)

            await collection.update_one(
                {"_id": entry.id},
                {"$set": {"value": merge_value(entry.value, patch)}}
            )

    async def remove(self, key: str) -> None:
        """
        Delete the entry at ``key``. Missing keys are ignored.

        Raises:
            WrongKindError: If ``key`` holds a list (use remove_list)
        """
        async with self._instrument("remove", key):
            entry = await self._find_entry(key, _KIND_PROJECTION)
            if entry is None:
                return
            if entry.is_list:
                raise WrongKindError(key, expected_list=False)
            await self.registry.for_key(key).remove({"_id": entry.id})

    async def _scan_values(
        self,
        predicate: Predicate,
        ids: Iterable[str] | str | None,
        namespace: str,
        first_only: bool,
    ) -> list[Any]:
        query: Query = {"namespaces": namespace, "list": False}
        if isinstance(ids, str):
            ids = [ids]
        if ids is not None:
            query["key"] = {"$in": list(ids)}

        matched = []
        for collection in self.registry.for_namespace(namespace):
            async with scan(collection, query) as cursor:
                async for document in cursor:
                    value = document.get("value")
                    if predicate(value):
                        matched.append(value)
                        if first_only:
                            return matched
        return matched

    async def filter(
        self,
        predicate: Predicate,
        ids: Iterable[str] | str | None = None,
        namespace: str = ROOT_NAMESPACE,
    ) -> list[Any]:
        """
        Return every non-list value under ``namespace`` accepted by ``predicate``.

        Args:
            predicate: Called with each value; truthy results are kept
            ids: Restrict the scan to these keys; a bare string is one key
            namespace: Dotted namespace; ``""`` means all entries
        """
        async with self._instrument("filter", namespace):
            return await self._scan_values(predicate, ids, namespace, first_only=False)

    async def find(
        self,
        predicate: Predicate,
        ids: Iterable[str] | str | None = None,
        namespace: str | None = None,
    ) -> Any:
        """
        Return the first non-list value under ``namespace`` accepted by ``predicate``.

        ``find(predicate, "users")`` is shorthand for
        ``find(predicate, None, "users")``.
        """
        if isinstance(ids, str) and namespace is None:
            ids, namespace = None, ids
        if namespace is None:
            namespace = ROOT_NAMESPACE

        async with self._instrument("find", namespace):
            matched = await self._scan_values(predicate, ids, namespace, first_only=True)
            return matched[0] if matched else None

    # ------------------------------------------------------------------
    # List operations
    # ------------------------------------------------------------------

    async def get_list_members(self, list_id: str) -> list[Any]:
        """
        Return the members of a list in insertion order.

        Raises:
            NotFoundError: If there is no entry at ``list_id``
            WrongKindError: If the entry is not a list
        """
        async with self._instrument("get_list_members", list_id):
            entry = await self._require_list(list_id)
            async with scan(self.list_collection, {"listID": entry.id}) as cursor:
                return [ListElement.model_validate(document).value async for document in cursor]

    async def add_to_list(self, list_id: str, values: Any) -> None:
        """
        Add one value, or a list of values, to a list.

        The list is created if missing. Values already present, and repeats
        within ``values``, are skipped; new members keep their input order.

        Raises:
            WrongKindError: If ``list_id`` holds a plain value
        """
        to_add = list(values) if isinstance(values, (list, tuple)) else [values]

        async with self._instrument("add_to_list", list_id):
            entry = await self._find_entry(list_id, _KIND_PROJECTION)
            if entry is not None and not entry.is_list:
                raise WrongKindError(list_id, expected_list=True)

            present: list[Any] = []
            if entry is None:
                owner_id = await self.registry.for_key(list_id).insert_one(
                    Entry.new(list_id, is_list=True).to_document()
                )
            else:
                owner_id = entry.id
                if to_add:
                    async with scan(self.list_collection, {"listID": owner_id, "value": {"$in": to_add}}) as cursor:
                        present = [document["value"] async for document in cursor]

            novel: list[Any] = []
            for value in to_add:
                if not contains_value(present, value) and not contains_value(novel, value):
                    novel.append(value)

            if not novel:
                logger.debug(f"Nothing new to add to list '{list_id}'")
                return

            await self.list_collection.insert_many([
                ListElement(list_id=owner_id, value=value).to_document()
                for value in novel
            ])

    async def is_list_member(self, list_id: str, value: Any) -> bool:
        """
        Raises:
            NotFoundError: If there is no entry at ``list_id``
            WrongKindError: If the entry is not a list
        """
        async with self._instrument("is_list_member", list_id):
            entry = await self._require_list(list_id)
            return await self.list_collection.count({"listID": entry.id, "value": value}) > 0

    async def remove_from_list(self, list_id: str, value: Any) -> None:
        async with self._instrument("remove_from_list", list_id):
            entry = await self._require_list(list_id)
            await self.list_collection.remove({"listID": entry.id, "value": value})

    async def remove_list(self, list_id: str) -> None:
        """Delete every member of the list, then the list entry itself."""
        async with self._instrument("remove_list", list_id):
            entry = await self._require_list(list_id)
            await self.list_collection.remove({"listID": entry.id})
            await self.registry.for_key(list_id).remove({"_id": entry.id})

    async def get_list_count(self, list_id: str) -> int:
        async with self._instrument("get_list_count", list_id):
            entry = await self._require_list(list_id)
            return await self.list_collection.count({"listID": entry.id})

    # ------------------------------------------------------------------
    # Health and metrics
    # ------------------------------------------------------------------

    async def health_check(self) -> dict[str, Any]:
        """
        Ping the document database.

        Returns:
            {"database": {"status": ..., "latency_ms": ...}, "overall": ...}
        """
        health_status: dict[str, Any] = {}
        try:
            start = time.perf_counter()
            await self.database.ping()
            latency_ms = (time.perf_counter() - start) * 1000
            health_status["database"] = {
                "status": "healthy",
                "latency_ms": round(latency_ms, 2)
            }
        except Exception as e:
            logger.warning(f"Health check failed: {e}")
            health_status["database"] = {
                "status": "unhealthy",
                "error": str(e)
            }

        health_status["overall"] = health_status["database"]["status"]
        return health_status

    def get_metrics(self) -> dict[str, Any]:
        return self.metrics.get_stats()

    def export_prometheus_metrics(self) -> str:
        return self.metrics.export_prometheus()
