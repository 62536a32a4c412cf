"""
ScyllaDB implementation of the document database contract.

Schema:
    documents (
        collection text,
        doc_id     timeuuid,
        body       text,
        PRIMARY KEY (collection, doc_id)
    )

Each logical collection is one partition and rows cluster by a time-based
id, so a partition scan returns documents in insertion order. Document
bodies are JSON; queries are evaluated client-side with the shared matcher
while paging through the partition ``fetch_size`` rows at a time.
"""

import asyncio
import json
import logging
import time
import uuid
from collections import deque
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from cassandra import (
    AuthenticationFailed,
    ConfigurationException,
    CoordinationFailure,
    DriverException,
    InvalidRequest,
    OperationTimedOut,
    ReadFailure,
    ReadTimeout,
    RequestExecutionException,
    Unauthorized,
    Unavailable,
    WriteFailure,
    WriteTimeout,
)
from cassandra.auth import PlainTextAuthProvider
from cassandra.cluster import Cluster, EXEC_PROFILE_DEFAULT, ExecutionProfile, NoHostAvailable, Session
from cassandra.io.asyncioreactor import AsyncioConnection
from cassandra.policies import DCAwareRoundRobinPolicy, TokenAwarePolicy
from cassandra.query import BatchStatement, BatchType
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from raincache_docstore.config import RetryConfig, ScyllaConfig
from raincache_docstore.documents import (
    ID_FIELD,
    Document,
    DocumentCollection,
    DocumentCursor,
    DocumentDatabase,
    Query,
    apply_update,
    matches,
    project,
    scan,
)
from raincache_docstore.errors import (
    StorageEngineError,
    StoreConnectionError,
    StoreQueryError,
    StoreTimeoutError,
    StoreUnavailableError,
)
from raincache_docstore.observability import EngineMetrics

logger = logging.getLogger(__name__)

TABLE = "documents"

_STATEMENTS = {
    "insert": f"INSERT INTO {TABLE} (collection, doc_id, body) VALUES (?, ?, ?)",
    "update": f"UPDATE {TABLE} SET body = ? WHERE collection = ? AND doc_id = ?",
    "delete": f"DELETE FROM {TABLE} WHERE collection = ? AND doc_id = ?",
    "get": f"SELECT doc_id, body FROM {TABLE} WHERE collection = ? AND doc_id = ?",
    "scan": f"SELECT doc_id, body FROM {TABLE} WHERE collection = ?",
}


def translate_driver_error(error: Exception, statement_name: str) -> Exception:
    """Map a driver exception onto the engine's store errors."""
    if isinstance(error, StorageEngineError):
        return error
    if isinstance(error, NoHostAvailable):
        return StoreConnectionError("No hosts available for query execution", original_error=error)
    if isinstance(error, (ReadTimeout, WriteTimeout)):
        operation = "read" if isinstance(error, ReadTimeout) else "write"
        return StoreTimeoutError(
            f"{operation.capitalize()} operation timed out",
            original_error=error,
            operation_type=operation
        )
    if isinstance(error, OperationTimedOut):
        return StoreTimeoutError("Client-side operation timeout", original_error=error, operation_type=statement_name)
    if isinstance(error, Unavailable):
        consistency = getattr(error, 'consistency', None)
        return StoreUnavailableError(
            "Required replicas unavailable",
            original_error=error,
            consistency_level=str(consistency) if consistency else None,
            required_replicas=getattr(error, 'required_replicas', None),
            alive_replicas=getattr(error, 'alive_replicas', None)
        )
    if isinstance(error, (ReadFailure, WriteFailure, CoordinationFailure)):
        return StoreQueryError(f"Coordination failure during '{statement_name}'", original_error=error)
    if isinstance(error, (Unauthorized, AuthenticationFailed)):
        return StoreConnectionError("Authentication or authorization failed", original_error=error)
    if isinstance(error, (InvalidRequest, ConfigurationException)):
        return StoreQueryError("Invalid statement", original_error=error, statement=_STATEMENTS.get(statement_name))
    if isinstance(error, (RequestExecutionException, DriverException)):
        return StoreQueryError(f"Statement '{statement_name}' failed", original_error=error)
    return error


def _reraise(error: Exception, statement_name: str) -> None:
    translated = translate_driver_error(error, statement_name)
    if translated is error:
        raise error
    raise translated from error


def _parse_id(doc_id: Any) -> uuid.UUID | None:
    if isinstance(doc_id, uuid.UUID):
        return doc_id
    try:
        return uuid.UUID(str(doc_id))
    except ValueError:
        return None


def _decode(row) -> Document:
    document = json.loads(row.body)
    document[ID_FIELD] = str(row.doc_id)
    return document


def _encode(document: Document) -> str:
    return json.dumps({field: value for field, value in document.items() if field != ID_FIELD})


class _PageStream:
    """
    Bridges a paged driver ResponseFuture to awaitable pages.

    The driver re-invokes the registered callbacks for every page fetched
    with ``start_fetching_next_page()``.
    """

    def __init__(self, response_future, loop: asyncio.AbstractEventLoop):
        self._response_future = response_future
        self._loop = loop
        self._pending: asyncio.Future | None = loop.create_future()
        response_future.add_callbacks(self._on_page, self._on_error)

    def _on_page(self, rows):
        self._loop.call_soon_threadsafe(self._resolve, list(rows or []), None)

    def _on_error(self, error):
        self._loop.call_soon_threadsafe(self._resolve, None, error)

    def _resolve(self, rows, error):
        if self._pending is None or self._pending.done():
            return
        if error is not None:
            self._pending.set_exception(error)
        else:
            self._pending.set_result(rows)

    async def next_page(self) -> list | None:
        """Return the next page of rows, or None once the scan is exhausted."""
        if self._pending is None:
            if not self._response_future.has_more_pages:
                return None
            self._pending = self._loop.create_future()
            self._response_future.start_fetching_next_page()
        try:
            return await self._pending
        finally:
            self._pending = None


class ScyllaDocumentCursor(DocumentCursor):
    """Lazy cursor paging through one collection partition."""

    def __init__(self, collection: "ScyllaDocumentCollection", query: Query):
        self._collection = collection
        self._query = query
        self._buffer: deque[Document] = deque()
        self._stream: _PageStream | None = None
        self._exhausted = False
        self.closed = False

    async def _fill(self) -> None:
        database = self._collection.database
        while not self._buffer and not self._exhausted:
            start_time = time.perf_counter()
            try:
                if self._stream is None:
                    self._stream = database.start_scan(self._collection.name)
                rows = await self._stream.next_page()
            except Exception as e:
                database.record("scan", start_time, e)
                _reraise(e, "scan")
            database.record("scan", start_time)

            if rows is None:
                self._exhausted = True
                break
            for row in rows:
                document = _decode(row)
                if matches(self._query, document):
                    self._buffer.append(document)

    async def has_next(self) -> bool:
        if self.closed:
            return False
        await self._fill()
        return bool(self._buffer)

    async def next(self) -> Document:
        if not await self.has_next():
            raise StopAsyncIteration
        return self._buffer.popleft()

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self._buffer.clear()
        self._stream = None


class ScyllaDocumentCollection(DocumentCollection):
    """One logical collection, stored as a partition of the documents table."""

    def __init__(self, database: "ScyllaDocumentDatabase", name: str):
        self.database = database
        self.name = name

    async def _get_by_id(self, doc_id: Any) -> Document | None:
        parsed = _parse_id(doc_id)
        if parsed is None:
            return None
        rows = await self.database.execute("get", (self.name, parsed))
        return _decode(rows[0]) if rows else None

    async def _matching(self, query: Query, limit: int | None = None) -> list[Document]:
        if isinstance(query.get(ID_FIELD), str):
            document = await self._get_by_id(query[ID_FIELD])
            return [document] if document is not None and matches(query, document) else []

        found = []
        async with scan(self, query) as cursor:
            async for document in cursor:
                found.append(document)
                if limit is not None and len(found) >= limit:
                    break
        return found

    async def count(self, query: Query) -> int:
        return len(await self._matching(query))

    async def find_one(self, query: Query, projection: dict[str, Any] | None = None) -> Document | None:
        found = await self._matching(query, limit=1)
        return project(found[0], projection) if found else None

    def find(self, query: Query) -> ScyllaDocumentCursor:
        return ScyllaDocumentCursor(self, query)

    async def insert_one(self, document: Document) -> str:
        doc_id = uuid.uuid1()
        await self.database.execute("insert", (self.name, doc_id, _encode(document)))
        return str(doc_id)

    async def insert_many(self, documents: list[Document]) -> list[str]:
        if not documents:
            return []
        prepared = self.database.prepared("insert")
        batch = BatchStatement(batch_type=BatchType.UNLOGGED)
        doc_ids = []
        for document in documents:
            doc_id = uuid.uuid1()
            batch.add(prepared, (self.name, doc_id, _encode(document)))
            doc_ids.append(str(doc_id))
        await self.database.execute_statement("insert_batch", batch)
        return doc_ids

    async def update_one(self, query: Query, update: dict[str, Any]) -> int:
        document = await self.find_one(query)
        if document is None:
            return 0
        updated = apply_update(document, update)
        await self.database.execute("update", (_encode(updated), self.name, _parse_id(document[ID_FIELD])))
        return 1

    async def remove(self, query: Query) -> int:
        doomed = await self._matching(query)
        if not doomed:
            return 0
        prepared = self.database.prepared("delete")
        batch = BatchStatement(batch_type=BatchType.UNLOGGED)
        for document in doomed:
            batch.add(prepared, (self.name, _parse_id(document[ID_FIELD])))
        await self.database.execute_statement("delete_batch", batch)
        return len(doomed)


class ScyllaDocumentDatabase(DocumentDatabase):
    """
    Document database on a ScyllaDB session.

    Example:
        async with ScyllaDocumentDatabase.connect(ScyllaConfig(keyspace="cache")) as database:
            engine = StorageEngine(database)
            await engine.initialize()

    The session is owned by the caller unless the database was created by
    ``connect()``, which shuts the cluster down on exit.
    """

    def __init__(
        self,
        session: Session,
        keyspace: str,
        *,
        fetch_size: int = 500,
        replication_factor: int = 1,
        metrics: EngineMetrics | None = None,
    ) -> None:
        self.session = session
        self.keyspace = keyspace
        self.fetch_size = fetch_size
        self.replication_factor = replication_factor
        self.metrics = metrics
        self._prepared_statements: dict[str, Any] = {}
        self._collections: dict[str, ScyllaDocumentCollection] = {}

    @classmethod
    @asynccontextmanager
    async def connect(
        cls,
        config: ScyllaConfig,
        *,
        retry: RetryConfig | None = None,
        metrics: EngineMetrics | None = None,
    ) -> AsyncIterator["ScyllaDocumentDatabase"]:
        """
        Connect to the cluster, run ``setup()`` and yield the database.

        Connection attempts are retried with exponential backoff; the last
        failure surfaces as StoreConnectionError.
        """
        retry = retry or RetryConfig()

        auth_provider = None
        if config.auth.enabled:
            auth_provider = PlainTextAuthProvider(username=config.auth.username, password=config.auth.password)

        default_profile = ExecutionProfile(
            load_balancing_policy=TokenAwarePolicy(DCAwareRoundRobinPolicy()),
            request_timeout=config.request_timeout,
        )
        cluster = Cluster(
            contact_points=config.contact_points,
            port=config.port,
            connection_class=AsyncioConnection,
            auth_provider=auth_provider,
            execution_profiles={EXEC_PROFILE_DEFAULT: default_profile},
        )

        loop = asyncio.get_running_loop()
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(retry.max_retries),
                wait=wait_exponential(
                    multiplier=retry.initial_delay,
                    exp_base=retry.backoff_factor,
                    max=retry.max_delay,
                ),
                retry=retry_if_exception_type((NoHostAvailable, OperationTimedOut)),
                reraise=True,
            ):
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    logger.info(f"Connecting to ScyllaDB {config.contact_points} (attempt {attempt_number})")
                    session = await loop.run_in_executor(None, cluster.connect)
        except (NoHostAvailable, OperationTimedOut, AuthenticationFailed) as e:
            await loop.run_in_executor(None, cluster.shutdown)
            raise StoreConnectionError(original_error=e) from e

        database = cls(
            session,
            config.keyspace,
            fetch_size=config.fetch_size,
            replication_factor=config.replication_factor,
            metrics=metrics,
        )
        try:
            await database.setup()
            yield database
        finally:
            await database.close()
            await loop.run_in_executor(None, cluster.shutdown)

    async def setup(self) -> None:
        """
        Create keyspace and table, then prepare statements.

        Idempotent - safe to call multiple times.
        """
        await self._execute_raw(f"""
            CREATE KEYSPACE IF NOT EXISTS {self.keyspace}
            WITH replication = {{
                'class': 'SimpleStrategy',
                'replication_factor': {self.replication_factor}
            }}
        """)
        self.session.set_keyspace(self.keyspace)

        await self._execute_raw(f"""
            CREATE TABLE IF NOT EXISTS {TABLE} (
                collection text,
                doc_id timeuuid,
                body text,
                PRIMARY KEY (collection, doc_id)
            )
        """)

        loop = asyncio.get_running_loop()
        for name, statement in _STATEMENTS.items():
            self._prepared_statements[name] = await loop.run_in_executor(
                None, self.session.prepare, statement
            )

        logger.info(f"ScyllaDB document store ready in keyspace '{self.keyspace}'")

    def collection(self, name: str) -> ScyllaDocumentCollection:
        if name not in self._collections:
            self._collections[name] = ScyllaDocumentCollection(self, name)
        return self._collections[name]

    def prepared(self, statement_name: str):
        prepared = self._prepared_statements.get(statement_name)
        if prepared is None:
            raise StorageEngineError(f"Statement '{statement_name}' not prepared. Call setup() first.")
        return prepared

    def record(self, statement_name: str, start_time: float, error: Exception | None = None) -> None:
        if self.metrics is None:
            return
        latency_ms = (time.perf_counter() - start_time) * 1000
        self.metrics.record(
            f"cql_{statement_name}",
            latency_ms,
            success=error is None,
            error_type=type(error).__name__ if error is not None else None,
        )

    def start_scan(self, collection_name: str) -> _PageStream:
        bound = self.prepared("scan").bind((collection_name,))
        bound.fetch_size = self.fetch_size
        response_future = self.session.execute_async(bound)
        return _PageStream(response_future, asyncio.get_running_loop())

    async def _await_response(self, response_future) -> list:
        loop = asyncio.get_running_loop()
        asyncio_future = loop.create_future()

        def on_success(result):
            loop.call_soon_threadsafe(asyncio_future.set_result, result)

        def on_error(error):
            loop.call_soon_threadsafe(asyncio_future.set_exception, error)

        response_future.add_callbacks(on_success, on_error)
        result = await asyncio_future
        return list(result) if result else []

    async def execute_statement(self, statement_name: str, statement, parameters: tuple | None = None) -> list:
        """Execute a statement, recording latency and translating driver errors."""
        start_time = time.perf_counter()
        try:
            rows = await self._await_response(self.session.execute_async(statement, parameters))
        except Exception as e:
            self.record(statement_name, start_time, e)
            _reraise(e, statement_name)
        self.record(statement_name, start_time)
        return rows

    async def execute(self, statement_name: str, parameters: tuple) -> list:
        return await self.execute_statement(statement_name, self.prepared(statement_name), parameters)

    async def _execute_raw(self, statement: str) -> list:
        return await self.execute_statement("ddl", statement)

    async def ping(self) -> bool:
        await self.execute_statement("ping", "SELECT now() FROM system.local")
        return True

    async def close(self) -> None:
        """Drop prepared statements and handles. The session is not shut down here."""
        self._prepared_statements.clear()
        self._collections.clear()
        logger.info(f"ScyllaDB document store closed for keyspace '{self.keyspace}'")
