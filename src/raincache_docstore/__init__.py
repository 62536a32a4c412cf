"""
raincache-docstore - key-value and list storage engine on a document database.

This package provides the storage engine a caching layer persists through:
dotted keys with namespace-scoped queries, merge-on-upsert values and
idempotent lists, backed by an in-memory or ScyllaDB document database.
"""

from raincache_docstore.engine import (
    StorageEngine,
    CollectionRegistry,
)

from raincache_docstore.errors import (
    StorageEngineError,
    WrongKindError,
    NotFoundError,
    EngineNotInitializedError,
    QueryError,
    StoreConnectionError,
    StoreQueryError,
    StoreTimeoutError,
    StoreUnavailableError,
)

from raincache_docstore.documents import (
    DocumentDatabase,
    DocumentCollection,
    DocumentCursor,
    InMemoryDatabase,
    scan,
)

from raincache_docstore.namespace import (
    namespace_prefixes,
    split_partition,
)

from raincache_docstore.values import (
    ValueKind,
    classify,
    merge_value,
    values_equal,
    contains_value,
)

from raincache_docstore.records import (
    Entry,
    ListElement,
)

from raincache_docstore.config import (
    EngineConfig,
    ScyllaConfig,
    CollectionNames,
    AuthConfig,
    RetryConfig,
    SecretsManager,
    load_config_from_env,
)

from raincache_docstore.observability import (
    Tracer,
    configure_tracing,
    EngineMetrics,
)

__version__ = "1.0.0"

__all__ = [
    # Engine
    "StorageEngine",
    "CollectionRegistry",
    # Errors
    "StorageEngineError",
    "WrongKindError",
    "NotFoundError",
    "EngineNotInitializedError",
    "QueryError",
    "StoreConnectionError",
    "StoreQueryError",
    "StoreTimeoutError",
    "StoreUnavailableError",
    # Document databases
    "DocumentDatabase",
    "DocumentCollection",
    "DocumentCursor",
    "InMemoryDatabase",
    "scan",
    # Keys and values
    "namespace_prefixes",
    "split_partition",
    "ValueKind",
    "classify",
    "merge_value",
    "values_equal",
    "contains_value",
    "Entry",
    "ListElement",
    # Configuration
    "EngineConfig",
    "ScyllaConfig",
    "CollectionNames",
    "AuthConfig",
    "RetryConfig",
    "SecretsManager",
    "load_config_from_env",
    # Observability
    "Tracer",
    "configure_tracing",
    "EngineMetrics",
]
