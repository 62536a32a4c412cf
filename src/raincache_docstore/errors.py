"""
Exception hierarchy for the storage engine and its document collaborators.

Engine errors (WrongKindError, NotFoundError) signal violated preconditions.
Store errors wrap failures raised by the ScyllaDB driver so callers can tell
transient conditions (timeouts, unavailable replicas) from fatal ones.
"""

import logging
from typing import Any

logger = logging.getLogger(__name__)


class StorageEngineError(Exception):
    """
    Base exception for all storage engine errors.

    Carries an optional original exception so driver failures keep
    their cause when re-raised with engine context.
    """

    def __init__(self, message: str, original_error: Exception | None = None):
        """
        Initialize engine error.

        Args:
            message: Human-readable error message
            original_error: Original exception that caused this error
        """
        super().__init__(message)
        self.original_error = original_error
        self.message = message

        if original_error:
            logger.error(
                f"{type(self).__name__}: {message}",
                exc_info=original_error,
                extra={
                    "error_type": type(original_error).__name__,
                    "error_message": str(original_error)
                }
            )
        else:
            logger.debug(f"{type(self).__name__}: {message}")

    def __str__(self) -> str:
        if self.original_error:
            return f"{self.message} (caused by {type(self.original_error).__name__}: {self.original_error})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, original_error={self.original_error!r})"


class WrongKindError(StorageEngineError):
    """
    Raised when an entry exists but has the wrong list flag.

    A list entry must never be read or written as a plain value, and a
    plain entry must never be used as a list.
    """

    def __init__(self, key: str, expected_list: bool):
        self.key = key
        self.expected_list = expected_list
        if expected_list:
            message = f"Requested object '{key}' is not a list"
        else:
            message = f"Requested object '{key}' is a list"
        super().__init__(message)


class NotFoundError(StorageEngineError):
    """Raised when a list operation targets a key with no entry."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Requested object '{key}' not found")


class EngineNotInitializedError(StorageEngineError):
    """Raised when an operation runs before initialize() resolved the collections."""

    def __init__(self, message: str = "Storage engine not initialized. Call initialize() first."):
        super().__init__(message)


class QueryError(StorageEngineError):
    """
    Raised when a document query or update uses an unsupported operator.

    The collaborators understand field equality, ``$in`` and ``$set`` only.
    """

    def __init__(self, message: str, query: Any = None):
        self.query = query
        if query is not None:
            message = f"{message} [Query: {str(query)[:100]}]"
        super().__init__(message)


class StoreConnectionError(StorageEngineError):
    """
    Raised when connection to the cluster fails or no hosts are available.

    This is a fatal error that usually requires checking:
    - Network connectivity
    - ScyllaDB cluster status
    - Contact points configuration
    """

    def __init__(self, message: str = "Failed to connect to ScyllaDB cluster", original_error: Exception | None = None):
        super().__init__(message, original_error)


class StoreQueryError(StorageEngineError):
    """
    Raised when a CQL statement fails due to server-side issues.

    Includes coordination failures, read/write failures and rejected requests.
    """

    def __init__(self, message: str, original_error: Exception | None = None, statement: str | None = None):
        self.statement = statement
        if statement:
            message = f"{message} [Statement: {statement[:100]}...]"
        super().__init__(message, original_error)


class StoreTimeoutError(StorageEngineError):
    """
    Raised when a statement times out.

    Often transient; retrying is left to the caller.
    """

    def __init__(
        self,
        message: str = "Operation timed out",
        original_error: Exception | None = None,
        operation_type: str | None = None
    ):
        self.operation_type = operation_type
        if operation_type:
            message = f"{message} (operation={operation_type})"
        super().__init__(message, original_error)


class StoreUnavailableError(StorageEngineError):
    """
    Raised when required replicas are unavailable.

    Not enough live replicas exist to satisfy the consistency level.
    """

    def __init__(
        self,
        message: str = "Required replicas unavailable",
        original_error: Exception | None = None,
        consistency_level: str | None = None,
        required_replicas: int | None = None,
        alive_replicas: int | None = None
    ):
        self.consistency_level = consistency_level
        self.required_replicas = required_replicas
        self.alive_replicas = alive_replicas

        details = []
        if consistency_level:
            details.append(f"consistency={consistency_level}")
        if required_replicas is not None and alive_replicas is not None:
            details.append(f"required={required_replicas}, alive={alive_replicas}")

        if details:
            message = f"{message} ({', '.join(details)})"

        super().__init__(message, original_error)
