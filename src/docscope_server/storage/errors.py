"""Repository error types raised by the storage adapters

The engine never lets these escape: it converts them to EngineError at
every operation boundary.
"""


class StorageError(Exception):
    """Base repository error"""
    def __init__(
        self,
        message: str,
        code: str | None = None,
        cause: Exception | None = None,
        collection: str | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.cause = cause
        self.collection = collection


class ConnectionError(StorageError):
    """Store is unreachable or not connected"""
    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message, "CONNECTION_ERROR", cause)


class QueryError(StorageError):
    """Query failed or the filter uses an unsupported operator"""
    def __init__(self, message: str, cause: Exception | None = None, collection: str | None = None):
        super().__init__(message, "QUERY_ERROR", cause, collection)


class NotFoundError(StorageError):
    """Document id does not exist in the collection"""
    def __init__(self, collection: str, id: str):
        super().__init__(f"{collection} document not found: {id}", "NOT_FOUND", collection=collection)
        self.document_id = id


class ConflictError(StorageError):
    """A document with the same id already exists"""
    def __init__(self, collection: str, id: str):
        super().__init__(f"{collection} document already exists: {id}", "CONFLICT", collection=collection)
        self.document_id = id
