"""Database exceptions."""


class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when schema loading or migration fails."""
    pass


class PersistenceError(DatabaseError):
    """Raised when the store rejects a write.

    Callers in the ingestion paths log this and leave the detection
    unprocessed so a later pass retries it.
    """

    def __init__(self, message: str, operation: str = None):
        self.operation = operation
        super().__init__(f"{operation}: {message}" if operation else message)
