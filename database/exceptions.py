"""Database exceptions."""

from errors import ConflictError

class DatabaseError(Exception):
    """Base exception for database failures."""
    pass

class DatabaseSchemaError(DatabaseError):
    """Raised when schema loading, validation or migration fails."""
    pass

class DuplicateRowError(DatabaseError, ConflictError):
    """Raised when an insert or update violates a unique constraint."""
    def __init__(self, table: str, columns=None, message: str = None):
        self.table = table
        self.columns = tuple(columns or ())
        super().__init__(
            message or f"Duplicate row in {table}"
            + (f" on ({', '.join(self.columns)})" if self.columns else "")
        )
