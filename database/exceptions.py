"""Database exceptions."""


class DatabaseError(Exception):
    """Base exception for database operations."""
    pass


class DatabaseSchemaError(DatabaseError):
    """Raised when the schema cannot be created or does not match."""
    pass
