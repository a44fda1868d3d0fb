"""Custom exceptions for database operations."""

from typing import Optional


class DatabaseError(Exception):
    """Base exception for database errors."""
    pass


class DatabaseConnectionError(DatabaseError):
    """Database connection failed."""
    pass


class DatabaseConstraintError(DatabaseError):
    """Constraint violation (duplicate daily instance, foreign key, etc)."""
    pass


class DatabaseOperationError(DatabaseError):
    """A read or write against a table failed."""
    pass


class EntityNotFoundError(DatabaseError):
    """Requested row not found, or a write matched zero rows."""

    def __init__(self, message: str, entity: Optional[str] = None, entity_id: Optional[str] = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id


class ValidationError(DatabaseError):
    """Invalid input rejected before reaching the database."""
    pass
