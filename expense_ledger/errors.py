"""
Ledger Error Kinds

Every business-rule failure is raised as one of the typed errors below by
the component that detects it. Nothing in the core catches and rewrites
another component's error; the orchestration boundary is the only place
that decides how an error is shown to a user.

StorageError lives in its own hierarchy on purpose: an I/O failure in the
backend must never be mistaken for a rule violation such as a duplicate.
"""

from typing import Any, Optional


class LedgerError(Exception):
    """Base class for business-rule failures."""

    code = "LEDGER_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message}


class NotFoundError(LedgerError):
    """Referenced entity is absent or not owned by the caller."""

    code = "NOT_FOUND"

    def __init__(
        self,
        entity: str,
        key: Any,
        message: Optional[str] = None,
    ):
        super().__init__(message or f"{entity} not found: {key}")
        self.entity = entity
        self.key = key


class DuplicateResourceError(LedgerError):
    """A uniqueness invariant would be violated."""

    code = "DUPLICATE_RESOURCE"

    def __init__(
        self,
        entity: str,
        key: Any,
        message: Optional[str] = None,
    ):
        super().__init__(message or f"{entity} already exists: {key}")
        self.entity = entity
        self.key = key


class ConflictError(LedgerError):
    """Optimistic version mismatch: another writer changed the row first."""

    code = "CONFLICT"

    def __init__(
        self,
        entity: str,
        key: Any,
        expected_version: Optional[int] = None,
        actual_version: Optional[int] = None,
    ):
        super().__init__(
            f"{entity} {key} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version}); "
            "reload it and try again"
        )
        self.entity = entity
        self.key = key
        self.expected_version = expected_version
        self.actual_version = actual_version


class InvalidArgumentError(LedgerError):
    """Input passed shape validation but breaks a domain rule."""

    code = "INVALID_ARGUMENT"


class UnauthenticatedError(LedgerError):
    """No verified caller identity was supplied."""

    code = "UNAUTHENTICATED"

    def __init__(self, message: str = "A verified caller identity is required"):
        super().__init__(message)


class StorageError(Exception):
    """Unexpected failure inside the storage backend."""
    pass


class StorageConnectionError(StorageError):
    """Could not connect to the storage backend."""
    pass
