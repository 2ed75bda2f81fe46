"""Structured error types for Relata."""

from __future__ import annotations

from typing import Any


class RelataError(Exception):
    """Base error for all Relata errors."""


class ValidationError(RelataError):
    """Raised when a filter or payload does not follow the input grammar."""

    def __init__(self, message: str) -> None:
        super().__init__(message)


class NotFoundError(RelataError):
    """Raised when a unique filter resolves no record."""

    def __init__(self, model_name: str, where: Any) -> None:
        self.model_name = model_name
        self.where = where
        super().__init__(f"No node for the model {model_name} with unique field {where!r}")


class ConfigurationError(RelataError):
    """Raised at schema compile time when models are inconsistent."""


class StorageBackendError(RelataError):
    """Raised when backend storage operations fail."""

    def __init__(self, operation: str, detail: str) -> None:
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage backend error during {operation}: {detail}")


class RelationBatchError(RelataError):
    """Raised when one or more operations of a concurrent relation batch fail.

    Operations that succeeded are left in place.
    """

    def __init__(self, errors: list[BaseException], succeeded: int) -> None:
        self.errors = errors
        self.succeeded = succeeded
        super().__init__(
            f"{len(errors)} relation operation(s) failed, {succeeded} succeeded: "
            + "; ".join(str(e) for e in errors)
        )
