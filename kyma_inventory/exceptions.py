"""Exceptions related to kyma-inventory."""

__all__ = [
    "InventoryException",
    "InputException",
    "CommandException",
    "HelmException",
    "StoreError",
    "ObjectNotFoundError",
    "AlreadyExistsError",
    "ConflictError",
    "ConstructionError",
    "TransientError",
]


class InventoryException(Exception):
    """Generic base exception used for this library."""


class InputException(InventoryException):
    """Raised when the input files or values are not formatted as expected."""


class CommandException(InventoryException):
    """Raised when there is a failure running a subcommand."""


class HelmException(CommandException):
    """Raised when there is a failure loading or rendering a helm chart."""


class StoreError(InventoryException):
    """Raised when a store operation fails."""


class ObjectNotFoundError(StoreError):
    """Raised when an object is not found in the store."""


class AlreadyExistsError(StoreError):
    """Raised when creating an object that already exists in the store."""


class ConflictError(StoreError):
    """Raised when an update is made against a stale resource version."""

    def __init__(self, resource_name: str, expected: int, actual: int) -> None:
        super().__init__(
            f"Conflict updating {resource_name}: resource version {expected} "
            f"is stale (current {actual})"
        )
        self.resource_name = resource_name
        self.expected = expected
        self.actual = actual


class ConstructionError(InventoryException):
    """Raised when a child object cannot be built from its parent.

    This is not retryable and requires a change to the parent spec.
    """


class TransientError(InventoryException):
    """Raised when a reconcile pass failed and should be retried after a fixed delay."""

    def __init__(self, message: str, requeue_after: float) -> None:
        super().__init__(message)
        self.requeue_after = requeue_after
