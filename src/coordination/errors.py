"""Coordination errors."""


class CoordinationError(Exception):
    """Base exception for the coordination layer."""


class StoreError(CoordinationError):
    """The store is unreachable, timed out, closed or failed the request."""

    def __init__(
        self,
        message: str,
        operation: str | None = None,
        key: str | None = None,
    ):
        super().__init__(message)
        self.operation = operation
        self.key = key


class StoreConnectionError(StoreError):
    """No store endpoint could be reached at construction."""


class KeyConflict(CoordinationError):
    """Key is already registered."""

    def __init__(self, key: str):
        super().__init__(f"key {key!r} is registered")
        self.key = key


class KeyNotFound(CoordinationError):
    """Key has no value in the store."""

    def __init__(self, key: str):
        super().__init__(f"key {key!r} not found")
        self.key = key
