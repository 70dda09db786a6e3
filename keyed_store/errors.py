from __future__ import annotations

from typing import Optional


class StoreError(Exception):
    """Base class for errors raised by the keyed store."""


class ValidationError(StoreError, ValueError):
    """A key does not satisfy the key policy."""


class NotFoundError(StoreError, LookupError):
    def __init__(self, key: str) -> None:
        super().__init__(f"no object stored under key {key!r}")
        self.key = key


class PersistenceError(StoreError):
    """Reading or writing the underlying file failed, or its data is corrupt."""


class LockAcquisitionError(StoreError):
    def __init__(self, key: str, timeout: Optional[float]) -> None:
        super().__init__(f"could not lock key {key!r} within {timeout}s")
        self.key = key
        self.timeout = timeout
