"""Byte encodings for stored objects.

The store only needs ``dumps(obj) -> bytes`` and ``loads(data) -> obj``. Decode
failures are reported as PersistenceError so callers can tell a corrupt file
apart from a missing one.
"""

from __future__ import annotations

import json
import pickle
from typing import Any, Generic, Protocol, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as ModelValidationError

from .errors import PersistenceError

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)


class Serializer(Protocol[T]):
    def dumps(self, obj: T) -> bytes: ...

    def loads(self, data: bytes) -> T: ...


class PickleSerializer:
    def __init__(self, protocol: int = pickle.HIGHEST_PROTOCOL) -> None:
        self._protocol = protocol

    def dumps(self, obj: Any) -> bytes:
        try:
            return pickle.dumps(obj, protocol=self._protocol)
        except (pickle.PicklingError, TypeError, AttributeError) as exc:
            raise PersistenceError(f"cannot pickle {type(obj).__name__}: {exc}") from exc

    def loads(self, data: bytes) -> Any:
        try:
            return pickle.loads(data)
        except Exception as exc:
            # Damaged pickles fail with almost any builtin error (OverflowError
            # on a bad FRAME length, MemoryError, KeyError, struct.error, ...).
            raise PersistenceError(f"corrupt pickle data: {exc}") from exc


class JsonSerializer:
    def __init__(self, *, sort_keys: bool = True) -> None:
        self._sort_keys = sort_keys

    def dumps(self, obj: Any) -> bytes:
        try:
            return json.dumps(obj, sort_keys=self._sort_keys).encode("utf-8")
        except (TypeError, ValueError) as exc:
            raise PersistenceError(f"value is not JSON serializable: {exc}") from exc

    def loads(self, data: bytes) -> Any:
        try:
            return json.loads(data.decode("utf-8"))
        except (ValueError, RecursionError) as exc:
            raise PersistenceError(f"corrupt JSON data: {exc}") from exc


class PydanticSerializer(Generic[M]):
    """Stores instances of a single pydantic model class as JSON."""

    def __init__(self, model: type[M]) -> None:
        self._model = model

    def dumps(self, obj: M) -> bytes:
        if not isinstance(obj, self._model):
            raise PersistenceError(
                f"expected {self._model.__name__}, got {type(obj).__name__}"
            )
        return obj.model_dump_json().encode("utf-8")

    def loads(self, data: bytes) -> M:
        try:
            return self._model.model_validate_json(data)
        except ModelValidationError as exc:
            raise PersistenceError(f"corrupt {self._model.__name__} data: {exc}") from exc
