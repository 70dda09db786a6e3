from ._locks import FairLock, KeyedLock, LockRecord
from .config import FileStoreConfig
from .errors import (
    LockAcquisitionError,
    NotFoundError,
    PersistenceError,
    StoreError,
    ValidationError,
)
from .file_store import FileStore
from .keys import is_valid_key, validate_key
from .serializers import JsonSerializer, PickleSerializer, PydanticSerializer, Serializer
from .settings import StoreSettings

__all__ = [
    "FairLock",
    "KeyedLock",
    "LockRecord",
    "FileStoreConfig",
    "StoreSettings",
    "FileStore",
    "Serializer",
    "PickleSerializer",
    "JsonSerializer",
    "PydanticSerializer",
    "is_valid_key",
    "validate_key",
    "StoreError",
    "ValidationError",
    "NotFoundError",
    "PersistenceError",
    "LockAcquisitionError",
]
