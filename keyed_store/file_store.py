"""Filesystem-backed object store with per-key locking.

Every object lives in its own file under the store root, named after its key.
Writes are staged in a separate temp directory and moved into place with
``os.replace`` so a reader sees either the old object or the new one, never a
partial file. Keyed operations run under the key's lock from ``KeyedLock``.

Listing and counting enumerate the root without a lock and are snapshots:
objects stored or deleted while a listing runs may or may not show up.

Only one store instance (in one process) should manage a given root.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Generic, Iterator, Optional, TypeVar

from ._locks import KeyedLock
from .config import FileStoreConfig
from .errors import NotFoundError, PersistenceError
from .keys import check_filename, is_valid_key, validate_key
from .serializers import PickleSerializer, Serializer
from .settings import StoreSettings

log = logging.getLogger(__name__)

T = TypeVar("T")


class FileStore(Generic[T]):
    def __init__(
        self,
        config: FileStoreConfig,
        serializer: Optional[Serializer[T]] = None,
        locks: Optional[KeyedLock] = None,
    ) -> None:
        if config.lock_timeout_s is not None and config.lock_timeout_s <= 0:
            raise ValueError("lock_timeout_s must be > 0")

        self._cfg = config
        self._root = Path(config.root)
        self._temp_dir = config.staging_dir()
        if self._temp_dir.resolve() == self._root.resolve():
            raise ValueError("temp_dir must differ from root")

        self._serializer: Serializer[T] = serializer or PickleSerializer()
        self._locks = locks if locks is not None else KeyedLock()

        if config.create_dirs:
            try:
                self._root.mkdir(parents=True, exist_ok=True)
                self._temp_dir.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise PersistenceError(f"cannot create store directories: {exc}") from exc

    @classmethod
    def from_settings(
        cls,
        settings: Optional[StoreSettings] = None,
        serializer: Optional[Serializer[T]] = None,
        locks: Optional[KeyedLock] = None,
    ) -> FileStore[T]:
        settings = settings or StoreSettings()
        return cls(settings.to_config(), serializer=serializer, locks=locks)

    @property
    def root(self) -> Path:
        return self._root

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    @property
    def locks(self) -> KeyedLock:
        return self._locks

    def store(self, key: str, obj: T) -> None:
        """Store ``obj`` under ``key``, replacing any existing object."""
        path = self._path(key)

        def work() -> None:
            data = self._serializer.dumps(obj)
            try:
                self._write_atomic(path, data)
            except OSError as exc:
                raise PersistenceError(f"could not store {key!r}: {exc}") from exc
            log.debug("stored %r (%d bytes)", key, len(data))

        self._locks.run_exclusive(key, work, timeout=self._cfg.lock_timeout_s)

    def load(self, key: str) -> T:
        """Return the object stored under ``key``.

        Raises NotFoundError if nothing is stored under the key and
        PersistenceError if the file cannot be read or decoded.
        """
        path = self._path(key)

        def work() -> T:
            try:
                data = path.read_bytes()
            except FileNotFoundError:
                raise NotFoundError(key) from None
            except OSError as exc:
                raise PersistenceError(f"could not read {key!r}: {exc}") from exc
            return self._serializer.loads(data)

        return self._locks.run_exclusive(key, work, timeout=self._cfg.lock_timeout_s)

    def delete(self, key: str) -> None:
        """Remove the object under ``key``. Deleting a missing key is a no-op."""
        path = self._path(key)

        def work() -> None:
            try:
                path.unlink(missing_ok=True)
            except OSError as exc:
                raise PersistenceError(f"could not delete {key!r}: {exc}") from exc
            log.debug("deleted %r", key)

        self._locks.run_exclusive(key, work, timeout=self._cfg.lock_timeout_s)

    def exists(self, key: str) -> bool:
        path = self._path(key)
        return self._locks.run_exclusive(key, path.is_file, timeout=self._cfg.lock_timeout_s)

    def count(self) -> int:
        return len(self._entries())

    def iterate(self, start: int = 0, limit: int = 0) -> Iterator[T]:
        """Lazily yield up to ``limit`` objects, skipping the first ``start`` entries.

        A ``limit`` of 0 means no limit. Entries deleted between the directory
        scan and their load are skipped and do not count towards ``limit``.
        """
        if start < 0:
            raise ValueError("start must be >= 0")
        if limit < 0:
            raise ValueError("limit must be >= 0")
        return self._iterate(self._entries()[start:], limit)

    def list(self, start: int = 0, limit: int = 0) -> list[T]:
        return [obj for obj in self.iterate(start, limit)]

    def list_all(self) -> list[T]:
        return self.list(0, 0)

    def __contains__(self, key: str) -> bool:
        return self.exists(key)

    def __len__(self) -> int:
        return self.count()

    def _iterate(self, names: list[str], limit: int) -> Iterator[T]:
        taken = 0
        for name in names:
            try:
                obj = self.load(name)
            except NotFoundError:
                # Deleted after the directory scan.
                log.debug("skipping %r: removed during listing", name)
                continue
            yield obj
            taken += 1
            if limit and taken >= limit:
                return

    def _path(self, key: str) -> Path:
        if self._cfg.enforce_key_policy:
            validate_key(key)
        check_filename(key)
        return self._root / key

    def _entries(self) -> list[str]:
        try:
            with os.scandir(self._root) as it:
                names = [entry.name for entry in it if self._is_entry(entry)]
        except OSError as exc:
            raise PersistenceError(f"could not list {self._root}: {exc}") from exc
        # Sorted so that pages line up while the directory is unchanged.
        return sorted(names)

    def _is_entry(self, entry: os.DirEntry) -> bool:
        if not entry.is_file():
            return False
        if self._cfg.enforce_key_policy:
            return is_valid_key(entry.name)
        return True

    def _write_atomic(self, path: Path, data: bytes) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._temp_dir, prefix="_w.", suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                if self._cfg.fsync:
                    os.fsync(fh.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except FileNotFoundError:
                pass
            raise
