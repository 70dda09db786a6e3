from __future__ import annotations

import logging
import threading
from collections import deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional, TypeVar

from .errors import LockAcquisitionError

log = logging.getLogger(__name__)

T = TypeVar("T")


class FairLock:
    """Reentrant exclusive lock that admits waiters in the order they queued.

    ``threading.Lock`` makes no ordering promise, so a busy key could starve a
    waiter. Here each acquirer takes a ticket and waits until it is at the head
    of the queue and the lock is free. The owning thread may acquire again
    without queueing; it must release once per acquire.
    """

    _REENTER = object()

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._queue: deque[object] = deque()
        self._owner: Optional[int] = None
        self._depth = 0

    def ticket(self) -> object:
        """Join the wait queue and return the token to pass to :meth:`wait`."""
        with self._cond:
            if self._owner == threading.get_ident():
                return self._REENTER
            token = object()
            self._queue.append(token)
        return token

    def wait(self, token: object, timeout: Optional[float] = None) -> bool:
        with self._cond:
            if token is self._REENTER:
                self._depth += 1
                return True
            try:
                acquired = self._cond.wait_for(
                    lambda: self._owner is None and self._queue[0] is token, timeout
                )
            except BaseException:
                self._withdraw(token)
                raise
            if not acquired:
                self._withdraw(token)
                return False
            self._queue.popleft()
            self._owner = threading.get_ident()
            self._depth = 1
            return True

    def acquire(self, timeout: Optional[float] = None) -> bool:
        return self.wait(self.ticket(), timeout)

    def release(self) -> None:
        with self._cond:
            if self._owner != threading.get_ident():
                raise RuntimeError("cannot release un-acquired FairLock")
            self._depth -= 1
            if self._depth == 0:
                self._owner = None
                self._cond.notify_all()

    def locked(self) -> bool:
        with self._cond:
            return self._owner is not None

    def _withdraw(self, token: object) -> None:
        # caller holds self._cond
        self._queue.remove(token)
        self._cond.notify_all()

    def __enter__(self) -> FairLock:
        self.acquire()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


@dataclass
class LockRecord:
    key: str
    lock: FairLock = field(default_factory=FairLock)
    # operations holding or waiting for this key
    refs: int = 0


class KeyedLock:
    """Per-key mutex with reference-counted cleanup.

    Keeps a map of key -> LockRecord. A record is created the first time a key
    is used and removed as soon as the last operation referencing it finishes,
    so the map is empty whenever nothing is in flight.

    The registry guard only protects the map. It is never held while waiting
    for a key or while running work, so unrelated keys never block each other.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._records: dict[str, LockRecord] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._records)

    def active_keys(self) -> list[str]:
        with self._guard:
            return list(self._records)

    def refs(self, key: str) -> int:
        with self._guard:
            record = self._records.get(key)
            return record.refs if record is not None else 0

    @contextmanager
    def locked(self, key: str, *, timeout: Optional[float] = None) -> Iterator[None]:
        """Hold the exclusive lock for ``key`` for the duration of the block.

        ``timeout`` of None waits forever. Otherwise LockAcquisitionError is
        raised if the lock could not be taken in time; the reference taken for
        the wait is still given back.
        """
        record, token = self._register(key)
        acquired = False
        try:
            acquired = record.lock.wait(token, timeout)
            if not acquired:
                log.warning("timed out after %ss waiting for lock on key %r", timeout, key)
                raise LockAcquisitionError(key, timeout)
            yield
        finally:
            self._unregister(record)
            if acquired:
                record.lock.release()

    def run_exclusive(
        self, key: str, work: Callable[[], T], *, timeout: Optional[float] = None
    ) -> T:
        with self.locked(key, timeout=timeout):
            return work()

    def _register(self, key: str) -> tuple[LockRecord, object]:
        with self._guard:
            record = self._records.get(key)
            if record is None:
                record = LockRecord(key)
                self._records[key] = record
                log.debug("created lock record for key %r", key)
            record.refs += 1
            # Ticket taken under the guard: FIFO follows registration order.
            token = record.lock.ticket()
        return record, token

    def _unregister(self, record: LockRecord) -> None:
        with self._guard:
            record.refs -= 1
            if record.refs == 0 and self._records.get(record.key) is record:
                del self._records[record.key]
                log.debug("removed lock record for key %r", record.key)
