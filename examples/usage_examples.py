from __future__ import annotations

import tempfile
import threading
from pathlib import Path

from pydantic import BaseModel

from keyed_store import (
    FileStore,
    FileStoreConfig,
    KeyedLock,
    NotFoundError,
    PydanticSerializer,
)


class Profile(BaseModel):
    id: str
    name: str
    visits: int = 0


def basic_operations(root: Path) -> None:
    print("== Store / load / delete ==")
    store = FileStore(FileStoreConfig(root=root / "profiles"), serializer=PydanticSerializer(Profile))

    store.store("alice", Profile(id="alice", name="Alice"))
    store.store("bob", Profile(id="bob", name="Bob"))
    print("count:", store.count())
    print("load alice:", store.load("alice"))
    print("page 0:", [p.id for p in store.list(0, 1)])
    print("page 1:", [p.id for p in store.list(1, 1)])

    store.delete("bob")
    store.delete("bob")
    try:
        store.load("bob")
    except NotFoundError as exc:
        print("bob:", exc)


def shared_locks(root: Path) -> None:
    print("== Read-modify-write under one key's lock ==")
    locks = KeyedLock()
    store = FileStore(
        FileStoreConfig(root=root / "counters", fsync=False),
        serializer=PydanticSerializer(Profile),
        locks=locks,
    )
    store.store("carol", Profile(id="carol", name="Carol"))

    # Store operations nest inside a held key, so holding it across the
    # load + store keeps increments from other threads from being lost.
    def visit() -> None:
        with store.locks.locked("carol"):
            profile = store.load("carol")
            store.store("carol", profile.model_copy(update={"visits": profile.visits + 1}))

    threads = [threading.Thread(target=visit) for _ in range(10)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    print("visits:", store.load("carol").visits)
    print("lock records left:", len(locks))


if __name__ == "__main__":
    with tempfile.TemporaryDirectory() as tmp:
        basic_operations(Path(tmp))
        shared_locks(Path(tmp))
