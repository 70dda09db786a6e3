from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class FileStoreConfig:
    root: Path
    # Staging area for writes; defaults to a sibling of root (same volume).
    temp_dir: Optional[Path] = None

    enforce_key_policy: bool = True
    # fsync the staged file before it is renamed into place.
    fsync: bool = True
    create_dirs: bool = True

    # None waits forever for a key's lock.
    lock_timeout_s: Optional[float] = None

    def staging_dir(self) -> Path:
        if self.temp_dir is not None:
            return Path(self.temp_dir)
        root = Path(self.root)
        return root.parent / f"_{root.name}_tmp"
