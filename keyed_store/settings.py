from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict

from .config import FileStoreConfig


class StoreSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KS_", case_sensitive=False, env_file=".env", extra="ignore"
    )

    root_dir: Path = Path("data/store")
    # Defaults to a sibling of root_dir.
    temp_dir: Optional[Path] = None

    enforce_key_policy: bool = True
    fsync: bool = True
    create_dirs: bool = True
    lock_timeout_s: Optional[float] = None

    log_level: str = "INFO"

    def to_config(self) -> FileStoreConfig:
        return FileStoreConfig(
            root=self.root_dir,
            temp_dir=self.temp_dir,
            enforce_key_policy=self.enforce_key_policy,
            fsync=self.fsync,
            create_dirs=self.create_dirs,
            lock_timeout_s=self.lock_timeout_s,
        )
