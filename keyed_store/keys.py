from __future__ import annotations

import os
import re

from .errors import ValidationError

KEY_PATTERN = re.compile(r"[A-Za-z0-9_\-]+")

# Leading character kept free for internal files (temp dirs, metadata).
RESERVED_PREFIX = "_"


def is_valid_key(key: str) -> bool:
    return (
        isinstance(key, str)
        and KEY_PATTERN.fullmatch(key) is not None
        and not key.startswith(RESERVED_PREFIX)
    )


def validate_key(key: str) -> str:
    if not is_valid_key(key):
        raise ValidationError(
            f"invalid key {key!r}: keys may only contain letters, numbers, hyphens "
            f"and underscores and must not start with {RESERVED_PREFIX!r}"
        )
    return key


def check_filename(key: str) -> str:
    """Reject keys that cannot name a single file directly inside the root.

    Applies even when the key policy is disabled.
    """
    if not isinstance(key, str) or not key or key in (".", ".."):
        raise ValidationError(f"invalid key {key!r}")
    separators = {"/", "\0", os.sep}
    if os.altsep:
        separators.add(os.altsep)
    if any(sep in key for sep in separators):
        raise ValidationError(f"invalid key {key!r}: must not contain a path separator")
    return key
