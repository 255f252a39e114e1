"""Provider interfaces for lxrestore."""
from __future__ import annotations

from .lxc import LxcError, LxcProvider
from .storage import ObjectStat, ObjectStorage

__all__ = [
    "LxcError",
    "LxcProvider",
    "ObjectStat",
    "ObjectStorage",
]
