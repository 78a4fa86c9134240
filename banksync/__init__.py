"""banksync package initialization."""

from __future__ import annotations

from .api import (
    clear,
    config_context,
    create_coordinator,
    load,
    set_config_json,
    set_data_dir,
    sync,
)
from .errors import BankSyncError

__all__ = [
    "__version__",
    "BankSyncError",
    "clear",
    "config_context",
    "create_coordinator",
    "get_version",
    "load",
    "set_config_json",
    "set_data_dir",
    "sync",
]

__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
