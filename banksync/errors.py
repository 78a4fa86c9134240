"""Exception taxonomy for bank cache synchronization."""

from __future__ import annotations

from pathlib import Path


class BankSyncError(RuntimeError):
    """Base class for every banksync failure."""


class ConfigurationError(BankSyncError):
    """The bank source directory is unset or unusable."""


class SchemaError(BankSyncError):
    """Persisted cache data was written with a different schema version."""

    def __init__(self, found: int, expected: int) -> None:
        self.found = found
        self.expected = expected
        super().__init__(f"cache schema {found} does not match {expected}")


class BankOpenError(BankSyncError):
    """Raised by bank readers when a bank cannot be opened or decoded."""

    def __init__(self, path: Path | str, reason: str) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(f"{self.path}: {reason}")


class BuildError(BankSyncError):
    """A rebuild pass did not complete; the previous cache is still current."""

    retryable = False


class TransientBuildError(BuildError):
    """The build is still being written or the pass ran out of time."""

    retryable = True

    def __init__(self, message: str, *, path: Path | None = None) -> None:
        self.path = path
        super().__init__(message)


class ParseError(BuildError):
    """A bank file is corrupt or unreadable."""

    def __init__(self, path: Path | str, reason: str, message: str | None = None) -> None:
        self.path = Path(path)
        self.reason = reason
        super().__init__(message or f"{self.path}: {reason}")
