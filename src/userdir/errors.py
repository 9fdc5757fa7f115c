"""Exception hierarchy for userdir.

Lookup misses are not errors: ``get`` and friends return ``None``.
"""

from __future__ import annotations


class UserDirError(Exception):
    """Base class for every error raised by userdir."""


class InitializationError(UserDirError):
    """The store could not be built from its file."""


class DecodeError(InitializationError):
    """The directory file exists but its content is not a valid record list."""


class PersistenceError(UserDirError):
    """Writing the directory file failed. The in-memory index is unchanged."""

    retryable = True


class FlushTimeoutError(PersistenceError):
    """A flush did not finish within the configured timeout."""


class DuplicateKeyError(UserDirError):
    """A record with the same username is already indexed."""

    def __init__(self, key: str) -> None:
        super().__init__(f"duplicate username: {key}")
        self.key = key


class TransactionStateError(UserDirError):
    """Commit or rollback called on a unit of work that already finished."""


class ConfigError(UserDirError):
    """userdir.toml holds a value that cannot be used."""
