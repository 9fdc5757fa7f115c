"""File-backed user directory: one JSON file as source of truth, an in-memory index on top.

Layout:
    userdir.toml          # config
    userDB.json           # [{"username": ..., "firstName": ..., "lastName": ...,
                          #   "email": ..., "password": ..., "favouriteLine": ...}, ...]

Reads come from the in-memory index. Writes change the index and reach the
file through RecordStore.flush(), a whole-file rewrite via temp file + rename.
A host operation works through a DirectorySession: a per-operation view cache
plus the units of work committed when the operation ends.
"""

from userdir.config import DirectoryConfig, init_config, load_config
from userdir.directory import DirectorySession, UserDirectory
from userdir.errors import (
    ConfigError,
    DecodeError,
    DuplicateKeyError,
    FlushTimeoutError,
    InitializationError,
    PersistenceError,
    TransactionStateError,
    UserDirError,
)
from userdir.models import UserRecord
from userdir.query import EmailPolicy, QueryEngine
from userdir.session import SessionCache, UserView
from userdir.store import DuplicatePolicy, RecordStore
from userdir.transaction import FlushPolicy, TransactionManager, TxState, UnitOfWork, WritePolicy

__all__ = [
    "ConfigError",
    "DecodeError",
    "DirectoryConfig",
    "DirectorySession",
    "DuplicateKeyError",
    "DuplicatePolicy",
    "EmailPolicy",
    "FlushPolicy",
    "FlushTimeoutError",
    "InitializationError",
    "PersistenceError",
    "QueryEngine",
    "RecordStore",
    "SessionCache",
    "TransactionManager",
    "TransactionStateError",
    "TxState",
    "UnitOfWork",
    "UserDirError",
    "UserDirectory",
    "UserRecord",
    "UserView",
    "WritePolicy",
    "init_config",
    "load_config",
]
