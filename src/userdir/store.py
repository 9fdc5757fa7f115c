"""RecordStore: in-memory user index backed by one JSON file.

    store = RecordStore.open("/path/to/userDB.json")
    store.insert(UserRecord.create("Jon", "Snow", "jon.snow@winterfell.com"))
    store.get("jon.snow@winterfell.com")
    store.persist()          # flush only if something changed

Locking:
    Readers (get/all/find/count) share the read side of an RWLock.
    Writers (insert/update/rekey/remove/set_fields) take the write side.
    flush() encodes a snapshot under the read side, then writes it under a
    separate I/O lock so file writes never interleave.

Only one RecordStore may own a given path. Several processes pointing at the
same file are not supported: the last flush wins.
"""

from __future__ import annotations

import contextlib
import logging
import os
import tempfile
import threading
from enum import StrEnum
from pathlib import Path
from typing import TYPE_CHECKING, Any

from userdir import codec
from userdir.errors import (
    DuplicateKeyError,
    FlushTimeoutError,
    InitializationError,
    PersistenceError,
)
from userdir.tracker import ChangeTracker

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

    from userdir.models import UserRecord

logger = logging.getLogger("userdir.store")

_DEFAULT_FLUSH_TIMEOUT = 5.0


class DuplicatePolicy(StrEnum):
    OVERWRITE = "overwrite"   # insert replaces an existing entry silently
    REJECT = "reject"         # insert raises DuplicateKeyError


# ---------------------------------------------------------------------------
# RWLock
# ---------------------------------------------------------------------------


class RWLock:
    """Writer-preferring read/write lock. Not reentrant on either side."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextlib.contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextlib.contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            try:
                while self._writer or self._readers:
                    self._cond.wait()
            finally:
                self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# ---------------------------------------------------------------------------
# RecordStore
# ---------------------------------------------------------------------------


class RecordStore:
    """Keyed index of UserRecords loaded from and flushed to ``path``."""

    def __init__(
        self,
        path: Path | str,
        *,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.OVERWRITE,
        flush_timeout: float | None = _DEFAULT_FLUSH_TIMEOUT,
    ) -> None:
        self.path = Path(path)
        self.duplicate_policy = DuplicatePolicy(duplicate_policy)
        self.flush_timeout = flush_timeout
        self._index: dict[str, UserRecord] = {}
        self._rw = RWLock()
        self._io_lock = threading.Lock()
        self._tracker = ChangeTracker()
        self._written_generation = -1

    @classmethod
    def open(
        cls,
        path: Path | str,
        *,
        duplicate_policy: DuplicatePolicy = DuplicatePolicy.OVERWRITE,
        flush_timeout: float | None = _DEFAULT_FLUSH_TIMEOUT,
    ) -> RecordStore:
        """Construct a store and load it from ``path``."""
        store = cls(path, duplicate_policy=duplicate_policy, flush_timeout=flush_timeout)
        store.load()
        return store

    # ------------------------------------------------------------------
    # Load / flush
    # ------------------------------------------------------------------

    def load(self) -> int:
        """Replace the index with the file content. Returns the record count.

        A missing file is created empty. Malformed content raises DecodeError
        and leaves the index untouched.
        """
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            logger.info("no directory file at %s, creating an empty one", self.path)
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self.path.touch()
            except OSError as e:
                msg = f"cannot create directory file {self.path}: {e}"
                raise InitializationError(msg) from e
            data = b""
        except OSError as e:
            msg = f"cannot read directory file {self.path}: {e}"
            raise InitializationError(msg) from e

        records = codec.decode(data)
        with self._rw.write():
            self._index = {r.username: r for r in records}
            generation = self._tracker.snapshot()
            self._tracker.clear(generation)
            count = len(self._index)
        logger.info("loaded %d users from %s", count, self.path)
        return count

    def flush(self) -> None:
        """Rewrite the whole file from the current index.

        Writes a temp file in the same directory, fsyncs it, then renames it
        over the target. Raises PersistenceError on I/O failure and
        FlushTimeoutError when the write outlives ``flush_timeout``.
        """
        with self._rw.read():
            # Snapshot first: a mark landing after it keeps the store dirty.
            generation = self._tracker.snapshot()
            body = codec.encode(self._index.values())

        if self.flush_timeout is None:
            self._write_generation(body, generation)
        else:
            errors: list[BaseException] = []

            def _run() -> None:
                try:
                    self._write_generation(body, generation)
                except BaseException as e:  # noqa: BLE001
                    errors.append(e)

            worker = threading.Thread(target=_run, name="userdir-flush", daemon=True)
            worker.start()
            worker.join(self.flush_timeout)
            if worker.is_alive():
                msg = f"flush of {self.path} did not finish within {self.flush_timeout}s"
                raise FlushTimeoutError(msg)
            if errors:
                raise errors[0]

        self._tracker.clear(generation)
        logger.debug("flushed generation %d to %s", generation, self.path)

    def persist(self) -> bool:
        """Flush if the index changed since the last flush. Returns True if written."""
        if not self._tracker.dirty:
            return False
        self.flush()
        return True

    def _write_generation(self, body: str, generation: int) -> None:
        with self._io_lock:
            # A newer snapshot already reached the disk.
            if generation < self._written_generation:
                return
            try:
                self._atomic_write(body)
            except OSError as e:
                logger.exception("failed to write %s", self.path)
                msg = f"cannot write directory file {self.path}: {e}"
                raise PersistenceError(msg) from e
            self._written_generation = generation

    def _atomic_write(self, body: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
        )
        tmp = Path(tmp_name)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            tmp.replace(self.path)
        except BaseException:
            with contextlib.suppress(OSError):
                tmp.unlink()
            raise

    # ------------------------------------------------------------------
    # Change tracking
    # ------------------------------------------------------------------

    @property
    def dirty(self) -> bool:
        return self._tracker.dirty

    def mark_dirty(self) -> None:
        """Flag an in-place change to an indexed record."""
        self._tracker.mark()

    # ------------------------------------------------------------------
    # Read
    # ------------------------------------------------------------------

    def get(self, key: str) -> UserRecord | None:
        with self._rw.read():
            return self._index.get(key)

    def __contains__(self, key: object) -> bool:
        with self._rw.read():
            return key in self._index

    def count(self) -> int:
        with self._rw.read():
            return len(self._index)

    def all(self) -> list[UserRecord]:
        """Snapshot of every record. Order is not guaranteed."""
        with self._rw.read():
            return list(self._index.values())

    def find(self, keyword: str) -> list[UserRecord]:
        """Records whose username, first or last name contains keyword (any case)."""
        with self._rw.read():
            return [r for r in self._index.values() if r.matches(keyword)]

    # ------------------------------------------------------------------
    # Write
    # ------------------------------------------------------------------

    def insert(self, record: UserRecord) -> None:
        """Index record under its username.

        With DuplicatePolicy.OVERWRITE an existing entry is replaced; with
        REJECT a DuplicateKeyError is raised.
        """
        with self._rw.write():
            if self.duplicate_policy is DuplicatePolicy.REJECT and record.username in self._index:
                raise DuplicateKeyError(record.username)
            self._index[record.username] = record
            self._tracker.mark()
        logger.debug("inserted %s", record.username)

    def update(self, record: UserRecord) -> bool:
        """Replace the entry at record.username if one exists.

        Never re-indexes: a record whose username was changed in place stays
        under its old key. Returns False (and changes nothing) when the key is
        absent.
        """
        with self._rw.write():
            if record.username not in self._index:
                logger.debug("update skipped, %s not indexed", record.username)
                return False
            self._index[record.username] = record
            self._tracker.mark()
        return True

    def set_fields(self, record: UserRecord, values: Mapping[str, Any]) -> None:
        """Write fields of a record in place and mark the store dirty.

        Runs under the write side so a flush never encodes a half-applied
        change. Use rekey() for the username.
        """
        if "username" in values:
            msg = "username changes go through rekey()"
            raise ValueError(msg)
        with self._rw.write():
            for name, value in values.items():
                setattr(record, name, value)
            self._tracker.mark()

    def rekey(self, old_key: str, new_key: str) -> bool:
        """Move the record at old_key to new_key and set its username.

        Returns False when old_key is absent. Raises DuplicateKeyError when
        new_key already belongs to another record.
        """
        with self._rw.write():
            record = self._index.get(old_key)
            if record is None:
                return False
            if new_key == old_key:
                record.username = new_key
                return True
            if new_key in self._index:
                raise DuplicateKeyError(new_key)
            del self._index[old_key]
            record.username = new_key
            self._index[new_key] = record
            self._tracker.mark()
        logger.info("re-keyed %s -> %s", old_key, new_key)
        return True

    def remove(self, key: str) -> bool:
        """Drop the entry at key. Returns False if there was none."""
        with self._rw.write():
            if self._index.pop(key, None) is None:
                return False
            self._tracker.mark()
        logger.debug("removed %s", key)
        return True
