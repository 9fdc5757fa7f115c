"""Deferred-commit unit of work for user record changes.

A UnitOfWork wraps one record for the length of a host operation:

    uow = UnitOfWork(store, record)
    manager.enlist(uow)             # once; later enlist calls are no-ops
    uow.stage("first_name", "Jon")
    manager.commit()                # apply staged writes, flush the store

Write policies:
    EAGER     stage() writes the record immediately and marks the store
              dirty. rollback() only logs: there is nothing to undo with.
    DEFERRED  stage() buffers the write; commit() applies the buffer and
              rollback() drops it.

Flush policies (what commit does when the flush fails):
    FAIL_FAST raise PersistenceError to the caller
    RETRY     retry with a short linear backoff, then raise
    LOG       log the failure and carry on (changes live in memory only)
"""

from __future__ import annotations

import logging
import time
from enum import StrEnum
from typing import TYPE_CHECKING, Any

from userdir.errors import PersistenceError, TransactionStateError, UserDirError

if TYPE_CHECKING:
    from collections.abc import Callable

    from userdir.models import UserRecord
    from userdir.store import RecordStore

logger = logging.getLogger("userdir.transaction")

# Record fields a unit of work may write.
MUTABLE_FIELDS = frozenset(
    {"username", "first_name", "last_name", "email", "password", "favourite_line"}
)


class TxState(StrEnum):
    NOT_STARTED = "not_started"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


class FlushPolicy(StrEnum):
    FAIL_FAST = "fail_fast"
    RETRY = "retry"
    LOG = "log"


class WritePolicy(StrEnum):
    EAGER = "eager"
    DEFERRED = "deferred"


class UnitOfWork:
    """Pending change to one record, committed or rolled back exactly once."""

    def __init__(
        self,
        store: RecordStore,
        record: UserRecord,
        *,
        flush_policy: FlushPolicy = FlushPolicy.FAIL_FAST,
        write_policy: WritePolicy = WritePolicy.EAGER,
        retries: int = 3,
        retry_delay: float = 0.05,
        on_rekey: Callable[[str, str], None] | None = None,
    ) -> None:
        self.store = store
        self.record = record
        self.flush_policy = FlushPolicy(flush_policy)
        self.write_policy = WritePolicy(write_policy)
        self.retries = retries
        self.retry_delay = retry_delay
        self.state = TxState.NOT_STARTED
        self.pending: dict[str, Any] = {}
        # Called with (old, new) once the store has re-keyed the record.
        self.on_rekey = on_rekey

    def __repr__(self) -> str:
        return f"UnitOfWork({self.record.username!r}, state={self.state.value})"

    # ------------------------------------------------------------------
    # Staging
    # ------------------------------------------------------------------

    def stage(self, field: str, value: Any) -> None:
        """Write a record field according to the write policy."""
        if field not in MUTABLE_FIELDS:
            msg = f"not a record field: {field}"
            raise ValueError(msg)
        self._require_open("stage")

        if self.write_policy is WritePolicy.DEFERRED:
            self.pending[field] = value
            return

        if field == "username":
            self._rekey(value)
        else:
            self.store.set_fields(self.record, {field: value})

    def read(self, field: str) -> Any:
        """Current value of a field, staged writes included."""
        if field in self.pending:
            return self.pending[field]
        return getattr(self.record, field)

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def commit(self) -> None:
        """Apply staged writes and flush the store if anything changed.

        The state becomes COMMITTED before flushing: a flush failure leaves
        the change in memory, and ``store.persist()`` can be retried later.
        """
        self._require_open("commit")
        if not self.pending and not self.store.dirty:
            self.state = TxState.COMMITTED
            logger.debug("nothing to commit for %s", self.record.username)
            return

        logger.info("committing changes for %s", self.record.username)
        self._apply_pending()
        self.store.update(self.record)
        self.state = TxState.COMMITTED
        self._flush()

    def rollback(self) -> None:
        self._require_open("rollback")
        self.state = TxState.ROLLED_BACK
        if self.write_policy is WritePolicy.EAGER:
            logger.info(
                "rolling back %s: eager writes stay applied (logging only, no recovery)",
                self.record.username,
            )
            return
        logger.info("rolling back %s: dropping %d staged writes", self.record.username, len(self.pending))
        self.pending.clear()

    def _apply_pending(self) -> None:
        if not self.pending:
            return
        staged = dict(self.pending)
        new_key = staged.pop("username", None)
        if new_key is not None and new_key != self.record.username:
            # Raises DuplicateKeyError with the buffer still intact.
            self._rekey(new_key)
        self.pending.clear()
        if staged:
            self.store.set_fields(self.record, staged)

    def _rekey(self, new_key: str) -> None:
        old_key = self.record.username
        if self.store.rekey(old_key, new_key) and old_key != new_key and self.on_rekey is not None:
            self.on_rekey(old_key, new_key)

    def _flush(self) -> None:
        attempts = 1 + max(0, self.retries) if self.flush_policy is FlushPolicy.RETRY else 1
        for attempt in range(1, attempts + 1):
            try:
                self.store.flush()
                return
            except PersistenceError:
                if self.flush_policy is FlushPolicy.LOG:
                    logger.exception(
                        "flush failed, changes for %s are in memory only", self.record.username
                    )
                    return
                if attempt >= attempts:
                    raise
                logger.warning("flush attempt %d/%d failed, retrying", attempt, attempts)
                time.sleep(self.retry_delay * attempt)

    def _require_open(self, action: str) -> None:
        if self.state is not TxState.NOT_STARTED:
            msg = f"cannot {action} {self!r}"
            raise TransactionStateError(msg)


class TransactionManager:
    """Host-side list of units of work enlisted for one operation."""

    def __init__(self) -> None:
        self._units: list[UnitOfWork] = []

    def __len__(self) -> int:
        return len(self._units)

    def __contains__(self, uow: object) -> bool:
        return any(u is uow for u in self._units)

    def enlist(self, uow: UnitOfWork) -> bool:
        """Add uow if it has not started and is not already enlisted."""
        if uow.state is not TxState.NOT_STARTED or uow in self:
            return False
        self._units.append(uow)
        return True

    def commit(self) -> None:
        """Commit every open unit in enlistment order.

        Every unit gets its turn; the first error is re-raised afterwards.
        """
        units, self._units = self._units, []
        first_error: UserDirError | None = None
        for uow in units:
            if uow.state is not TxState.NOT_STARTED:
                continue
            try:
                uow.commit()
            except UserDirError as e:
                logger.exception("commit failed for %r", uow)
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def rollback(self) -> None:
        units, self._units = self._units, []
        for uow in units:
            if uow.state is TxState.NOT_STARTED:
                uow.rollback()
