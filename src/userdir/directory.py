"""Host-facing façade: one UserDirectory per file, one session per host operation.

    directory = UserDirectory.from_config(load_config())
    with directory.session() as s:
        user = s.get_by_username("jon.snow@winterfell.com")
        user.set_first_name("Aegon")
    # clean exit: commit enlisted units of work, persist if dirty
    # exception: roll back (logging only under the eager write policy)
"""

from __future__ import annotations

import contextlib
import logging
import threading
from typing import TYPE_CHECKING

from userdir.bootstrap import seed_demo_users
from userdir.config import DirectoryConfig, StoreConfig
from userdir.credentials import PASSWORD, hash_credential, is_configured_for, validate
from userdir.models import UserRecord
from userdir.query import QueryEngine, format_storage_id, parse_storage_id
from userdir.session import SessionCache, UserView
from userdir.store import RecordStore
from userdir.transaction import TransactionManager

if TYPE_CHECKING:
    from collections.abc import Iterator, Mapping

logger = logging.getLogger("userdir.directory")


class UserDirectory:
    """Owns the store and the host-side attribute storage for one directory file."""

    def __init__(self, store: RecordStore, cfg: DirectoryConfig | None = None) -> None:
        self.store = store
        self.cfg = cfg or DirectoryConfig(root=store.path.parent, store=StoreConfig(path=store.path))
        self.query = QueryEngine(
            store,
            email_policy=self.cfg.query.email_policy,
            email_domain=self.cfg.query.email_domain,
        )
        # Host-native attribute storage: username -> {name: [values]}.
        # Shared by every session; entries are added, moved and dropped
        # under _attr_lock.
        self.host_attributes: dict[str, dict[str, list[str]]] = {}
        self._attr_lock = threading.Lock()
        logger.info("directory %s ready (my_param=%s)", self.cfg.name or self.store.path, self.cfg.my_param)

    @classmethod
    def from_config(cls, cfg: DirectoryConfig) -> UserDirectory:
        """Open the configured store, seeding demo users into an empty one if enabled."""
        store = RecordStore.open(
            cfg.store_path,
            duplicate_policy=cfg.store.duplicate_policy,
            flush_timeout=cfg.store.flush_timeout,
        )
        if cfg.seed_demo_users and seed_demo_users(store):
            store.persist()
        return cls(store, cfg)

    # ------------------------------------------------------------------
    # Host attributes
    # ------------------------------------------------------------------

    def attributes_for(self, username: str) -> dict[str, list[str]]:
        with self._attr_lock:
            return self.host_attributes.setdefault(username, {})

    def drop_attributes(self, username: str) -> None:
        with self._attr_lock:
            self.host_attributes.pop(username, None)

    def move_attributes(self, old: str, new: str) -> None:
        with self._attr_lock:
            attrs = self.host_attributes.pop(old, None)
            if attrs is not None:
                self.host_attributes[new] = attrs

    @contextlib.contextmanager
    def session(self) -> Iterator[DirectorySession]:
        """One host operation: commit on a clean exit, roll back on an exception.

        The session is closed either way. When the commit fails the changes
        stay in memory with the store dirty; ``store.persist()`` retries them.
        """
        s = DirectorySession(self)
        try:
            yield s
        except BaseException:
            s.rollback()
            s.close(persist=False)
            raise
        try:
            s.commit()
        except BaseException:
            s.close(persist=False)
            raise
        s.close()


class DirectorySession:
    """Everything one host operation sees: a view cache and a transaction list."""

    def __init__(self, directory: UserDirectory) -> None:
        self.directory = directory
        self.store = directory.store
        self.query = directory.query
        self.cache = SessionCache()
        self.transactions = TransactionManager()
        self.closed = False

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_by_id(self, storage_id: str) -> UserView | None:
        """Look up by host storage id (``f:<component>:<username>``)."""
        return self.get_by_username(parse_storage_id(storage_id))

    def get_by_username(self, username: str) -> UserView | None:
        return self.cache.get_or_create(username, lambda: self._create_view(username))

    def get_by_email(self, email: str) -> UserView | None:
        return self.get_by_username(self.query.email_to_key(email))

    def storage_id(self, view: UserView) -> str:
        return format_storage_id(self.directory.cfg.component_id, view.username)

    def _create_view(self, username: str) -> UserView | None:
        logger.debug("cache miss for %s, reading store", username)
        record = self.store.get(username)
        if record is None:
            return None
        existing = self.cache.find_by_record(record)
        if existing is not None:
            return existing
        return self._view_for(record)

    def _view_for(self, record: UserRecord) -> UserView:
        cfg = self.directory.cfg.transaction
        return UserView(
            record=record,
            store=self.store,
            transactions=self.transactions,
            attributes=self.directory.attributes_for(record.username),
            flush_policy=cfg.flush_policy,
            write_policy=cfg.write_policy,
            retries=cfg.retries,
            on_rekey=self._rekeyed,
        )

    def _rekeyed(self, old: str, new: str) -> None:
        view = self.cache.get(old)
        if view is not None:
            self.cache.discard(old)
            self.cache.put(new, view)
        self.directory.move_attributes(old, new)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def count(self) -> int:
        return self.store.count()

    def _views(self, records: list[UserRecord]) -> list[UserView]:
        views = []
        for record in records:
            view = self.get_by_username(record.username)
            if view is not None:   # removed since the snapshot
                views.append(view)
        return views

    def list_users(self, offset: int = 0, limit: int | None = None) -> list[UserView]:
        return self._views(self.query.page(offset, limit))

    def search(self, keyword: str, offset: int = 0, limit: int | None = None) -> list[UserView]:
        return self._views(self.query.search(keyword, offset, limit))

    def search_params(
        self, params: Mapping[str, str], offset: int = 0, limit: int | None = None
    ) -> list[UserView]:
        return self._views(self.query.search_params(params, offset, limit))

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_user(self, username: str) -> UserView:
        """Insert a bare record right away; it reaches the file on commit or close."""
        logger.info("adding user %s", username)
        record = UserRecord(username=username, password=username)
        self.store.insert(record)
        view = self._view_for(record)
        self.cache.put(username, view)
        return view

    def remove_user(self, username: str) -> bool:
        """Remove and persist immediately. PersistenceError reaches the caller."""
        logger.info("removing user %s", username)
        removed = self.store.remove(username)
        self.cache.discard(username)
        self.directory.drop_attributes(username)
        if removed:
            self.store.persist()
        return removed

    def rename_user(self, old: str, new: str) -> UserView | None:
        """Rename through the view's unit of work.

        The cache entry and host attributes follow the record once the store
        has re-keyed it: right away under the eager write policy, at commit
        under the deferred one. A rolled-back rename moves nothing.
        """
        view = self.get_by_username(old)
        if view is None:
            return None
        view.set_username(new)
        return view

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    def is_configured_for(self, username: str, kind: str = PASSWORD) -> bool:
        record = self.store.get(username)
        return record is not None and is_configured_for(record, kind)

    def is_valid(self, username: str, plaintext: str, kind: str = PASSWORD) -> bool:
        record = self.store.get(username)
        if record is None:
            return False
        return validate(record, kind, plaintext)

    def set_password(self, username: str, plaintext: str) -> bool:
        view = self.get_by_username(username)
        if view is None:
            return False
        view.set_password_hash(hash_credential(plaintext))
        return True

    # ------------------------------------------------------------------
    # Completion
    # ------------------------------------------------------------------

    def commit(self) -> None:
        self.transactions.commit()

    def rollback(self) -> None:
        self.transactions.rollback()

    def close(self, *, persist: bool = True) -> None:
        """End the operation: persist leftover changes, drop the view cache."""
        if self.closed:
            return
        self.closed = True
        try:
            if persist and self.store.dirty:
                logger.info("persisting user data changes at close")
                self.store.persist()
        finally:
            self.cache.clear()
