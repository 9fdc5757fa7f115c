"""Per-operation view cache and the UserView handed to the host.

One SessionCache lives for one host operation. Looking the same user up twice
in that operation returns the same UserView object; the cache is dropped when
the operation ends and is never invalidated by changes made elsewhere.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from userdir.models import FAVOURITE_LINE
from userdir.transaction import FlushPolicy, TxState, UnitOfWork, WritePolicy

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

    from userdir.models import UserRecord
    from userdir.store import RecordStore
    from userdir.transaction import TransactionManager


@dataclass
class UserView:
    """Host-facing handle on one record.

    Writes go through a UnitOfWork enlisted with ``transactions`` on first
    use. The favouriteLine attribute is stored on the record only; every
    other attribute lives in ``attributes``, the host's own storage.
    """

    record: UserRecord
    store: RecordStore
    transactions: TransactionManager
    attributes: dict[str, list[str]] = field(default_factory=dict)
    flush_policy: FlushPolicy = FlushPolicy.FAIL_FAST
    write_policy: WritePolicy = WritePolicy.EAGER
    retries: int = 3
    on_rekey: Callable[[str, str], None] | None = None
    _uow: UnitOfWork | None = field(default=None, init=False, repr=False)

    @property
    def uow(self) -> UnitOfWork:
        """Open unit of work for this view, created and enlisted on demand."""
        if self._uow is None or self._uow.state is not TxState.NOT_STARTED:
            self._uow = UnitOfWork(
                self.store,
                self.record,
                flush_policy=self.flush_policy,
                write_policy=self.write_policy,
                retries=self.retries,
                on_rekey=self.on_rekey,
            )
        self.transactions.enlist(self._uow)
        return self._uow

    def _read(self, name: str) -> str | None:
        if self._uow is not None and self._uow.state is TxState.NOT_STARTED:
            return self._uow.read(name)  # type: ignore[no-any-return]
        return getattr(self.record, name)  # type: ignore[no-any-return]

    # ------------------------------------------------------------------
    # Record fields
    # ------------------------------------------------------------------

    @property
    def username(self) -> str:
        return self._read("username") or self.record.username

    @property
    def first_name(self) -> str | None:
        return self._read("first_name")

    @property
    def last_name(self) -> str | None:
        return self._read("last_name")

    @property
    def email(self) -> str | None:
        return self._read("email")

    @property
    def favourite_line(self) -> str | None:
        return self._read("favourite_line")

    def set_username(self, username: str) -> None:
        """Rename the user. The store re-keys the record (now or at commit).

        ``on_rekey`` runs only once the store has actually moved the record.
        """
        self.uow.stage("username", username)

    def set_first_name(self, first_name: str | None) -> None:
        self.uow.stage("first_name", first_name)

    def set_last_name(self, last_name: str | None) -> None:
        self.uow.stage("last_name", last_name)

    def set_email(self, email: str | None) -> None:
        self.uow.stage("email", email)

    def set_password_hash(self, password_hash: str | None) -> None:
        self.uow.stage("password", password_hash)

    # ------------------------------------------------------------------
    # Attributes
    # ------------------------------------------------------------------

    def set_attribute(self, name: str, values: list[str]) -> None:
        if name == FAVOURITE_LINE:
            self.uow.stage("favourite_line", values[0] if values else None)
            return
        self.attributes[name] = list(values)

    def set_single_attribute(self, name: str, value: str) -> None:
        self.set_attribute(name, [value])

    def remove_attribute(self, name: str) -> None:
        if name == FAVOURITE_LINE:
            self.uow.stage("favourite_line", None)
            return
        self.attributes.pop(name, None)

    def get_attribute(self, name: str) -> list[str] | None:
        values = self.attributes.get(name)
        return list(values) if values is not None else None

    def get_first_attribute(self, name: str) -> str | None:
        values = self.attributes.get(name)
        return values[0] if values else None

    def get_attributes(self) -> dict[str, list[str]]:
        return {k: list(v) for k, v in self.attributes.items()}


class SessionCache:
    """username -> UserView for the lifetime of one host operation."""

    def __init__(self) -> None:
        self._views: dict[str, UserView] = {}

    def __len__(self) -> int:
        return len(self._views)

    def __contains__(self, key: object) -> bool:
        return key in self._views

    def __iter__(self) -> Iterator[str]:
        return iter(self._views)

    def get(self, key: str) -> UserView | None:
        return self._views.get(key)

    def put(self, key: str, view: UserView) -> None:
        self._views[key] = view

    def discard(self, key: str) -> None:
        self._views.pop(key, None)

    def clear(self) -> None:
        self._views.clear()

    def find_by_record(self, record: UserRecord) -> UserView | None:
        """Cached view wrapping this exact record object, under any key."""
        for view in self._views.values():
            if view.record is record:
                return view
        return None

    def get_or_create(self, key: str, factory: Callable[[], UserView | None]) -> UserView | None:
        """Return the cached view for key, or build one with factory and cache it.

        A factory returning None (no such user) caches nothing.
        """
        view = self._views.get(key)
        if view is not None:
            return view
        view = factory()
        if view is not None:
            self._views[key] = view
        return view
