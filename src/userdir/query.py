"""Lookups over a RecordStore: key, email, keyword search, paging.

Everything here is a linear scan over a fresh snapshot except key lookup.
Pages are skip-then-take over that snapshot, sorted by username. They are
not a stable cursor: a record inserted or removed between two calls shifts
every later page.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping

    from userdir.models import UserRecord
    from userdir.store import RecordStore

# Storage ids look like "f:<component-id>:<username>".
PROVIDER_PREFIX = "f"
DEFAULT_EMAIL_DOMAIN = "@flyer.com"


class EmailPolicy(StrEnum):
    ALIAS = "alias"                  # the lower-cased email is the username
    STRIP_DOMAIN = "strip_domain"    # drop a fixed domain suffix, then key lookup


def parse_storage_id(storage_id: str) -> str:
    """Return the username part of a host storage id.

    Ids without the ``<provider>:<component>:`` prefix are returned as-is.
    Usernames may themselves contain colons.
    """
    parts = storage_id.split(":", 2)
    if len(parts) == 3:
        return parts[2]
    return storage_id


def format_storage_id(component_id: str, username: str) -> str:
    return f"{PROVIDER_PREFIX}:{component_id}:{username}"


def paginate(records: list[UserRecord], offset: int = 0, limit: int | None = None) -> list[UserRecord]:
    if offset < 0:
        msg = f"offset must be >= 0, got {offset}"
        raise ValueError(msg)
    if limit is not None and limit < 0:
        msg = f"limit must be >= 0, got {limit}"
        raise ValueError(msg)
    end = None if limit is None else offset + limit
    return records[offset:end]


class QueryEngine:
    """Read-only queries against one store."""

    def __init__(
        self,
        store: RecordStore,
        *,
        email_policy: EmailPolicy = EmailPolicy.ALIAS,
        email_domain: str = DEFAULT_EMAIL_DOMAIN,
    ) -> None:
        self.store = store
        self.email_policy = EmailPolicy(email_policy)
        self.email_domain = email_domain

    def by_key(self, key: str) -> UserRecord | None:
        return self.store.get(key)

    def email_to_key(self, email: str) -> str:
        if self.email_policy is EmailPolicy.STRIP_DOMAIN:
            return email.replace(self.email_domain, "")
        return email.lower()

    def by_email(self, email: str) -> UserRecord | None:
        return self.store.get(self.email_to_key(email))

    def page(self, offset: int = 0, limit: int | None = None) -> list[UserRecord]:
        """One page of all users, ordered by username."""
        snapshot = sorted(self.store.all(), key=lambda r: r.username)
        return paginate(snapshot, offset, limit)

    def search(self, keyword: str, offset: int = 0, limit: int | None = None) -> list[UserRecord]:
        """Users whose username, first or last name contains keyword (any case)."""
        hits = sorted(self.store.find(keyword), key=lambda r: r.username)
        return paginate(hits, offset, limit)

    def search_params(
        self, params: Mapping[str, str], offset: int = 0, limit: int | None = None
    ) -> list[UserRecord]:
        """Host parameter search: no params means everyone, else only ``username`` is honoured."""
        if not params:
            return self.page(offset, limit)
        username = params.get("username")
        if username is None:
            return []
        return self.search(username, offset, limit)
