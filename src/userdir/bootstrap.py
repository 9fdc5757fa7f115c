"""Bootstrap: put a few demo users into an empty directory."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from userdir.models import UserRecord

if TYPE_CHECKING:
    from userdir.store import RecordStore

logger = logging.getLogger("userdir.bootstrap")

DEMO_USERS: list[tuple[str, str, str, str]] = [
    ("Jon", "Snow", "jon.snow@winterfell.com", "There is only one war that matters"),
    ("Tyrion", "Lannister", "tyrion.lannister@casterlyrock.com", "I drink and I know things"),
    ("Ygritte", "Snow", "Ygritte@wild.com", "You know nothing"),
]


def seed_demo_users(store: RecordStore) -> list[str]:
    """Insert the demo users if the store is empty. Returns the inserted usernames.

    Nothing is flushed; the caller decides when to persist.
    """
    if store.count() > 0:
        return []
    logger.info("directory is empty, seeding %d demo users", len(DEMO_USERS))
    inserted: list[str] = []
    for first, last, email, line in DEMO_USERS:
        record = UserRecord.create(first, last, email, line)
        store.insert(record)
        inserted.append(record.username)
    return inserted
