"""Password credential check: sha256 of the plaintext against the stored hash."""

from __future__ import annotations

import hashlib
import hmac
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from userdir.models import UserRecord

PASSWORD = "password"


def hash_credential(plaintext: str) -> str:
    return hashlib.sha256(plaintext.encode()).hexdigest()


def supports(kind: str) -> bool:
    return kind == PASSWORD


def is_configured_for(record: UserRecord, kind: str) -> bool:
    return supports(kind) and record.password is not None


def validate(record: UserRecord, kind: str, plaintext: str) -> bool:
    """True when kind is a password and hash(plaintext) equals the stored value.

    A record still carrying its username placeholder never validates, since
    the placeholder is not a hash.
    """
    if not supports(kind) or record.password is None:
        return False
    return hmac.compare_digest(record.password, hash_credential(plaintext))
