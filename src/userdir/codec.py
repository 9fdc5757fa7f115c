"""Encode and decode the directory file.

The file is a single JSON array, one object per user:

    [
      {"username": "jon.snow@winterfell.com", "firstName": "Jon",
       "lastName": "Snow", "email": "jon.snow@winterfell.com",
       "password": "...", "favouriteLine": "There is only one war that matters"}
    ]

An empty (or whitespace-only) file decodes to no records.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from userdir.errors import DecodeError
from userdir.models import UserRecord

if TYPE_CHECKING:
    from collections.abc import Iterable


def decode(data: bytes | str) -> list[UserRecord]:
    """Parse file content into records. Raises DecodeError on malformed input."""
    try:
        text = data.decode("utf-8") if isinstance(data, bytes) else data
        if not text.strip():
            return []
        raw = json.loads(text)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        msg = f"directory file is not valid JSON: {e}"
        raise DecodeError(msg) from e

    if not isinstance(raw, list):
        msg = f"directory file must hold a JSON array, got {type(raw).__name__}"
        raise DecodeError(msg)

    records: list[UserRecord] = []
    for i, obj in enumerate(raw):
        if not isinstance(obj, dict):
            msg = f"entry {i} is not an object"
            raise DecodeError(msg)
        try:
            records.append(UserRecord.from_dict(obj))
        except ValueError as e:
            msg = f"entry {i}: {e}"
            raise DecodeError(msg) from e
    return records


def encode(records: Iterable[UserRecord]) -> str:
    """Serialise records as the full file body (sorted by username)."""
    ordered = sorted(records, key=lambda r: r.username)
    return json.dumps([r.to_dict() for r in ordered], indent=2, ensure_ascii=False) + "\n"
