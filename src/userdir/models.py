"""Data models for the file-backed user directory."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Any

# Persisted field name for the one custom attribute kept only in the flat file.
FAVOURITE_LINE = "favouriteLine"

# dataclass attribute -> persisted JSON key
FIELD_NAMES: dict[str, str] = {
    "username": "username",
    "first_name": "firstName",
    "last_name": "lastName",
    "email": "email",
    "password": "password",
    "favourite_line": FAVOURITE_LINE,
}


@dataclass
class UserRecord:
    """A single user entry from the directory file.

    ``username`` is the primary key: the store indexes the record under it.
    Changing it in place does not re-index the record; use
    ``RecordStore.rekey`` for that.
    """

    username: str
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    password: str | None = None        # credential hash, or username as a placeholder
    favourite_line: str | None = None  # custom attribute

    @classmethod
    def create(
        cls,
        first_name: str,
        last_name: str,
        email: str,
        favourite_line: str | None = None,
    ) -> UserRecord:
        """Build a record keyed by its lower-cased email.

        The password starts out as the username placeholder until a real
        credential hash is set.
        """
        username = email.lower()
        return cls(
            username=username,
            first_name=first_name,
            last_name=last_name,
            email=email,
            password=username,
            favourite_line=favourite_line,
        )

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> UserRecord:
        username = d.get("username")
        if not isinstance(username, str) or not username:
            msg = f"record without a username: {d!r}"
            raise ValueError(msg)
        return cls(
            username=username,
            first_name=d.get("firstName"),
            last_name=d.get("lastName"),
            email=d.get("email"),
            password=d.get("password"),
            favourite_line=d.get(FAVOURITE_LINE),
        )

    def to_dict(self) -> dict[str, Any]:
        return {FIELD_NAMES[f.name]: getattr(self, f.name) for f in fields(self)}

    def copy(self) -> UserRecord:
        return UserRecord(**{f.name: getattr(self, f.name) for f in fields(self)})

    def matches(self, keyword: str) -> bool:
        """Case-insensitive substring match on username, first and last name."""
        query = keyword.casefold()
        return any(
            value is not None and query in value.casefold()
            for value in (self.username, self.first_name, self.last_name)
        )
