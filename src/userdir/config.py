"""DirectoryConfig: project-local config for a file-backed user directory.

Default layout (relative to the directory root):

    userdir.toml          # config
    userDB.json           # the user file (override with [store] path)

userdir.toml example:

    [directory]
    name = "my-directory"
    provider_id = "file-user-storage-provider"
    component_id = "local"
    my_param = "some value"

    [store]
    path = "userDB.json"
    duplicate_policy = "overwrite"   # overwrite | reject
    flush_timeout = 5.0              # seconds, 0 = no timeout

    [transaction]
    flush_policy = "fail_fast"       # fail_fast | retry | log
    write_policy = "eager"           # eager | deferred
    retries = 3

    [query]
    email_policy = "alias"           # alias | strip_domain
    email_domain = "@flyer.com"

    [bootstrap]
    seed_demo_users = false

USERDIR_STORE_PATH in the environment overrides [store] path.
"""

from __future__ import annotations

import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from userdir.errors import ConfigError
from userdir.query import DEFAULT_EMAIL_DOMAIN, EmailPolicy
from userdir.store import DuplicatePolicy
from userdir.transaction import FlushPolicy, WritePolicy

_CONFIG_FILENAME = "userdir.toml"
_DEFAULT_STORE_PATH = "userDB.json"
_DEFAULT_PROVIDER_ID = "file-user-storage-provider"
_STORE_PATH_ENV = "USERDIR_STORE_PATH"

_E = TypeVar("_E", DuplicatePolicy, FlushPolicy, WritePolicy, EmailPolicy)


@dataclass
class StoreConfig:
    path: Path = field(default_factory=lambda: Path(_DEFAULT_STORE_PATH))
    duplicate_policy: DuplicatePolicy = DuplicatePolicy.OVERWRITE
    flush_timeout: float | None = 5.0


@dataclass
class TransactionConfig:
    flush_policy: FlushPolicy = FlushPolicy.FAIL_FAST
    write_policy: WritePolicy = WritePolicy.EAGER
    retries: int = 3


@dataclass
class QueryConfig:
    email_policy: EmailPolicy = EmailPolicy.ALIAS
    email_domain: str = DEFAULT_EMAIL_DOMAIN


@dataclass
class DirectoryConfig:
    """Resolved configuration for one user directory."""

    root: Path                      # directory that contains userdir.toml
    name: str = ""
    provider_id: str = _DEFAULT_PROVIDER_ID
    component_id: str = "local"
    my_param: str = "some value"    # informational only
    store: StoreConfig = field(default_factory=StoreConfig)
    transaction: TransactionConfig = field(default_factory=TransactionConfig)
    query: QueryConfig = field(default_factory=QueryConfig)
    seed_demo_users: bool = False

    @property
    def store_path(self) -> Path:
        return self.store.path


def _enum(cls: type[_E], section: dict[str, Any], key: str, default: _E) -> _E:
    raw = section.get(key, default.value)
    try:
        return cls(str(raw).lower())
    except ValueError as e:
        choices = ", ".join(m.value for m in cls)
        msg = f"invalid {key} {raw!r} in {_CONFIG_FILENAME} (expected one of: {choices})"
        raise ConfigError(msg) from e


def load_config(root: Path | str | None = None) -> DirectoryConfig:
    """Load userdir.toml from root (or search upward from cwd if root is None)."""
    root_path = _find_root(Path(root) if root else Path.cwd())
    config_path = root_path / _CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                raw = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            msg = f"cannot parse {config_path}: {e}"
            raise ConfigError(msg) from e

    dir_section = raw.get("directory", {})
    store_section = raw.get("store", {})
    tx_section = raw.get("transaction", {})
    query_section = raw.get("query", {})
    boot_section = raw.get("bootstrap", {})

    store_rel = os.environ.get(_STORE_PATH_ENV) or store_section.get("path", _DEFAULT_STORE_PATH)
    timeout = float(store_section.get("flush_timeout", 5.0))

    return DirectoryConfig(
        root=root_path,
        name=dir_section.get("name", root_path.name),
        provider_id=dir_section.get("provider_id", _DEFAULT_PROVIDER_ID),
        component_id=str(dir_section.get("component_id", "local")),
        my_param=str(dir_section.get("my_param", "some value")),
        store=StoreConfig(
            path=root_path / Path(store_rel).expanduser(),
            duplicate_policy=_enum(DuplicatePolicy, store_section, "duplicate_policy", DuplicatePolicy.OVERWRITE),
            flush_timeout=timeout if timeout > 0 else None,
        ),
        transaction=TransactionConfig(
            flush_policy=_enum(FlushPolicy, tx_section, "flush_policy", FlushPolicy.FAIL_FAST),
            write_policy=_enum(WritePolicy, tx_section, "write_policy", WritePolicy.EAGER),
            retries=int(tx_section.get("retries", 3)),
        ),
        query=QueryConfig(
            email_policy=_enum(EmailPolicy, query_section, "email_policy", EmailPolicy.ALIAS),
            email_domain=query_section.get("email_domain", DEFAULT_EMAIL_DOMAIN),
        ),
        seed_demo_users=bool(boot_section.get("seed_demo_users", False)),
    )


def _find_root(start: Path) -> Path:
    """Walk upward from start looking for userdir.toml."""
    for directory in (start, *start.parents):
        if (directory / _CONFIG_FILENAME).exists():
            return directory
    return start


def init_config(root: Path, name: str | None = None, *, seed: bool = False) -> Path:
    """Write a default userdir.toml at root. Raises if already exists."""
    config_path = root / _CONFIG_FILENAME
    if config_path.exists():
        msg = f"{_CONFIG_FILENAME} already exists at {config_path}"
        raise FileExistsError(msg)

    directory_name = name or root.name
    content = f"""\
[directory]
name = "{directory_name}"
# provider_id = "{_DEFAULT_PROVIDER_ID}"
# component_id = "local"
# my_param = "some value"   # informational only

[store]
path = "{_DEFAULT_STORE_PATH}"
# duplicate_policy = "overwrite"   # or "reject": insert fails on an existing username
# flush_timeout = 5.0              # seconds; 0 disables the timeout

# [transaction]
# flush_policy = "fail_fast"   # fail_fast | retry | log
# write_policy = "eager"       # eager | deferred
# retries = 3

# [query]
# email_policy = "alias"       # alias | strip_domain
# email_domain = "{DEFAULT_EMAIL_DOMAIN}"

[bootstrap]
seed_demo_users = {"true" if seed else "false"}
"""
    config_path.write_text(content)
    return config_path
