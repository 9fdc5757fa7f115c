"""userdir CLI — user directory backed by a single JSON file.

Commands:
    userdir init [NAME]            create userdir.toml + an empty user file
    userdir add EMAIL              add a user keyed by its lower-cased email
    userdir show USERNAME          dump one user
    userdir list                   page through all users
    userdir search KEYWORD         substring search on username / names
    userdir set USERNAME FIELD V   change one field
    userdir rename OLD NEW         re-key a user
    userdir passwd USERNAME        set a password
    userdir check USERNAME         validate a password
    userdir remove USERNAME        delete a user
    userdir seed                   add demo users to an empty directory
    userdir status                 file, counts and policies
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import TYPE_CHECKING

import click

from userdir.bootstrap import seed_demo_users
from userdir.config import DirectoryConfig, init_config, load_config
from userdir.directory import UserDirectory
from userdir.errors import UserDirError
from userdir.models import FAVOURITE_LINE

if TYPE_CHECKING:
    from userdir.session import UserView

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_cfg() -> DirectoryConfig:
    try:
        return load_config()
    except Exception as exc:
        raise click.ClickException(str(exc)) from exc


def _open(cfg: DirectoryConfig | None = None) -> UserDirectory:
    try:
        return UserDirectory.from_config(cfg or _load_cfg())
    except UserDirError as exc:
        raise click.ClickException(str(exc)) from exc


def _format_user(view: UserView) -> str:
    name = " ".join(p for p in (view.first_name, view.last_name) if p)
    line = f"{view.username}"
    if name:
        line += f"  {name}"
    if view.email and view.email != view.username:
        line += f"  <{view.email}>"
    return line


# ---------------------------------------------------------------------------
# Root group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(package_name="userdir")
@click.option("--verbose", "-v", is_flag=True, help="Log store and transaction activity to stderr")
def cli(verbose: bool) -> None:
    """userdir — file-backed user directory."""
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s %(name)s %(levelname)s %(message)s")


# ---------------------------------------------------------------------------
# userdir init / seed
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("name", required=False)
@click.option("--dir", "root", default=".", show_default=True, help="Directory root")
@click.option("--seed", is_flag=True, help="Seed demo users into an empty file")
def init(name: str | None, root: str, seed: bool) -> None:
    """Create userdir.toml and the user file in the given directory."""
    root_path = Path(root).resolve()
    try:
        config_path = init_config(root_path, name=name, seed=seed)
        click.echo(f"Created {config_path}")
    except FileExistsError:
        click.echo("userdir.toml already exists — skipping init")

    directory = _open(load_config(root_path))
    click.echo(f"User file : {directory.store.path}")
    click.echo(f"Users     : {directory.store.count()}")


@cli.command()
def seed() -> None:
    """Add the demo users if the directory is empty."""
    directory = _open()
    added = seed_demo_users(directory.store)
    if not added:
        click.echo("Directory is not empty — nothing seeded")
        return
    try:
        directory.store.persist()
    except UserDirError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Seeded: {', '.join(added)}")


# ---------------------------------------------------------------------------
# userdir add / set / rename / remove
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("email")
@click.option("--first", "first_name", default=None, help="First name")
@click.option("--last", "last_name", default=None, help="Last name")
@click.option("--line", "favourite_line", default=None, help="Favourite line (custom attribute)")
@click.option("--username", default=None, help="Username (default: lower-cased email)")
def add(
    email: str,
    first_name: str | None,
    last_name: str | None,
    favourite_line: str | None,
    username: str | None,
) -> None:
    """Add a user.

    \b
    userdir add jon.snow@winterfell.com --first Jon --last Snow
    """
    directory = _open()
    key = username or email.lower()
    try:
        with directory.session() as s:
            view = s.add_user(key)
            view.set_email(email)
            view.set_first_name(first_name)
            view.set_last_name(last_name)
            if favourite_line is not None:
                view.set_attribute(FAVOURITE_LINE, [favourite_line])
    except UserDirError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(key)


_SETTABLE = {
    "first-name": "set_first_name",
    "last-name": "set_last_name",
    "email": "set_email",
    "favourite-line": None,
}


@cli.command("set")
@click.argument("username")
@click.argument("field", type=click.Choice(sorted(_SETTABLE)))
@click.argument("value")
def set_field(username: str, field: str, value: str) -> None:
    """Change one field of a user."""
    directory = _open()
    try:
        with directory.session() as s:
            view = s.get_by_username(username)
            if view is None:
                raise click.ClickException(f"User not found: {username}")
            setter = _SETTABLE[field]
            if setter is None:
                view.set_attribute(FAVOURITE_LINE, [value])
            else:
                getattr(view, setter)(value)
    except UserDirError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Updated {field} of {username}")


@cli.command()
@click.argument("old")
@click.argument("new")
def rename(old: str, new: str) -> None:
    """Change a user's username (re-keys the record)."""
    directory = _open()
    try:
        with directory.session() as s:
            if s.rename_user(old, new) is None:
                raise click.ClickException(f"User not found: {old}")
    except UserDirError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Renamed {old} -> {new}")


@cli.command()
@click.argument("username")
def remove(username: str) -> None:
    """Delete a user."""
    directory = _open()
    try:
        with directory.session() as s:
            removed = s.remove_user(username)
    except UserDirError as exc:
        raise click.ClickException(str(exc)) from exc
    if not removed:
        raise click.ClickException(f"User not found: {username}")
    click.echo(f"Removed {username}")


# ---------------------------------------------------------------------------
# userdir passwd / check
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True, confirmation_prompt=True)
def passwd(username: str, password: str) -> None:
    """Set a user's password (stored as a sha256 hash)."""
    directory = _open()
    try:
        with directory.session() as s:
            if not s.set_password(username, password):
                raise click.ClickException(f"User not found: {username}")
    except UserDirError as exc:
        raise click.ClickException(str(exc)) from exc
    click.echo(f"Password set for {username}")


@cli.command()
@click.argument("username")
@click.option("--password", prompt=True, hide_input=True)
def check(username: str, password: str) -> None:
    """Validate a password. Exits 1 when it does not match."""
    directory = _open()
    with directory.session() as s:
        ok = s.is_valid(username, password)
    click.echo("valid" if ok else "invalid")
    if not ok:
        raise SystemExit(1)


# ---------------------------------------------------------------------------
# userdir show / list / search
# ---------------------------------------------------------------------------


@cli.command()
@click.argument("username")
def show(username: str) -> None:
    """Show one user (password hidden)."""
    directory = _open()
    with directory.session() as s:
        view = s.get_by_username(username)
        if view is None:
            raise click.ClickException(f"User not found: {username}")
        click.echo(f"username       : {view.username}")
        click.echo(f"id             : {s.storage_id(view)}")
        click.echo(f"first name     : {view.first_name or ''}")
        click.echo(f"last name      : {view.last_name or ''}")
        click.echo(f"email          : {view.email or ''}")
        click.echo(f"favourite line : {view.favourite_line or ''}")
        click.echo(f"password set   : {'yes' if s.is_configured_for(username) else 'no'}")


@cli.command("list")
@click.option("--offset", "-o", default=0, show_default=True, help="Skip first N users")
@click.option("--limit", "-l", default=20, show_default=True, help="Max users to list (0 = all)")
def list_users(offset: int, limit: int) -> None:
    """List users ordered by username."""
    directory = _open()
    with directory.session() as s:
        views = s.list_users(offset, limit or None)
        for view in views:
            click.echo(_format_user(view))
        total = s.count()
    if offset + len(views) < total:
        click.echo(f"... {total - offset - len(views)} more (use --offset)", err=True)


@cli.command()
@click.argument("keyword")
@click.option("--offset", "-o", default=0, show_default=True)
@click.option("--limit", "-l", default=20, show_default=True, help="Max users (0 = all)")
def search(keyword: str, offset: int, limit: int) -> None:
    """Case-insensitive search on username, first and last name."""
    directory = _open()
    with directory.session() as s:
        views = s.search(keyword, offset, limit or None)
        if not views:
            click.echo("No matches")
            return
        for view in views:
            click.echo(_format_user(view))


# ---------------------------------------------------------------------------
# userdir status
# ---------------------------------------------------------------------------


@cli.command()
def status() -> None:
    """Show the user file, counts and configured policies."""
    from rich.console import Console
    from rich.table import Table

    cfg = _load_cfg()
    directory = _open(cfg)
    console = Console()

    table = Table(title=f"userdir — {cfg.name}", show_header=True, header_style="bold")
    table.add_column("Metric", style="dim", no_wrap=True)
    table.add_column("Value", justify="right")

    from importlib.metadata import version as _pkg_version
    try:
        _ver = _pkg_version("userdir")
    except Exception:
        _ver = "unknown"
    table.add_row("Version", _ver)
    table.add_row("Config", str(cfg.root / "userdir.toml"))
    table.add_row("Provider", f"{cfg.provider_id} ({cfg.component_id})")
    table.add_row("", "")

    path = directory.store.path
    st = path.stat()
    age_s = int(time.time() - st.st_mtime)
    if age_s < 120:
        age = f"{age_s}s ago"
    elif age_s < 3600:
        age = f"{age_s // 60}m ago"
    else:
        age = f"{age_s // 3600}h ago"
    table.add_row("User file", f"{path}  ({age})  [{st.st_size / 1000:.1f} kB]")
    users = directory.store.all()
    table.add_row("Users", str(len(users)))
    no_password = sum(1 for u in users if u.password is None or u.password == u.username)
    if no_password:
        table.add_row("  No password", f"[yellow]⚠ {no_password}[/yellow]")
    table.add_row("", "")

    table.add_row("Duplicates", cfg.store.duplicate_policy.value)
    timeout = cfg.store.flush_timeout
    table.add_row("Flush timeout", f"{timeout:g}s" if timeout else "[dim]none[/dim]")
    table.add_row("Flush policy", cfg.transaction.flush_policy.value)
    table.add_row("Write policy", cfg.transaction.write_policy.value)
    table.add_row("Email lookup", cfg.query.email_policy.value)
    table.add_row("my_param", cfg.my_param)

    console.print(table)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def main() -> None:
    cli(standalone_mode=True)


if __name__ == "__main__":
    main()
