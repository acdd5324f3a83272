"""Click CLI for LinkDeck."""

import asyncio
from pathlib import Path
from typing import Awaitable, Callable, Optional, TypeVar

import click
from pydantic import ValidationError
from trogon import tui

from linkdeck import __version__
from linkdeck.client import AuthorizationError, LinkDeckClient, LinkDeckError
from linkdeck.config import AVAILABLE_THEMES, EXPORT_FORMAT_OPTIONS, SETTABLE_KEYS, LinkDeckConfig
from linkdeck.forms import GroupForm, LinkForm, PasswordForm, error_messages
from linkdeck.log import setup_logging
from linkdeck.sync.engine import Completion, SyncEngine
from linkdeck.sync.session import FileStore, SessionCoordinator
from linkdeck.sync.snapshot import Snapshot

T = TypeVar("T")

NOT_SIGNED_IN = "Error: Not signed in. Run 'linkdeck login' first."
SESSION_EXPIRED = "Error: Your session has expired. Run 'linkdeck login' to sign in again."


def _coordinator() -> SessionCoordinator:
    coordinator = SessionCoordinator(FileStore())
    coordinator.restore()
    return coordinator


def _engine(admin: bool = True, confirm: Optional[Callable[[str], bool]] = None) -> SyncEngine:
    """Build an engine bound to the shared session file.

    Admin engines refuse to start without a stored credential.
    """
    config = LinkDeckConfig.load()
    coordinator = _coordinator()
    if admin and not coordinator.authenticated:
        coordinator.close()
        click.echo(NOT_SIGNED_IN, err=True)
        raise SystemExit(1)
    client = LinkDeckClient(config.server_url, coordinator)
    return SyncEngine(client, coordinator, confirm=confirm, admin=admin)


def _run(engine: SyncEngine, action: Callable[[], Awaitable[T]]) -> T:
    """Run one engine action to completion, including reorder persistence."""

    async def runner() -> T:
        try:
            return await action()
        finally:
            await engine.wait_pending()
            await engine.client.close()

    try:
        return asyncio.run(runner())
    finally:
        if engine.coordinator is not None:
            engine.coordinator.close()


def _finish(engine: SyncEngine, result: Completion, success: str) -> None:
    """Print the outcome of a handler and exit non-zero on failure."""
    if result is Completion.DONE:
        click.echo(f"✓ {success}")
    elif result is Completion.CANCELLED:
        click.echo("Cancelled.")
    elif result is Completion.UNAUTHORIZED:
        click.echo(SESSION_EXPIRED, err=True)
        raise SystemExit(1)
    else:
        click.echo(f"Error: {engine.error or 'Request failed'}", err=True)
        raise SystemExit(1)


def _loaded(engine: SyncEngine) -> Snapshot:
    """Load the snapshot or exit with the reason."""
    result = _run(engine, engine.load)
    if not result.ok:
        _finish(engine, result, "")
    return engine.snapshot


def _delete_confirm(yes: bool) -> Optional[Callable[[str], bool]]:
    if yes or not LinkDeckConfig.load().confirm_deletes:
        return None
    return lambda question: click.confirm(question, default=False)


def _validated(form_cls, **values):
    try:
        return form_cls(**values)
    except ValidationError as e:
        for message in error_messages(e):
            click.echo(f"Error: {message}", err=True)
        raise SystemExit(1)


def _print_snapshot(snapshot: Snapshot, show_ids: bool = False) -> None:
    if not snapshot.groups:
        click.echo("No link groups yet.")
        return
    for group in snapshot.groups:
        label = f"[{group.id}] {group.name}" if show_ids else group.name
        click.echo(f"\n📁 {label}")
        if not group.links:
            click.echo("    (no links)")
        for link in group.links:
            prefix = f"[{link.id}] " if show_ids else ""
            click.echo(f"    {link.position}. {prefix}{link.name} - {link.url}")
    groups, links = snapshot.counts()
    click.echo(f"\nTotal: {groups} groups, {links} links")


@tui()
@click.group()
@click.version_option(version=__version__, prog_name="linkdeck")
def cli() -> None:
    """LinkDeck - grouped bookmarks with an admin for ordering and bulk edits.

    Quick start:
        linkdeck serve            Run the store on this machine
        linkdeck login            Sign in as an admin
        linkdeck dashboard        Launch interactive TUI dashboard
        linkdeck board            Print every group and link
        linkdeck tui              Launch command explorer (Trogon)
    """
    setup_logging(LinkDeckConfig.load().log_level)


@cli.command()
def dashboard() -> None:
    """Launch the interactive TUI dashboard.

    Keyboard shortcuts:
        q - Quit
        r - Refresh
        a - Add group or link
        e - Edit selected
        d - Delete selected
        ctrl+up / ctrl+down - Move selected
        l - Login / logout
    """
    from linkdeck.tui import LinkDeckApp

    app = LinkDeckApp()
    app.run()


@cli.command()
@click.option("--host", default="127.0.0.1", help="Host to bind to")
@click.option("--port", default=8080, help="Port to bind to")
@click.option("--reload", is_flag=True, help="Enable auto-reload")
def serve(host: str, port: int, reload: bool) -> None:
    """Start the LinkDeck API server."""
    import uvicorn

    click.echo(f"Starting LinkDeck API server at http://{host}:{port}")
    click.echo("Press Ctrl+C to stop")
    uvicorn.run(
        "linkdeck.api.main:app",
        host=host,
        port=port,
        reload=reload,
    )


# =============================================================================
# Session commands
# =============================================================================


@cli.command()
@click.option("--username", "-u", prompt=True, help="Admin username")
@click.option("--password", "-p", prompt=True, hide_input=True, help="Admin password")
def login(username: str, password: str) -> None:
    """Sign in and store the token for every LinkDeck window."""
    config = LinkDeckConfig.load()
    coordinator = SessionCoordinator(FileStore())
    client = LinkDeckClient(config.server_url, coordinator)

    async def runner() -> tuple[str, str]:
        try:
            return await client.login(username, password)
        finally:
            await client.close()

    try:
        token, name = asyncio.run(runner())
    except AuthorizationError:
        click.echo("Error: Invalid username or password.", err=True)
        raise SystemExit(1)
    except LinkDeckError as e:
        click.echo(f"Error: Login failed: {e}", err=True)
        raise SystemExit(1)

    coordinator.login(token, name)
    coordinator.close()
    click.echo(f"✓ Signed in as {name}")


@cli.command()
def logout() -> None:
    """Forget the stored token. Open dashboards will show the session as expired."""
    coordinator = _coordinator()
    was_signed_in = coordinator.authenticated
    coordinator.logout()
    coordinator.close()
    click.echo("✓ Signed out" if was_signed_in else "Not signed in.")


@cli.command()
def whoami() -> None:
    """Show the signed-in user."""
    coordinator = _coordinator()
    coordinator.close()
    if coordinator.authenticated:
        click.echo(coordinator.username)
    else:
        click.echo("Not signed in.")


@cli.command()
@click.option("--old", "old_password", prompt="Current password", hide_input=True)
@click.option("--new", "new_password", prompt="New password", hide_input=True)
@click.option("--confirm", "confirm_password", prompt="Confirm new password", hide_input=True)
def passwd(old_password: str, new_password: str, confirm_password: str) -> None:
    """Change the signed-in user's password."""
    form = _validated(
        PasswordForm,
        old_password=old_password,
        new_password=new_password,
        confirm_password=confirm_password,
    )
    engine = _engine()
    result = _run(engine, lambda: engine.change_password(form))
    _finish(engine, result, "Password changed successfully")


# =============================================================================
# Public board
# =============================================================================


@cli.command()
def board() -> None:
    """Print every group and its links, in display order."""
    engine = _engine(admin=False)
    _print_snapshot(_loaded(engine))


# =============================================================================
# Group commands
# =============================================================================


@cli.group()
def groups() -> None:
    """Link group commands."""
    pass


@groups.command("list")
def groups_list() -> None:
    """List groups and links with their ids."""
    engine = _engine()
    _print_snapshot(_loaded(engine), show_ids=True)


@groups.command("add")
@click.argument("name")
@click.option("--position", type=int, default=None, help="Position (default: last)")
def groups_add(name: str, position: Optional[int]) -> None:
    """Add a link group.

    NAME: Display name of the group
    """
    engine = _engine()

    async def action() -> Completion:
        if position is None:
            loaded = await engine.load()
            if not loaded.ok:
                return loaded
        form = _validated(
            GroupForm,
            name=name,
            sort_order=len(engine.snapshot.groups) if position is None else position,
        )
        return await engine.add_group(form)

    result = _run(engine, action)
    _finish(engine, result, f"Added group: {name}")


@groups.command("edit")
@click.argument("group_id", type=int)
@click.option("--name", default=None, help="New name")
@click.option("--position", type=int, default=None, help="New position")
def groups_edit(group_id: int, name: Optional[str], position: Optional[int]) -> None:
    """Rename or reposition a group.

    GROUP_ID: Id of the group (see 'groups list')
    """
    engine = _engine()
    group = _loaded(engine).group(group_id)
    if group is None:
        click.echo(f"Error: Group {group_id} not found.", err=True)
        raise SystemExit(1)

    form = _validated(
        GroupForm,
        name=group.name if name is None else name,
        sort_order=group.position if position is None else position,
    )
    result = _run(engine, lambda: engine.update_group(group_id, form))
    _finish(engine, result, f"Updated group: {form.name}")


@groups.command("remove")
@click.argument("group_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def groups_remove(group_id: int, yes: bool) -> None:
    """Remove a group and every link in it.

    GROUP_ID: Id of the group to remove
    """
    engine = _engine(confirm=_delete_confirm(yes))
    result = _run(engine, lambda: engine.delete_group(group_id))
    _finish(engine, result, f"Removed group {group_id}")


@groups.command("move")
@click.argument("group_id", type=int)
@click.argument("position", type=int)
def groups_move(group_id: int, position: int) -> None:
    """Move a group to a new position (0 is first).

    Every group whose position changes is saved separately.
    """
    engine = _engine()
    snapshot = _loaded(engine)
    index = snapshot.group_index(group_id)
    if index is None:
        click.echo(f"Error: Group {group_id} not found.", err=True)
        raise SystemExit(1)
    if not 0 <= position < len(snapshot.groups):
        click.echo(f"Error: Position must be between 0 and {len(snapshot.groups) - 1}.", err=True)
        raise SystemExit(1)

    async def action() -> list[bool]:
        return await engine.reorder_groups(index, position)

    saved = _run(engine, action)
    _finish_move(engine, saved)
    for group in engine.snapshot.groups:
        click.echo(f"  {group.position}. {group.name}")


def _finish_move(engine: SyncEngine, saved: list[bool]) -> None:
    if all(saved):
        click.echo(f"✓ Saved {len(saved)} position change(s)")
        return
    if engine.coordinator is not None and engine.coordinator.is_expired:
        click.echo(SESSION_EXPIRED, err=True)
    else:
        click.echo(f"Error: {engine.error}", err=True)
    click.echo(
        f"  {saved.count(False)} of {len(saved)} position change(s) were not saved; "
        "the store may show a different order.",
        err=True,
    )
    raise SystemExit(1)


# =============================================================================
# Link commands
# =============================================================================


@cli.group()
def links() -> None:
    """Link commands."""
    pass


@links.command("list")
@click.argument("group_id", type=int)
def links_list(group_id: int) -> None:
    """List the links of one group."""
    engine = _engine()
    group = _loaded(engine).group(group_id)
    if group is None:
        click.echo(f"Error: Group {group_id} not found.", err=True)
        raise SystemExit(1)
    click.echo(f"\n📁 {group.name}")
    if not group.links:
        click.echo("    (no links)")
    for link in group.links:
        click.echo(f"    {link.position}. [{link.id}] {link.name} - {link.url}")


@links.command("add")
@click.argument("group_id", type=int)
@click.argument("name")
@click.argument("url")
@click.option("--position", type=int, default=None, help="Position (default: last)")
def links_add(group_id: int, name: str, url: str, position: Optional[int]) -> None:
    """Add a link to a group.

    GROUP_ID: Id of the group

    NAME: Display name

    URL: Absolute http(s) URL
    """
    engine = _engine()

    async def action() -> Completion:
        sort_order = position
        if sort_order is None:
            loaded = await engine.load()
            if not loaded.ok:
                return loaded
            group = engine.snapshot.group(group_id)
            sort_order = len(group.links) if group else 0
        form = _validated(LinkForm, name=name, url=url, sort_order=sort_order)
        return await engine.add_link(group_id, form)

    result = _run(engine, action)
    _finish(engine, result, f"Added link: {name}")


@links.command("edit")
@click.argument("link_id", type=int)
@click.option("--name", default=None, help="New name")
@click.option("--url", default=None, help="New URL")
@click.option("--group", "group_id", type=int, default=None, help="Move to this group")
@click.option("--position", type=int, default=None, help="New position")
def links_edit(
    link_id: int,
    name: Optional[str],
    url: Optional[str],
    group_id: Optional[int],
    position: Optional[int],
) -> None:
    """Edit a link, optionally moving it to another group.

    LINK_ID: Id of the link (see 'links list')
    """
    engine = _engine()
    snapshot = _loaded(engine)
    link = snapshot.link(link_id)
    if link is None:
        click.echo(f"Error: Link {link_id} not found.", err=True)
        raise SystemExit(1)

    target_group = link.group_id if group_id is None else group_id
    if position is None:
        if target_group == link.group_id:
            position = link.position
        else:
            # Append to the end of the new group
            target = snapshot.group(target_group)
            position = len(target.links) if target else 0
    form = _validated(
        LinkForm,
        name=link.name if name is None else name,
        url=link.url if url is None else url,
        sort_order=position,
    )
    result = _run(engine, lambda: engine.update_link(link_id, target_group, form))
    _finish(engine, result, f"Updated link: {form.name}")


@links.command("remove")
@click.argument("link_id", type=int)
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def links_remove(link_id: int, yes: bool) -> None:
    """Remove a link."""
    engine = _engine(confirm=_delete_confirm(yes))
    result = _run(engine, lambda: engine.delete_link(link_id))
    _finish(engine, result, f"Removed link {link_id}")


@links.command("move")
@click.argument("link_id", type=int)
@click.argument("position", type=int)
def links_move(link_id: int, position: int) -> None:
    """Move a link to a new position within its group (0 is first)."""
    engine = _engine()
    snapshot = _loaded(engine)
    located = snapshot.link_index(link_id)
    if located is None:
        click.echo(f"Error: Link {link_id} not found.", err=True)
        raise SystemExit(1)
    group_id, index = located
    group = snapshot.group(group_id)
    if not 0 <= position < len(group.links):
        click.echo(f"Error: Position must be between 0 and {len(group.links) - 1}.", err=True)
        raise SystemExit(1)

    async def action() -> list[bool]:
        return await engine.reorder_links(group_id, index, position)

    saved = _run(engine, action)
    _finish_move(engine, saved)
    for link in engine.snapshot.group(group_id).links:
        click.echo(f"  {link.position}. {link.name}")


# =============================================================================
# Bulk replace
# =============================================================================


@cli.command("export")
@click.option(
    "--format",
    "export_format",
    type=click.Choice([code for code, _ in EXPORT_FORMAT_OPTIONS]),
    default=None,
    help="File format (default: from config)",
)
@click.option(
    "--dir",
    "directory",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Target directory (default: from config, else current directory)",
)
def export_cmd(export_format: Optional[str], directory: Optional[Path]) -> None:
    """Download every group and link as one file."""
    config = LinkDeckConfig.load()
    target_dir = directory or Path(config.export_dir or ".")
    engine = _engine()
    written = _run(
        engine,
        lambda: engine.export_to(target_dir, export_format or config.export_format),
    )
    if written is None:
        if engine.coordinator is not None and engine.coordinator.is_expired:
            click.echo(SESSION_EXPIRED, err=True)
        else:
            click.echo(f"Error: {engine.error}", err=True)
        raise SystemExit(1)
    click.echo(f"✓ Exported to {written}")


@cli.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def import_cmd(path: Path, yes: bool) -> None:
    """Replace every group and link with the contents of PATH (.json or .yaml)."""
    if not yes:
        click.confirm("This replaces all existing groups and links. Continue?", abort=True)
    engine = _engine()
    result = _run(engine, lambda: engine.import_from(path))
    _finish(engine, result, engine.status or "Data imported successfully")
    groups, link_count = engine.snapshot.counts()
    click.echo(f"  {groups} groups, {link_count} links")


# =============================================================================
# Config commands
# =============================================================================


@cli.group()
def config() -> None:
    """Client settings stored in ~/.linkdeck/config.json."""
    pass


@config.command("show")
def config_show() -> None:
    """Show current settings."""
    settings = LinkDeckConfig.load()
    click.echo(f"Config file: {LinkDeckConfig.get_config_path()}")
    for key in SETTABLE_KEYS:
        click.echo(f"  {key}: {getattr(settings, key)}")


@config.command("set")
@click.argument("key", type=click.Choice(SETTABLE_KEYS))
@click.argument("value")
def config_set(key: str, value: str) -> None:
    """Change one setting."""
    settings = LinkDeckConfig.load()
    if key == "theme" and value not in {code for code, _ in AVAILABLE_THEMES}:
        click.echo(f"Warning: '{value}' is not a built-in theme.", err=True)
    try:
        settings.set_value(key, value)
    except ValueError as e:
        click.echo(f"Error: {e}", err=True)
        raise SystemExit(1)
    settings.save()
    click.echo(f"✓ {key} = {getattr(settings, key)}")


@config.command("reset")
@click.option("--yes", "-y", is_flag=True, help="Skip confirmation")
def config_reset(yes: bool) -> None:
    """Restore default settings."""
    if not yes:
        click.confirm("Reset all settings to defaults?", abort=True)
    settings = LinkDeckConfig.load()
    settings.reset()
    settings.save()
    click.echo("✓ Settings reset")


if __name__ == "__main__":
    cli()
