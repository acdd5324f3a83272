"""Main LinkDeck TUI application."""

import webbrowser
from pathlib import Path
from typing import Optional

from pydantic import ValidationError
from textual import events, on, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import (
    Button,
    DataTable,
    Footer,
    Header,
    Input,
    Label,
    Select,
    Static,
    TabbedContent,
    TabPane,
    Tree,
)

from linkdeck.client import AuthorizationError, LinkDeckClient, LinkDeckError
from linkdeck.config import LinkDeckConfig
from linkdeck.forms import GroupForm, LinkForm, PasswordForm, error_messages
from linkdeck.log import get_log_path, setup_logging
from linkdeck.sync.engine import Completion, SyncEngine
from linkdeck.sync.ordering import Group, Link
from linkdeck.sync.session import FileStore, SessionCoordinator, SharedStore

SESSION_EXPIRED_MESSAGE = "Your session has expired. Please log in again."

DIALOG_CSS = """
    align: center middle;
}

.dialog {
    width: 64;
    height: auto;
    padding: 1 2;
    background: $surface;
    border: solid $primary;
}

.dialog .title {
    text-style: bold;
    margin-bottom: 1;
}

.dialog Input, .dialog Select {
    margin: 0 0 1 0;
}

.dialog .form-errors {
    color: $error;
    height: auto;
}

.dialog Horizontal {
    height: auto;
    margin-top: 1;
    align: right middle;
}

.dialog Button {
    margin-left: 1;
}
"""


# =============================================================================
# Dialogs
# =============================================================================


class ConfirmDialog(ModalScreen[bool]):
    """Yes/no question before a destructive action."""

    CSS = "ConfirmDialog {" + DIALOG_CSS + "\n#confirm-dialog { border: solid $error; }"

    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def __init__(self, message: str, confirm_label: str = "Delete", **kwargs):
        super().__init__(**kwargs)
        self.message = message
        self.confirm_label = confirm_label

    def compose(self) -> ComposeResult:
        with Vertical(id="confirm-dialog", classes="dialog"):
            yield Label(self.message, classes="title")
            with Horizontal():
                yield Button("Cancel", id="cancel-btn")
                yield Button(self.confirm_label, id="confirm-btn", variant="error")

    @on(Button.Pressed, "#confirm-btn")
    def on_confirm(self) -> None:
        self.dismiss(True)

    @on(Button.Pressed, "#cancel-btn")
    def on_cancel(self) -> None:
        self.dismiss(False)

    def action_cancel(self) -> None:
        self.dismiss(False)


class FormScreen(ModalScreen):
    """Base for dialogs that validate a form before closing.

    Subclasses build the form in :meth:`build`; validation errors are shown
    inline and the dialog stays open.
    """

    BINDINGS = [Binding("escape", "cancel", "Cancel")]

    def show_errors(self, messages: list[str]) -> None:
        self.query_one(".form-errors", Static).update("\n".join(messages))

    def build(self):
        raise NotImplementedError

    @on(Button.Pressed, "#save-btn")
    @on(Input.Submitted)
    def on_save(self) -> None:
        try:
            result = self.build()
        except ValidationError as e:
            self.show_errors(error_messages(e))
            return
        except ValueError as e:
            self.show_errors([str(e)])
            return
        self.dismiss(result)

    @on(Button.Pressed, "#cancel-btn")
    def on_cancel(self) -> None:
        self.dismiss(None)

    def action_cancel(self) -> None:
        self.dismiss(None)


def _int_field(value: str, default: int) -> int:
    value = value.strip()
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"Position must be a whole number, got {value!r}")


class GroupFormScreen(FormScreen):
    """Add or edit a link group."""

    CSS = "GroupFormScreen {" + DIALOG_CSS

    def __init__(self, group: Optional[Group] = None, default_position: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.group = group
        self.default_position = group.position if group else default_position

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label("Edit Group" if self.group else "Add Group", classes="title")
            yield Input(
                value=self.group.name if self.group else "",
                placeholder="Group name",
                id="group-name",
            )
            yield Input(
                value=str(self.default_position),
                placeholder="Position",
                id="group-position",
            )
            yield Static("", classes="form-errors")
            with Horizontal():
                yield Button("Cancel", id="cancel-btn")
                yield Button("Save", id="save-btn", variant="primary")

    def build(self) -> GroupForm:
        return GroupForm(
            name=self.query_one("#group-name", Input).value,
            sort_order=_int_field(
                self.query_one("#group-position", Input).value, self.default_position
            ),
        )


class LinkFormScreen(FormScreen):
    """Add or edit a link; the group can be changed when editing."""

    CSS = "LinkFormScreen {" + DIALOG_CSS

    def __init__(
        self,
        groups: list[Group],
        group_id: int,
        link: Optional[Link] = None,
        default_position: int = 0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.groups = groups
        self.group_id = group_id
        self.link = link
        self.default_position = link.position if link else default_position

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label("Edit Link" if self.link else "Add Link", classes="title")
            yield Select(
                [(group.name, group.id) for group in self.groups],
                value=self.group_id,
                allow_blank=False,
                id="link-group",
            )
            yield Input(value=self.link.name if self.link else "", placeholder="Name", id="link-name")
            yield Input(
                value=self.link.url if self.link else "",
                placeholder="https://example.com",
                id="link-url",
            )
            yield Input(value=str(self.default_position), placeholder="Position", id="link-position")
            yield Static("", classes="form-errors")
            with Horizontal():
                yield Button("Cancel", id="cancel-btn")
                yield Button("Save", id="save-btn", variant="primary")

    def build(self) -> tuple[int, LinkForm]:
        form = LinkForm(
            name=self.query_one("#link-name", Input).value,
            url=self.query_one("#link-url", Input).value,
            sort_order=_int_field(
                self.query_one("#link-position", Input).value, self.default_position
            ),
        )
        return int(self.query_one("#link-group", Select).value), form


class LoginScreen(FormScreen):
    """Username and password prompt."""

    CSS = "LoginScreen {" + DIALOG_CSS

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label("Login", classes="title")
            yield Input(placeholder="Username", id="login-username")
            yield Input(placeholder="Password", password=True, id="login-password")
            yield Static("", classes="form-errors")
            with Horizontal():
                yield Button("Cancel", id="cancel-btn")
                yield Button("Login", id="save-btn", variant="primary")

    def build(self) -> tuple[str, str]:
        username = self.query_one("#login-username", Input).value.strip()
        password = self.query_one("#login-password", Input).value
        if not username or not password:
            raise ValueError("Username and password are required")
        return username, password


class PasswordScreen(FormScreen):
    """Change password dialog."""

    CSS = "PasswordScreen {" + DIALOG_CSS

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label("Change Password", classes="title")
            yield Input(placeholder="Current password", password=True, id="old-password")
            yield Input(placeholder="New password", password=True, id="new-password")
            yield Input(placeholder="Confirm new password", password=True, id="confirm-password")
            yield Static("", classes="form-errors")
            with Horizontal():
                yield Button("Cancel", id="cancel-btn")
                yield Button("Change", id="save-btn", variant="primary")

    def build(self) -> PasswordForm:
        return PasswordForm(
            old_password=self.query_one("#old-password", Input).value,
            new_password=self.query_one("#new-password", Input).value,
            confirm_password=self.query_one("#confirm-password", Input).value,
        )


class PathScreen(FormScreen):
    """Ask for a file or directory path."""

    CSS = "PathScreen {" + DIALOG_CSS

    def __init__(self, title: str, value: str = "", action_label: str = "OK", **kwargs):
        super().__init__(**kwargs)
        self.title_text = title
        self.value = value
        self.action_label = action_label

    def compose(self) -> ComposeResult:
        with Vertical(classes="dialog"):
            yield Label(self.title_text, classes="title")
            yield Input(value=self.value, placeholder="Path", id="path-input")
            yield Static("", classes="form-errors")
            with Horizontal():
                yield Button("Cancel", id="cancel-btn")
                yield Button(self.action_label, id="save-btn", variant="primary")

    def build(self) -> Path:
        value = self.query_one("#path-input", Input).value.strip()
        if not value:
            raise ValueError("A path is required")
        return Path(value).expanduser()


# =============================================================================
# Widgets
# =============================================================================


class SessionExpiredBanner(Horizontal):
    """Shown when the session was ended elsewhere or rejected by the server."""

    DEFAULT_CSS = """
    SessionExpiredBanner {
        height: 3;
        padding: 0 1;
        background: $warning-darken-2;
        align: left middle;
        display: none;
    }

    SessionExpiredBanner #banner-message {
        width: 1fr;
        content-align: left middle;
    }

    SessionExpiredBanner Button {
        margin-left: 1;
        min-width: 5;
    }
    """

    def compose(self) -> ComposeResult:
        yield Static(f"⚠ {SESSION_EXPIRED_MESSAGE}", id="banner-message")
        yield Button("Go to Login", id="btn-banner-login", variant="primary")
        yield Button("×", id="btn-banner-dismiss")


# =============================================================================
# App
# =============================================================================


class LinkDeckApp(App):
    """Grouped bookmarks board with an admin panel."""

    TITLE = "LinkDeck"

    CSS = """
    #admin-layout {
        height: 1fr;
    }

    #groups-panel {
        width: 2fr;
    }

    #links-panel {
        width: 3fr;
    }

    .panel-title {
        text-style: bold;
        padding: 0 1;
        background: $primary-darken-2;
    }

    #admin-status {
        height: auto;
        padding: 0 1;
        color: $text-muted;
    }

    #admin-status.error {
        color: $error;
    }

    #board-tree {
        height: 1fr;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit", show=True),
        Binding("r", "refresh", "Refresh", show=True),
        Binding("a", "add", "Add", show=True),
        Binding("e", "edit", "Edit", show=True),
        Binding("d", "delete", "Delete", show=True),
        Binding("ctrl+up", "move_up", "Move Up", show=True),
        Binding("ctrl+down", "move_down", "Move Down", show=True),
        Binding("l", "login", "Login/Logout", show=True),
        Binding("p", "change_password", "Password", show=False),
        Binding("x", "export", "Export", show=False),
        Binding("i", "import", "Import", show=False),
    ]

    def __init__(
        self,
        config: Optional[LinkDeckConfig] = None,
        store: Optional[SharedStore] = None,
    ):
        super().__init__()
        self._config = config or LinkDeckConfig.load()
        setup_logging(self._config.log_level, get_log_path())
        self.theme = self._config.theme

        self.store = store if store is not None else FileStore()
        self.coordinator = SessionCoordinator(self.store)
        self.client = LinkDeckClient(self._config.server_url, self.coordinator)
        self.board_engine = SyncEngine(self.client, self.coordinator, admin=False)
        self.admin_engine = SyncEngine(self.client, self.coordinator, confirm=self._confirm)

        self.selected_group_id: Optional[int] = None
        if self._config.view_state:
            self.selected_group_id = self._config.view_state.last_group_id

    def compose(self) -> ComposeResult:
        yield Header()
        yield SessionExpiredBanner(id="session-banner")
        with TabbedContent(id="main-tabs"):
            with TabPane("Board", id="tab-board"):
                yield Tree("🔖 Links", id="board-tree")
            with TabPane("Admin", id="tab-admin"):
                with Horizontal(id="admin-layout"):
                    with Vertical(id="groups-panel"):
                        yield Static("Groups", classes="panel-title")
                        yield DataTable(id="groups-table")
                    with Vertical(id="links-panel"):
                        yield Static("Links", classes="panel-title", id="links-title")
                        yield DataTable(id="links-table")
                yield Static("", id="admin-status")
        yield Footer()

    def on_mount(self) -> None:
        groups_table = self.query_one("#groups-table", DataTable)
        groups_table.add_column("#", width=4)
        groups_table.add_column("Name", width=30)
        groups_table.add_column("Links", width=6)
        groups_table.cursor_type = "row"

        links_table = self.query_one("#links-table", DataTable)
        links_table.add_column("#", width=4)
        links_table.add_column("Name", width=25)
        links_table.add_column("URL", width=50)
        links_table.cursor_type = "row"

        self.query_one("#board-tree", Tree).root.expand()

        self.coordinator.subscribe(self._on_session_change)
        self.board_engine.subscribe(lambda engine: self._render_board())
        self.admin_engine.subscribe(lambda engine: self._render_admin())
        self.coordinator.restore()
        self._on_session_change(self.coordinator)

        if self._config.view_state and self._config.view_state.active_tab:
            self.query_one("#main-tabs", TabbedContent).active = self._config.view_state.active_tab

        self.load_board()
        if self.coordinator.authenticated:
            self.load_admin()

    async def on_unmount(self) -> None:
        self.coordinator.close()
        await self.client.close()

    def on_app_focus(self, event: events.AppFocus) -> None:
        """Pick up logins and logouts made in other LinkDeck windows."""
        sync = getattr(self.store, "sync", None)
        if callable(sync):
            sync()

    # =========================================================================
    # Session
    # =========================================================================

    def _on_session_change(self, coordinator: SessionCoordinator) -> None:
        banner = self.query_one("#session-banner", SessionExpiredBanner)
        banner.display = coordinator.banner_visible
        if coordinator.authenticated:
            self.sub_title = f"Signed in as {coordinator.username}"
        else:
            self.sub_title = "Not signed in"
            if self.admin_engine.snapshot.groups:
                self.admin_engine.discard()

    @on(Button.Pressed, "#btn-banner-login")
    def on_banner_login(self) -> None:
        self.coordinator.dismiss()
        self.login_flow()

    @on(Button.Pressed, "#btn-banner-dismiss")
    def on_banner_dismiss(self) -> None:
        self.coordinator.dismiss()

    def action_login(self) -> None:
        """Log in, or log out when already signed in."""
        if self.coordinator.authenticated:
            self.coordinator.logout()
            self.admin_engine.discard()
            self.notify("Logged out")
        else:
            self.login_flow()

    @work(exclusive=True, group="session")
    async def login_flow(self) -> None:
        credentials = await self.push_screen_wait(LoginScreen())
        if credentials is None:
            return
        username, password = credentials
        try:
            token, name = await self.client.login(username, password)
        except AuthorizationError:
            self.notify("Invalid username or password", severity="error")
            return
        except LinkDeckError as e:
            self.notify(f"Login failed: {e}", severity="error")
            return
        self.coordinator.login(token, name)
        self.notify(f"Signed in as {name}")
        await self.admin_engine.load()

    def _require_login(self) -> bool:
        if self.coordinator.authenticated:
            return True
        self.notify("Log in to use the admin panel", severity="warning")
        return False

    async def _confirm(self, question: str) -> bool:
        if not self._config.confirm_deletes:
            return True
        return bool(await self.push_screen_wait(ConfirmDialog(question)))

    # =========================================================================
    # Loading and rendering
    # =========================================================================

    @work(exclusive=True, group="board")
    async def load_board(self) -> None:
        result = await self.board_engine.load()
        if result is Completion.FAILED:
            self.notify(self.board_engine.error or "Failed to load links", severity="error")

    @work(exclusive=True, group="admin-load")
    async def load_admin(self) -> None:
        await self.admin_engine.load()

    def _render_board(self) -> None:
        tree = self.query_one("#board-tree", Tree)
        tree.clear()
        for group in self.board_engine.snapshot.groups:
            node = tree.root.add(f"📁 {group.name}", expand=True)
            for link in group.links:
                node.add_leaf(f"🔗 {link.name}", data=link.url)
        tree.root.expand()

    def _render_admin(self) -> None:
        engine = self.admin_engine
        groups = engine.snapshot.groups
        if self.selected_group_id is None or engine.snapshot.group(self.selected_group_id) is None:
            self.selected_group_id = groups[0].id if groups else None

        groups_table = self.query_one("#groups-table", DataTable)
        groups_table.clear()
        for group in groups:
            groups_table.add_row(str(group.position), group.name, str(len(group.links)), key=str(group.id))
        index = engine.snapshot.group_index(self.selected_group_id) if self.selected_group_id else None
        if index is not None:
            groups_table.move_cursor(row=index)

        self._render_links()

        status = self.query_one("#admin-status", Static)
        if engine.error:
            status.update(f"✗ {engine.error}")
            status.add_class("error")
        else:
            if engine.loading:
                message = "Loading..."
            elif engine.status:
                message = f"✓ {engine.status}"
            else:
                message = ""
            status.update(message)
            status.remove_class("error")

    def _render_links(self) -> None:
        links_table = self.query_one("#links-table", DataTable)
        cursor = links_table.cursor_row
        links_table.clear()
        group = self.admin_engine.snapshot.group(self.selected_group_id) if self.selected_group_id else None
        self.query_one("#links-title", Static).update(f"Links - {group.name}" if group else "Links")
        if group is None:
            return
        for link in group.links:
            links_table.add_row(str(link.position), link.name, link.url, key=str(link.id))
        if group.links:
            links_table.move_cursor(row=min(cursor, len(group.links) - 1))

    @on(DataTable.RowHighlighted, "#groups-table")
    def on_group_highlighted(self, event: DataTable.RowHighlighted) -> None:
        if event.row_key is None or event.row_key.value is None:
            return
        group_id = int(event.row_key.value)
        if group_id != self.selected_group_id:
            self.selected_group_id = group_id
            self._render_links()

    @on(Tree.NodeSelected, "#board-tree")
    def on_board_link_selected(self, event: Tree.NodeSelected) -> None:
        url = event.node.data
        if url:
            webbrowser.open(url)
            self.notify(f"Opening {url[:50]}...")

    def action_refresh(self) -> None:
        self.admin_engine.clear_messages()
        self.load_board()
        if self.coordinator.authenticated:
            self.load_admin()
        self.notify("Refreshed")

    # =========================================================================
    # Admin actions
    # =========================================================================

    def _links_focused(self) -> bool:
        return self.focused is not None and self.focused.id == "links-table"

    def _selected_group(self) -> Optional[Group]:
        if self.selected_group_id is None:
            return None
        return self.admin_engine.snapshot.group(self.selected_group_id)

    def _selected_link(self) -> Optional[Link]:
        group = self._selected_group()
        if group is None or not group.links:
            return None
        row = self.query_one("#links-table", DataTable).cursor_row
        if 0 <= row < len(group.links):
            return group.links[row]
        return None

    def _report(self, engine: SyncEngine, result: Completion, success: str) -> None:
        if result is Completion.DONE:
            self.notify(success)
            self.load_board()
        elif result is Completion.FAILED:
            self.notify(engine.error or "Request failed", severity="error")

    def action_add(self) -> None:
        if self._require_login():
            self.add_flow(self._links_focused())

    def action_edit(self) -> None:
        if self._require_login():
            self.edit_flow(self._links_focused())

    def action_delete(self) -> None:
        if self._require_login():
            self.delete_flow(self._links_focused())

    @work(exclusive=True, group="edit")
    async def add_flow(self, link: bool) -> None:
        engine = self.admin_engine
        if link:
            group = self._selected_group()
            if group is None:
                self.notify("Add a group first", severity="warning")
                return
            result = await self.push_screen_wait(
                LinkFormScreen(list(engine.snapshot.groups), group.id, default_position=len(group.links))
            )
            if result is None:
                return
            group_id, form = result
            outcome = await engine.add_link(group_id, form)
            self._report(engine, outcome, f"Added link '{form.name}'")
        else:
            form = await self.push_screen_wait(
                GroupFormScreen(default_position=len(engine.snapshot.groups))
            )
            if form is None:
                return
            outcome = await engine.add_group(form)
            self._report(engine, outcome, f"Added group '{form.name}'")

    @work(exclusive=True, group="edit")
    async def edit_flow(self, link: bool) -> None:
        engine = self.admin_engine
        if link:
            selected = self._selected_link()
            if selected is None:
                self.notify("Select a link first", severity="warning")
                return
            result = await self.push_screen_wait(
                LinkFormScreen(list(engine.snapshot.groups), selected.group_id, link=selected)
            )
            if result is None:
                return
            group_id, form = result
            outcome = await engine.update_link(selected.id, group_id, form)
            self._report(engine, outcome, f"Updated link '{form.name}'")
        else:
            group = self._selected_group()
            if group is None:
                self.notify("Select a group first", severity="warning")
                return
            form = await self.push_screen_wait(GroupFormScreen(group=group))
            if form is None:
                return
            outcome = await engine.update_group(group.id, form)
            self._report(engine, outcome, f"Updated group '{form.name}'")

    @work(exclusive=True, group="edit")
    async def delete_flow(self, link: bool) -> None:
        engine = self.admin_engine
        if link:
            selected = self._selected_link()
            if selected is None:
                self.notify("Select a link first", severity="warning")
                return
            outcome = await engine.delete_link(selected.id)
            self._report(engine, outcome, f"Deleted link '{selected.name}'")
        else:
            group = self._selected_group()
            if group is None:
                self.notify("Select a group first", severity="warning")
                return
            outcome = await engine.delete_group(group.id)
            self._report(engine, outcome, f"Deleted group '{group.name}'")

    def action_move_up(self) -> None:
        self._move(-1)

    def action_move_down(self) -> None:
        self._move(1)

    def _move(self, step: int) -> None:
        """Keyboard equivalent of dragging the selected row by one place."""
        if not self._require_login():
            return
        engine = self.admin_engine
        if self._links_focused():
            group = self._selected_group()
            selected = self._selected_link()
            if group is None or selected is None:
                return
            index = group.links.index(selected)
            target = index + step
            if not 0 <= target < len(group.links):
                return
            engine.reorder_links(group.id, index, target)
            self.query_one("#links-table", DataTable).move_cursor(row=target)
        else:
            index = engine.snapshot.group_index(self.selected_group_id) if self.selected_group_id else None
            if index is None:
                return
            target = index + step
            if not 0 <= target < len(engine.snapshot.groups):
                return
            engine.reorder_groups(index, target)
            self.query_one("#groups-table", DataTable).move_cursor(row=target)

    # =========================================================================
    # Account and bulk replace
    # =========================================================================

    def action_change_password(self) -> None:
        if self._require_login():
            self.password_flow()

    @work(exclusive=True, group="edit")
    async def password_flow(self) -> None:
        form = await self.push_screen_wait(PasswordScreen())
        if form is None:
            return
        engine = self.admin_engine
        outcome = await engine.change_password(form)
        if outcome is Completion.DONE:
            self.notify("Password changed successfully")
        elif outcome is Completion.FAILED:
            self.notify(engine.error or "Failed to change password", severity="error")

    def action_export(self) -> None:
        if self._require_login():
            self.export_flow()

    @work(exclusive=True, group="bulk")
    async def export_flow(self) -> None:
        directory = await self.push_screen_wait(
            PathScreen("Export to directory", self._config.export_dir or str(Path.cwd()), "Export")
        )
        if directory is None:
            return
        written = await self.admin_engine.export_to(directory, self._config.export_format)
        if written is not None:
            self.notify(f"Exported to {written}")
        elif self.admin_engine.error:
            self.notify(self.admin_engine.error, severity="error")

    def action_import(self) -> None:
        if self._require_login():
            self.import_flow()

    @work(exclusive=True, group="bulk")
    async def import_flow(self) -> None:
        path = await self.push_screen_wait(PathScreen("Import from file", "", "Import"))
        if path is None:
            return
        replace = await self.push_screen_wait(
            ConfirmDialog("This replaces all existing groups and links. Continue?", "Import")
        )
        if not replace:
            return
        engine = self.admin_engine
        outcome = await engine.import_from(path)
        if outcome is Completion.DONE:
            self.notify(engine.status or "Data imported successfully")
            self.load_board()
        elif outcome is Completion.FAILED:
            self.notify(engine.error or "Import failed", severity="error")

    # =========================================================================
    # Exit
    # =========================================================================

    def _save_view_state(self) -> None:
        """Save current view state to config."""
        active_tab = self.query_one("#main-tabs", TabbedContent).active or None
        self._config.save_view_state(
            last_group_id=self.selected_group_id,
            active_tab=active_tab,
        )

    def action_quit(self) -> None:
        """Quit the application, saving view state."""
        self._save_view_state()
        self.exit()
