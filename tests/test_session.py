"""Tests for cross-tab session coordination."""

import json
from pathlib import Path

from linkdeck.sync.session import (
    TOKEN_KEY,
    USERNAME_KEY,
    FileStore,
    MemoryStore,
    SessionCoordinator,
    SessionState,
    StorageEvent,
)


class TestMemoryStore:
    """Tests for the in-process shared store."""

    def test_same_origin_not_notified(self) -> None:
        store = MemoryStore()
        seen: list[StorageEvent] = []
        store.subscribe(seen.append, "tab-a")
        store.set("k", "v", "tab-a")
        assert seen == []

    def test_other_origin_notified(self) -> None:
        store = MemoryStore()
        seen: list[StorageEvent] = []
        store.subscribe(seen.append, "tab-a")
        store.set("k", "v", "tab-b")
        store.remove("k", "tab-b")
        assert [(e.key, e.old_value, e.new_value) for e in seen] == [("k", None, "v"), ("k", "v", None)]

    def test_remove_missing_key_is_silent(self) -> None:
        store = MemoryStore()
        seen: list[StorageEvent] = []
        store.subscribe(seen.append, "tab-a")
        store.remove("k", "tab-b")
        assert seen == []

    def test_unsubscribe(self) -> None:
        store = MemoryStore()
        seen: list[StorageEvent] = []
        unsubscribe = store.subscribe(seen.append, "tab-a")
        unsubscribe()
        store.set("k", "v", "tab-b")
        assert seen == []


class TestSessionCoordinator:
    """Tests for session state transitions."""

    def test_login_sets_credential(self) -> None:
        store = MemoryStore()
        tab = SessionCoordinator(store, "a")
        tab.login("tok", "admin")
        assert tab.authenticated
        assert tab.token == "tok"
        assert store.get(USERNAME_KEY) == "admin"
        assert tab.state is SessionState.VALID

    def test_restore(self) -> None:
        store = MemoryStore({TOKEN_KEY: "tok", USERNAME_KEY: "admin"})
        tab = SessionCoordinator(store, "a")
        assert tab.token is None
        assert tab.restore()
        assert tab.username == "admin"
        assert tab.token == "tok"

    def test_restore_without_credential(self) -> None:
        tab = SessionCoordinator(MemoryStore(), "a")
        assert not tab.restore()

    def test_logout_in_one_tab_expires_the_other(self) -> None:
        store = MemoryStore()
        tab_a = SessionCoordinator(store, "a")
        tab_b = SessionCoordinator(store, "b")
        tab_a.login("tok", "admin")
        tab_b.restore()

        tab_a.logout()

        assert not tab_a.authenticated
        assert tab_a.state is SessionState.VALID
        assert not tab_a.banner_visible

        assert not tab_b.authenticated
        assert tab_b.state is SessionState.EXPIRED
        assert tab_b.banner_visible

    def test_unauthorized_expires_everywhere(self) -> None:
        store = MemoryStore()
        tab_a = SessionCoordinator(store, "a")
        tab_b = SessionCoordinator(store, "b")
        tab_a.login("tok", "admin")
        tab_b.restore()

        tab_a.report_unauthorized()

        assert tab_a.is_expired
        assert tab_b.is_expired
        assert store.get(TOKEN_KEY) is None

    def test_dismiss_hides_banner_only(self) -> None:
        tab = SessionCoordinator(MemoryStore(), "a")
        tab.login("tok", "admin")
        tab.report_unauthorized()
        tab.dismiss()
        assert not tab.banner_visible
        assert tab.is_expired
        assert not tab.authenticated

    def test_only_login_recovers(self) -> None:
        tab = SessionCoordinator(MemoryStore(), "a")
        tab.report_unauthorized()
        tab.dismiss()
        assert tab.is_expired
        tab.login("fresh", "admin")
        assert tab.state is SessionState.VALID
        assert tab.token == "fresh"

    def test_username_change_does_not_expire(self) -> None:
        store = MemoryStore()
        tab_a = SessionCoordinator(store, "a")
        tab_b = SessionCoordinator(store, "b")
        tab_a.login("tok", "admin")
        tab_b.restore()
        store.set(USERNAME_KEY, "other", "a")
        assert tab_b.state is SessionState.VALID

    def test_closed_tab_ignores_events(self) -> None:
        store = MemoryStore()
        tab_a = SessionCoordinator(store, "a")
        tab_b = SessionCoordinator(store, "b")
        tab_a.login("tok", "admin")
        tab_b.restore()
        tab_b.close()
        tab_a.logout()
        assert tab_b.state is SessionState.VALID

    def test_subscribers_called(self) -> None:
        tab = SessionCoordinator(MemoryStore(), "a")
        states: list[SessionState] = []
        tab.subscribe(lambda c: states.append(c.state))
        tab.login("tok", "admin")
        tab.report_unauthorized()
        assert states[0] is SessionState.VALID
        assert states[-1] is SessionState.EXPIRED


class TestFileStore:
    """Tests for the file-backed store shared between processes."""

    def test_default_path_under_home(self, isolated_home: Path) -> None:
        assert FileStore.get_default_path() == isolated_home / ".linkdeck" / "session.json"

    def test_persists(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        FileStore(path).set(TOKEN_KEY, "tok", "a")
        assert json.loads(path.read_text())[TOKEN_KEY] == "tok"
        assert FileStore(path).get(TOKEN_KEY) == "tok"

    def test_sync_delivers_other_process_logout(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        writer = SessionCoordinator(FileStore(path), "cli")
        writer.login("tok", "admin")

        store = FileStore(path)
        dashboard = SessionCoordinator(store, "dashboard")
        dashboard.restore()

        writer.logout()
        assert dashboard.authenticated

        events = store.sync()
        assert any(e.key == TOKEN_KEY and e.new_value is None for e in events)
        assert dashboard.is_expired
        assert dashboard.banner_visible

    def test_sync_without_changes(self, tmp_path: Path) -> None:
        store = FileStore(tmp_path / "session.json")
        store.set(TOKEN_KEY, "tok", "a")
        assert store.sync() == []

    def test_unreadable_file_treated_as_empty(self, tmp_path: Path) -> None:
        path = tmp_path / "session.json"
        path.write_text("{not json")
        assert FileStore(path).get(TOKEN_KEY) is None
