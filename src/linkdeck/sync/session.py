"""Session validity across tabs.

Every open view ("tab") owns a :class:`SessionCoordinator`. The coordinators
of one user share a key-value store holding the credential. When a tab clears
the credential, every *other* tab sharing the store is told about it and moves
to ``EXPIRED``; the tab that did the clearing is not notified, which is what
keeps an explicit logout from showing the expired banner in its own tab.

There is no polling. Stores deliver events when they are written, and
:class:`FileStore` additionally picks up writes made by other processes
whenever :meth:`FileStore.sync` is called from a user-driven moment.
"""

import json
import logging
import os
import uuid
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

TOKEN_KEY = "token"
USERNAME_KEY = "username"

EXTERNAL_ORIGIN = "external"


@dataclass(frozen=True)
class StorageEvent:
    """A change to one key of a shared store."""

    key: str
    old_value: Optional[str]
    new_value: Optional[str]
    origin: str


StorageListener = Callable[[StorageEvent], None]


class SharedStore(Protocol):
    """Key-value store shared by every tab of one user."""

    def get(self, key: str) -> Optional[str]: ...

    def set(self, key: str, value: str, origin: str) -> None: ...

    def remove(self, key: str, origin: str) -> None: ...

    def subscribe(self, listener: StorageListener, origin: str) -> Callable[[], None]: ...


class MemoryStore:
    """In-process shared store.

    Listeners are registered together with the origin (tab id) they belong
    to, and never receive events for writes made under that same origin.
    """

    def __init__(self, initial: Optional[dict[str, str]] = None) -> None:
        self._data: dict[str, str] = dict(initial or {})
        self._listeners: list[tuple[StorageListener, str]] = []

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str, origin: str) -> None:
        old = self._data.get(key)
        self._data[key] = value
        if old != value:
            self._emit(StorageEvent(key, old, value, origin))

    def remove(self, key: str, origin: str) -> None:
        old = self._data.pop(key, None)
        if old is not None:
            self._emit(StorageEvent(key, old, None, origin))

    def subscribe(self, listener: StorageListener, origin: str) -> Callable[[], None]:
        entry = (listener, origin)
        self._listeners.append(entry)

        def unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return unsubscribe

    def _emit(self, event: StorageEvent) -> None:
        for listener, origin in list(self._listeners):
            if origin != event.origin:
                listener(event)


class FileStore(MemoryStore):
    """Shared store persisted as JSON so separate processes see one credential.

    Writes from this process update the in-memory copy first, so this process
    never reports its own writes back to itself through :meth:`sync`.
    """

    def __init__(self, path: Optional[Path] = None) -> None:
        self.path = path or self.get_default_path()
        super().__init__(self._read())

    @classmethod
    def get_default_path(cls) -> Path:
        """Get the path to the shared session file."""
        return Path.home() / ".linkdeck" / "session.json"

    def _read(self) -> dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.warning("Ignoring unreadable session file %s: %s", self.path, e)
            return {}
        if not isinstance(data, dict):
            return {}
        return {str(k): str(v) for k, v in data.items() if v is not None}

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as f:
            json.dump(self._data, f, indent=2)
        os.replace(tmp_path, self.path)

    def set(self, key: str, value: str, origin: str) -> None:
        old = self._data.get(key)
        self._data[key] = value
        self._write()
        if old != value:
            self._emit(StorageEvent(key, old, value, origin))

    def remove(self, key: str, origin: str) -> None:
        old = self._data.pop(key, None)
        self._write()
        if old is not None:
            self._emit(StorageEvent(key, old, None, origin))

    def sync(self) -> list[StorageEvent]:
        """Pick up changes written by other processes.

        Returns the events that were delivered.
        """
        current = self._read()
        events = [
            StorageEvent(key, self._data.get(key), current.get(key), EXTERNAL_ORIGIN)
            for key in sorted(set(self._data) | set(current))
            if self._data.get(key) != current.get(key)
        ]
        self._data = current
        for event in events:
            self._emit(event)
        return events


class SessionState(str, Enum):
    """Validity of the session as seen by one tab."""

    VALID = "valid"
    EXPIRED = "expired-pending-acknowledgement"


class SessionCoordinator:
    """Tracks whether this tab's credential is still usable.

    Two independent triggers expire the session: another tab clearing the
    shared credential, and a request issued by this tab being rejected as
    unauthorized. Only :meth:`login` returns the session to ``VALID``.
    """

    def __init__(self, store: SharedStore, tab_id: Optional[str] = None) -> None:
        self.store = store
        self.tab_id = tab_id or uuid.uuid4().hex
        self.authenticated = False
        self.username: Optional[str] = None
        self.state = SessionState.VALID
        self.banner_visible = False
        self._listeners: list[Callable[["SessionCoordinator"], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = store.subscribe(
            self._on_storage, self.tab_id
        )

    @property
    def token(self) -> Optional[str]:
        """The credential to attach to requests, if this tab is signed in."""
        if not self.authenticated:
            return None
        return self.store.get(TOKEN_KEY)

    @property
    def is_expired(self) -> bool:
        return self.state is SessionState.EXPIRED

    def restore(self) -> bool:
        """Adopt a credential already in the store (view mount)."""
        token = self.store.get(TOKEN_KEY)
        username = self.store.get(USERNAME_KEY)
        if token and username:
            self.authenticated = True
            self.username = username
            self._notify()
        return self.authenticated

    def login(self, token: str, username: str) -> None:
        """Store a fresh credential; the only way out of ``EXPIRED``."""
        self.store.set(TOKEN_KEY, token, self.tab_id)
        self.store.set(USERNAME_KEY, username, self.tab_id)
        self.authenticated = True
        self.username = username
        self.state = SessionState.VALID
        self.banner_visible = False
        logger.info("Tab %s signed in as %s", self.tab_id, username)
        self._notify()

    def logout(self) -> None:
        """Explicit logout from this tab. Other tabs will see it expire."""
        self.store.remove(TOKEN_KEY, self.tab_id)
        self.store.remove(USERNAME_KEY, self.tab_id)
        self.authenticated = False
        self.username = None
        logger.info("Tab %s signed out", self.tab_id)
        self._notify()

    def report_unauthorized(self) -> None:
        """A request from this tab was rejected: expire here and everywhere."""
        logger.warning("Credential rejected by the server (tab %s)", self.tab_id)
        self.store.remove(TOKEN_KEY, self.tab_id)
        self.store.remove(USERNAME_KEY, self.tab_id)
        self._expire()

    def dismiss(self) -> None:
        """Hide the expired banner. The session stays unauthenticated."""
        self.banner_visible = False
        self._notify()

    def subscribe(self, callback: Callable[["SessionCoordinator"], None]) -> Callable[[], None]:
        """Register a callback run after every state change."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def close(self) -> None:
        """Stop listening to the shared store (view teardown)."""
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None

    def _on_storage(self, event: StorageEvent) -> None:
        if event.key == TOKEN_KEY and event.new_value is None:
            logger.info("Credential cleared in another tab; expiring tab %s", self.tab_id)
            self._expire()

    def _expire(self) -> None:
        self.authenticated = False
        self.username = None
        self.state = SessionState.EXPIRED
        self.banner_visible = True
        self._notify()

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)
