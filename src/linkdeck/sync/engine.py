"""Optimistic sync engine.

The engine owns the snapshot shown by a view and is the only thing that
changes it. Two policies apply:

* Reorders are optimistic. The moved list is renumbered and swapped into the
  snapshot synchronously, then one persistence call per entity whose position
  changed is started. The calls are independent (the store has no batch
  endpoint) and are not ordered relative to each other. A failed call is
  logged and reported through ``error`` but nothing is rolled back: the
  snapshot and the store may disagree until the next full reload. Failed
  entities are remembered in ``unconfirmed`` until then.

* Creates, updates and deletes are pessimistic. The call is made first and,
  when it succeeds, the whole snapshot is reloaded from the store.

Every remote failure stops at the handler boundary. Handlers return a
:class:`Completion` that the view uses to reset its own form state.
"""

import asyncio
import inspect
import logging
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional, Union

from linkdeck.client import AuthorizationError, LinkDeckClient, LinkDeckError
from linkdeck.deck_file import DeckFileError
from linkdeck.forms import GroupForm, LinkForm, PasswordForm
from linkdeck.sync.bulk import prepare_import, save_export
from linkdeck.sync.ordering import Group, Link, move, unsaved_positions
from linkdeck.sync.session import SessionCoordinator
from linkdeck.sync.snapshot import Snapshot, SnapshotIntegrityError

logger = logging.getLogger(__name__)

ConfirmCallback = Callable[[str], Union[bool, Awaitable[bool]]]

IMPORT_FAILED = "Failed to import data. Please check your file format."
IMPORT_SUCCEEDED = "Data imported successfully"
EXPORT_FAILED = "Failed to export data. Please try again."


class Completion(str, Enum):
    """Outcome of a handler, used by views to reset their editing state."""

    DONE = "done"
    CANCELLED = "cancelled"
    FAILED = "failed"
    UNAUTHORIZED = "unauthorized"

    @property
    def ok(self) -> bool:
        return self is Completion.DONE


class SyncEngine:
    """Keeps a view's snapshot in step with the remote store."""

    def __init__(
        self,
        client: LinkDeckClient,
        coordinator: Optional[SessionCoordinator] = None,
        confirm: Optional[ConfirmCallback] = None,
        admin: bool = True,
    ):
        """Initialize the engine.

        Args:
            client: Remote store client.
            coordinator: Session coordinator of the owning view.
            confirm: Called with a question before deletes; returns (or
                resolves to) True to proceed. ``None`` proceeds without asking.
            admin: Load through the authenticated admin route.
        """
        self.client = client
        self.coordinator = coordinator
        self.confirm = confirm
        self.admin = admin
        self.snapshot = Snapshot.empty()
        self.loading = False
        self.error: Optional[str] = None
        self.status: Optional[str] = None
        self.unconfirmed: set[tuple[str, int]] = set()
        self._pending: set[asyncio.Task] = set()
        self._listeners: list[Callable[["SyncEngine"], None]] = []

    # =========================================================================
    # Observers
    # =========================================================================

    def subscribe(self, callback: Callable[["SyncEngine"], None]) -> Callable[[], None]:
        """Register a callback run after every state change."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._listeners):
            callback(self)

    def clear_messages(self) -> None:
        """Clear the error and status slots."""
        self.error = None
        self.status = None
        self._notify()

    def discard(self) -> None:
        """Drop the snapshot (logout or leaving the view).

        In-flight persistence calls are left to finish on their own.
        """
        self.snapshot = Snapshot.empty()
        self.unconfirmed.clear()
        self._notify()

    @property
    def pending(self) -> int:
        """Number of reorder persistence calls still in flight."""
        return len(self._pending)

    # =========================================================================
    # Loading
    # =========================================================================

    async def load(self) -> Completion:
        """Replace the snapshot wholesale from the store."""
        self.loading = True
        self.error = None
        self._notify()
        try:
            if self.admin:
                payload = await self.client.get_admin_link_groups()
            else:
                payload = await self.client.get_link_groups()
            self.snapshot = Snapshot.from_payload(payload)
            self.unconfirmed.clear()
            return Completion.DONE
        except AuthorizationError:
            logger.info("Load stopped: session is no longer authorized")
            return Completion.UNAUTHORIZED
        except (LinkDeckError, SnapshotIntegrityError, KeyError, TypeError, ValueError) as e:
            logger.error("Failed to load link groups: %s", e)
            self.error = "Failed to load link groups"
            return Completion.FAILED
        finally:
            self.loading = False
            self._notify()

    async def _persist_then_reload(
        self,
        action: Callable[[], Awaitable[object]],
        failure: str,
    ) -> Completion:
        try:
            await action()
        except AuthorizationError:
            logger.info("%s: session is no longer authorized", failure)
            return Completion.UNAUTHORIZED
        except LinkDeckError as e:
            logger.error("%s: %s", failure, e)
            self.error = failure
            self._notify()
            return Completion.FAILED
        return await self.load()

    async def _confirmed(self, question: str) -> bool:
        if self.confirm is None:
            return True
        answer = self.confirm(question)
        if inspect.isawaitable(answer):
            answer = await answer
        return bool(answer)

    # =========================================================================
    # Groups
    # =========================================================================

    async def add_group(self, form: GroupForm) -> Completion:
        """Create a group, then reload."""
        return await self._persist_then_reload(
            lambda: self.client.create_link_group(form.name, form.sort_order),
            "Failed to add group",
        )

    async def update_group(self, group_id: int, form: GroupForm) -> Completion:
        """Update a group's name and position, then reload."""
        return await self._persist_then_reload(
            lambda: self.client.update_link_group(group_id, form.name, form.sort_order),
            "Failed to update group",
        )

    async def delete_group(self, group_id: int) -> Completion:
        """Delete a group and all of its links after confirmation."""
        if not await self._confirmed("Are you sure you want to delete this group and all its links?"):
            return Completion.CANCELLED
        return await self._persist_then_reload(
            lambda: self.client.delete_link_group(group_id),
            "Failed to delete group",
        )

    def reorder_groups(self, from_index: int, to_index: int) -> Awaitable[list[bool]]:
        """Move a group optimistically and persist every position the store lacks.

        Must be called from a running event loop. Returns an awaitable that
        resolves once every persistence call has finished, with one success
        flag per call; views may ignore it.
        """
        before = list(self.snapshot.groups)
        after = move(before, from_index, to_index)
        if [g.id for g in after] == [g.id for g in before]:
            return self._gathered([])
        changed = unsaved_positions(before, after)

        self.snapshot = self.snapshot.with_groups(after)
        self._notify()
        tasks = [self._spawn(self._persist_group_position(group)) for group in changed]
        return self._gathered(tasks)

    async def _persist_group_position(self, group: Group) -> bool:
        try:
            await self.client.update_link_group(group.id, group.name, group.position)
            return True
        except AuthorizationError:
            logger.info("Group %s order not saved: session is no longer authorized", group.id)
            self.unconfirmed.add(("group", group.id))
            return False
        except LinkDeckError as e:
            logger.error("Failed to update group order for group %s: %s", group.id, e)
            self.unconfirmed.add(("group", group.id))
            self.error = "Failed to update group order"
            self._notify()
            return False

    # =========================================================================
    # Links
    # =========================================================================

    async def add_link(self, group_id: int, form: LinkForm) -> Completion:
        """Create a link in a group, then reload."""
        return await self._persist_then_reload(
            lambda: self.client.create_link(group_id, form.name, form.url_text, form.sort_order),
            "Failed to add link",
        )

    async def update_link(self, link_id: int, group_id: int, form: LinkForm) -> Completion:
        """Update a link (possibly moving it to another group), then reload."""
        return await self._persist_then_reload(
            lambda: self.client.update_link(
                link_id, group_id, form.name, form.url_text, form.sort_order
            ),
            "Failed to update link",
        )

    async def delete_link(self, link_id: int) -> Completion:
        """Delete a link after confirmation."""
        if not await self._confirmed("Are you sure you want to delete this link?"):
            return Completion.CANCELLED
        return await self._persist_then_reload(
            lambda: self.client.delete_link(link_id),
            "Failed to delete link",
        )

    def reorder_links(self, group_id: int, from_index: int, to_index: int) -> Awaitable[list[bool]]:
        """Move a link within its group optimistically.

        Same contract as :meth:`reorder_groups`. Unknown groups are a no-op.
        """
        group = self.snapshot.group(group_id)
        if group is None:
            return self._gathered([])

        before = list(group.links)
        after = move(before, from_index, to_index)
        if [link.id for link in after] == [link.id for link in before]:
            return self._gathered([])
        changed = unsaved_positions(before, after)

        self.snapshot = self.snapshot.with_links(group_id, after)
        self._notify()
        tasks = [self._spawn(self._persist_link_position(link)) for link in changed]
        return self._gathered(tasks)

    async def _persist_link_position(self, link: Link) -> bool:
        try:
            await self.client.update_link(
                link.id, link.group_id, link.name, link.url, link.position
            )
            return True
        except AuthorizationError:
            logger.info("Link %s order not saved: session is no longer authorized", link.id)
            self.unconfirmed.add(("link", link.id))
            return False
        except LinkDeckError as e:
            logger.error("Failed to update link order for link %s: %s", link.id, e)
            self.unconfirmed.add(("link", link.id))
            self.error = "Failed to update link order"
            self._notify()
            return False

    # =========================================================================
    # Persistence task bookkeeping
    # =========================================================================

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @staticmethod
    def _gathered(tasks: list[asyncio.Task]) -> Awaitable[list[bool]]:
        return asyncio.gather(*tasks)

    async def wait_pending(self) -> None:
        """Wait for every in-flight reorder persistence call."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    # =========================================================================
    # Account and bulk replace
    # =========================================================================

    async def change_password(self, form: PasswordForm) -> Completion:
        try:
            await self.client.change_password(form.old_password, form.new_password)
            return Completion.DONE
        except AuthorizationError:
            return Completion.UNAUTHORIZED
        except LinkDeckError as e:
            logger.error("Failed to change password: %s", e)
            self.error = "Failed to change password"
            self._notify()
            return Completion.FAILED

    async def export_to(self, directory: Path, export_format: str = "json") -> Optional[Path]:
        """Download the full document into ``directory``.

        Returns the written path, or None when the export failed.
        """
        self.error = None
        self._notify()
        try:
            payload = await self.client.export_data()
            return save_export(payload, directory, export_format)
        except AuthorizationError:
            return None
        except (LinkDeckError, DeckFileError, OSError) as e:
            logger.error("Failed to export data: %s", e)
            self.error = EXPORT_FAILED
            self._notify()
            return None

    async def import_from(self, path: Path) -> Completion:
        """Replace the whole document with a file, then reload.

        A file that does not parse never reaches the store. On any failure
        the current snapshot stays as it is.
        """
        self.error = None
        self.status = None
        self._notify()
        try:
            filename, content = prepare_import(path)
            await self.client.import_data(filename, content)
        except AuthorizationError:
            return Completion.UNAUTHORIZED
        except (DeckFileError, LinkDeckError) as e:
            logger.error("Failed to import data from %s: %s", path, e)
            self.error = IMPORT_FAILED
            self._notify()
            return Completion.FAILED

        result = await self.load()
        if result.ok:
            self.status = IMPORT_SUCCEEDED
            self._notify()
        return result
