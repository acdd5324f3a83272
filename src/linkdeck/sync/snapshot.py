"""In-memory snapshot of the group -> link tree."""

from dataclasses import dataclass, field, replace
from typing import Any, Iterable, Optional

from linkdeck.sync.ordering import Group, Link, check_contiguous, renumber


class SnapshotIntegrityError(ValueError):
    """Raised when loaded data breaks a structural invariant."""


def _sort_key(row: dict) -> tuple[int, int]:
    return (int(row.get("sort_order") or 0), int(row.get("id") or 0))


@dataclass(frozen=True)
class Snapshot:
    """The full group tree as loaded from the remote store.

    Snapshots are immutable. Reorders produce a new snapshot that shares every
    group and link that did not change with the previous one.
    """

    groups: tuple[Group, ...] = field(default_factory=tuple)

    @classmethod
    def empty(cls) -> "Snapshot":
        return cls()

    @classmethod
    def from_payload(cls, payload: Iterable[dict[str, Any]]) -> "Snapshot":
        """Build a snapshot from the API's groups-with-links JSON.

        Each level is sorted by ``(sort_order, id)`` and renumbered, so the
        result is contiguous even when the store holds sparse or duplicate sort
        orders. The raw value is kept as ``stored_position``.

        Raises:
            SnapshotIntegrityError: A link points at a group other than the one
                containing it.
        """
        groups: list[Group] = []
        for row in sorted(payload, key=_sort_key):
            group_id = int(row["id"])
            links: list[Link] = []
            for link_row in sorted(row.get("links") or [], key=_sort_key):
                owner = int(link_row.get("group_id", group_id))
                if owner != group_id:
                    raise SnapshotIntegrityError(
                        f"Link {link_row.get('id')} references group {owner} "
                        f"but is listed under group {group_id}"
                    )
                links.append(
                    Link(
                        id=int(link_row["id"]),
                        group_id=group_id,
                        name=link_row.get("name", ""),
                        url=link_row.get("url", ""),
                        position=int(link_row.get("sort_order") or 0),
                        stored_position=int(link_row.get("sort_order") or 0),
                    )
                )
            groups.append(
                Group(
                    id=group_id,
                    name=row.get("name", ""),
                    position=int(row.get("sort_order") or 0),
                    links=tuple(renumber(links)),
                    stored_position=int(row.get("sort_order") or 0),
                )
            )
        return cls(groups=tuple(renumber(groups)))

    # =========================================================================
    # Lookups
    # =========================================================================

    def group(self, group_id: int) -> Optional[Group]:
        """Get a group by id."""
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def group_index(self, group_id: int) -> Optional[int]:
        """Get the list index of a group, or None if unknown."""
        for index, group in enumerate(self.groups):
            if group.id == group_id:
                return index
        return None

    def link(self, link_id: int) -> Optional[Link]:
        """Get a link by id, searching every group."""
        for group in self.groups:
            for link in group.links:
                if link.id == link_id:
                    return link
        return None

    def link_index(self, link_id: int) -> Optional[tuple[int, int]]:
        """Get ``(group_id, index)`` for a link, or None if unknown."""
        for group in self.groups:
            for index, link in enumerate(group.links):
                if link.id == link_id:
                    return group.id, index
        return None

    def counts(self) -> tuple[int, int]:
        """Return ``(group_count, link_count)``."""
        return len(self.groups), sum(len(g.links) for g in self.groups)

    def identities(self) -> set[tuple[str, int]]:
        """Every entity key in the tree, e.g. ``("group", 3)``."""
        keys = {("group", g.id) for g in self.groups}
        keys.update(("link", link.id) for g in self.groups for link in g.links)
        return keys

    # =========================================================================
    # Rebuilds
    # =========================================================================

    def with_groups(self, groups: Iterable[Group]) -> "Snapshot":
        """Return a snapshot with the group list replaced."""
        return Snapshot(groups=tuple(groups))

    def with_links(self, group_id: int, links: Iterable[Link]) -> "Snapshot":
        """Return a snapshot with one group's link list replaced."""
        links = tuple(links)
        return Snapshot(
            groups=tuple(
                replace(g, links=links)
                if g.id == group_id
                else g
                for g in self.groups
            )
        )

    def validate(self) -> None:
        """Check every structural invariant.

        Raises:
            OrderingError: Positions are not contiguous at some level.
            SnapshotIntegrityError: A link's group reference does not resolve.
        """
        check_contiguous(self.groups, "groups")
        known = {g.id for g in self.groups}
        for group in self.groups:
            check_contiguous(group.links, f"group {group.id} links")
            for link in group.links:
                if link.group_id not in known:
                    raise SnapshotIntegrityError(
                        f"Link {link.id} references missing group {link.group_id}"
                    )

    def to_document(self) -> dict[str, Any]:
        """Serialize to the export document shape."""
        return {
            "link_groups": [
                {
                    "id": g.id,
                    "name": g.name,
                    "sort_order": g.position,
                    "links": [
                        {
                            "id": link.id,
                            "group_id": link.group_id,
                            "name": link.name,
                            "url": link.url,
                            "sort_order": link.position,
                        }
                        for link in g.links
                    ],
                }
                for g in self.groups
            ]
        }
