"""Ordered collection model for link groups and links.

Both levels of the hierarchy follow the same rule: the ``position`` of every
element equals its index in the list, so positions are always ``0..n-1`` with
no gaps and no duplicates. The functions here are pure: they never mutate the
list or the entities they are given, they return new lists.
"""

from dataclasses import dataclass, field, replace
from typing import Optional, Protocol, Sequence, TypeVar


class OrderingError(ValueError):
    """Raised when a collection breaks the contiguous-position invariant."""


class Positioned(Protocol):
    """Anything with an id and an integer sort position."""

    id: int
    position: int


P = TypeVar("P", bound=Positioned)


@dataclass(frozen=True)
class Link:
    """A named URL inside a group."""

    id: int
    group_id: int  # lookup key into the snapshot, not an owning reference
    name: str
    url: str
    position: int = 0
    # sort_order as last loaded from the store; None for entities built locally
    stored_position: Optional[int] = field(default=None, compare=False)


@dataclass(frozen=True)
class Group:
    """A named, ordered container of links."""

    id: int
    name: str
    position: int = 0
    links: tuple[Link, ...] = field(default_factory=tuple)
    stored_position: Optional[int] = field(default=None, compare=False)


def reorder(items: Sequence[P], from_index: int, to_index: int) -> list[P]:
    """Move one element from ``from_index`` to ``to_index``.

    Indices outside ``[0, len(items))`` are a caller error; the call is a
    no-op and returns an unchanged copy. Positions are not touched, see
    :func:`renumber`.
    """
    result = list(items)
    size = len(result)
    if not (0 <= from_index < size and 0 <= to_index < size):
        return result
    if from_index == to_index:
        return result
    element = result.pop(from_index)
    result.insert(to_index, element)
    return result


def renumber(items: Sequence[P]) -> list[P]:
    """Rewrite every element's position to match its list index.

    Elements already at the right position are kept as the same objects.
    """
    return [
        item if item.position == index else replace(item, position=index)
        for index, item in enumerate(items)
    ]


def move(items: Sequence[P], from_index: int, to_index: int) -> list[P]:
    """Reorder and renumber in one step."""
    return renumber(reorder(items, from_index, to_index))


def changed_positions(before: Sequence[P], after: Sequence[P]) -> list[P]:
    """Return the elements of ``after`` whose position differs from ``before``.

    Elements with an id unknown to ``before`` count as changed.
    """
    previous = {item.id: item.position for item in before}
    return [item for item in after if previous.get(item.id) != item.position]


def unsaved_positions(before: Sequence[P], after: Sequence[P]) -> list[P]:
    """Return the elements of ``after`` whose position the store does not hold yet.

    Compares against ``stored_position`` when it is known, so elements whose
    stored sort order collides with a neighbour are rewritten even if their
    list index did not move. Elements without a stored position fall back to
    :func:`changed_positions`.
    """
    previous = {item.id: item.position for item in before}
    result = []
    for item in after:
        stored = getattr(item, "stored_position", None)
        if stored is None:
            stored = previous.get(item.id)
        if stored != item.position:
            result.append(item)
    return result


def is_contiguous(items: Sequence[Positioned]) -> bool:
    """Check that positions are exactly ``0..n-1`` in list order."""
    return all(item.position == index for index, item in enumerate(items))


def check_contiguous(items: Sequence[Positioned], label: str = "collection") -> None:
    """Raise :class:`OrderingError` unless positions match list order."""
    if not is_contiguous(items):
        positions = [item.position for item in items]
        raise OrderingError(f"{label} positions are not contiguous: {positions}")
