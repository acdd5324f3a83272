"""LinkDeck - grouped bookmarks with an admin for ordering, editing and bulk import/export."""

__version__ = "0.1.0"
