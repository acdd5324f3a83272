"""Textual dashboard for LinkDeck."""

from .app import LinkDeckApp

__all__ = ["LinkDeckApp"]
