"""LinkDeck remote store API."""
