"""Deck file format - the whole link hierarchy as one document.

The deck document is what the remote store exports and accepts on import.
It can be stored as JSON (the store's native encoding) or YAML.

Format specification:
```yaml
link_groups:
  - id: 1
    name: "Work"
    sort_order: 0
    links:
      - id: 10
        group_id: 1
        name: "Tracker"
        url: "https://tracker.example.com"
        sort_order: 0
  - name: "Reading"        # ids are optional on import
    sort_order: 1
    links: []
```
"""

import json
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError

from linkdeck.models import ExportDocument

YAML_SUFFIXES = {".yaml", ".yml"}
JSON_SUFFIXES = {".json"}


class DeckFileError(ValueError):
    """Raised when a deck file cannot be read or does not match the format."""


def parse_deck(content: bytes | str, fmt: str = "json") -> ExportDocument:
    """Parse deck content.

    Args:
        content: Raw file content.
        fmt: ``json`` or ``yaml``.

    Raises:
        DeckFileError: Content is not valid for the format or the schema.
    """
    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DeckFileError(f"Deck file is not UTF-8 text: {e}") from e

    try:
        if fmt == "yaml":
            data = yaml.safe_load(content)
        else:
            data = json.loads(content)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise DeckFileError(f"Invalid {fmt.upper()}: {e}") from e

    if not isinstance(data, dict) or "link_groups" not in data:
        raise DeckFileError("Deck file must contain a top-level 'link_groups' list")

    try:
        return ExportDocument.model_validate(data)
    except ValidationError as e:
        raise DeckFileError(f"Deck file does not match the deck format: {e}") from e


def detect_format(path: Path) -> str:
    """Pick ``yaml`` or ``json`` from a file suffix (JSON by default)."""
    return "yaml" if path.suffix.lower() in YAML_SUFFIXES else "json"


def load_deck(path: Path) -> ExportDocument:
    """Read and validate a deck file.

    Raises:
        DeckFileError: The file is missing, unreadable or malformed.
    """
    path = Path(path)
    try:
        content = path.read_bytes()
    except OSError as e:
        raise DeckFileError(f"Cannot read {path}: {e}") from e
    return parse_deck(content, detect_format(path))


def deck_to_json(document: ExportDocument) -> bytes:
    """Encode a document the way the remote store expects it."""
    return json.dumps(document.model_dump(), indent=2).encode("utf-8")


def deck_to_yaml(document: ExportDocument) -> str:
    return yaml.dump(
        document.model_dump(),
        default_flow_style=False,
        sort_keys=False,
        allow_unicode=True,
    )


def save_deck(document: ExportDocument, path: Path, fmt: Optional[str] = None) -> Path:
    """Write a deck file, choosing the encoding from ``fmt`` or the suffix."""
    path = Path(path)
    fmt = fmt or detect_format(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    if fmt == "yaml":
        path.write_text(deck_to_yaml(document), encoding="utf-8")
    else:
        path.write_bytes(deck_to_json(document))
    return path
