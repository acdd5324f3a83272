"""Bulk replace flow: export and import of the whole document."""

import logging
import re
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote

from linkdeck.client import ExportPayload
from linkdeck.deck_file import DeckFileError, deck_to_json, load_deck, parse_deck, save_deck

logger = logging.getLogger(__name__)

DEFAULT_EXPORT_FILENAME = "link-deck-export.json"

_FILENAME_EXT_RE = re.compile(r"filename\*\s*=\s*([\w-]*)'[^']*'([^;]+)", re.IGNORECASE)
_FILENAME_RE = re.compile(r"""filename\s*=\s*("?)([^";]+)\1""", re.IGNORECASE)


def filename_from_disposition(header: Optional[str]) -> str:
    """Derive a download filename from a Content-Disposition header.

    Falls back to :data:`DEFAULT_EXPORT_FILENAME` when the header is absent or
    names no file. The RFC 5987 ``filename*`` form wins over ``filename`` and
    is percent-decoded. Directory components are dropped.
    """
    if not header:
        return DEFAULT_EXPORT_FILENAME
    extended = _FILENAME_EXT_RE.search(header)
    if extended:
        charset = extended.group(1).lower()
        encoding = "latin-1" if charset == "iso-8859-1" else "utf-8"
        raw = unquote(extended.group(2).strip(), encoding=encoding, errors="replace")
    else:
        match = _FILENAME_RE.search(header)
        if not match:
            return DEFAULT_EXPORT_FILENAME
        raw = match.group(2).strip()
    name = PurePosixPath(raw.replace("\\", "/")).name
    if name in ("", ".", ".."):
        return DEFAULT_EXPORT_FILENAME
    return name


def save_export(payload: ExportPayload, directory: Path, export_format: str = "json") -> Path:
    """Write an export artifact into ``directory``.

    The artifact is written as received unless ``export_format`` is ``yaml``,
    in which case the document is re-encoded and the suffix changed.

    Raises:
        DeckFileError: YAML was requested but the artifact is not a deck.
    """
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    filename = filename_from_disposition(payload.content_disposition)
    target = directory / filename

    if export_format == "yaml":
        document = parse_deck(payload.content, "json")
        target = save_deck(document, target.with_suffix(".yaml"), "yaml")
    else:
        target.write_bytes(payload.content)

    logger.info("Exported deck to %s", target)
    return target


def prepare_import(path: Path) -> tuple[str, bytes]:
    """Validate a deck file locally and encode it for upload.

    Returns:
        ``(upload_filename, json_bytes)``

    Raises:
        DeckFileError: The file is missing or malformed.
    """
    path = Path(path)
    document = load_deck(path)
    return f"{path.stem}.json", deck_to_json(document)


__all__ = [
    "DEFAULT_EXPORT_FILENAME",
    "DeckFileError",
    "filename_from_disposition",
    "prepare_import",
    "save_export",
]
