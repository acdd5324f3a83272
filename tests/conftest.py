"""Shared fixtures for LinkDeck tests."""

from pathlib import Path

import pytest


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point ~ at a temporary directory so config and session files stay local."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", home.as_posix())
    monkeypatch.delenv("LINKDECK_SERVER", raising=False)
    return home


def make_payload() -> list[dict]:
    """Groups-with-links as returned by GET /api/admin/link-groups."""
    return [
        {
            "id": 1,
            "name": "Work",
            "sort_order": 0,
            "links": [
                {"id": 10, "group_id": 1, "name": "Tracker", "url": "https://tracker.example.com", "sort_order": 0},
                {"id": 11, "group_id": 1, "name": "Wiki", "url": "https://wiki.example.com", "sort_order": 1},
                {"id": 12, "group_id": 1, "name": "CI", "url": "https://ci.example.com", "sort_order": 2},
            ],
        },
        {"id": 2, "name": "Reading", "sort_order": 1, "links": []},
        {
            "id": 3,
            "name": "Tools",
            "sort_order": 2,
            "links": [
                {"id": 30, "group_id": 3, "name": "Regex", "url": "https://regex.example.com", "sort_order": 0},
            ],
        },
    ]


@pytest.fixture
def payload() -> list[dict]:
    return make_payload()
