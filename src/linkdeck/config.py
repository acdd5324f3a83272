"""LinkDeck configuration management.

Handles persistent settings stored in ~/.linkdeck/config.json
"""

import json
import os
from dataclasses import dataclass, asdict
from pathlib import Path
from typing import Optional


# Default configuration values
DEFAULT_SERVER_URL = "http://127.0.0.1:8080"
DEFAULT_THEME = "textual-dark"
DEFAULT_EXPORT_FORMAT = "json"  # json, yaml
DEFAULT_LOG_LEVEL = "WARNING"

SERVER_URL_ENV = "LINKDECK_SERVER"


@dataclass
class ViewState:
    """Persistent view state for the TUI dashboard."""

    # Last selected group id in the admin panel
    last_group_id: Optional[int] = None

    # Active tab when closed
    active_tab: Optional[str] = None


@dataclass
class LinkDeckConfig:
    """LinkDeck client configuration."""

    # Remote store
    server_url: str = DEFAULT_SERVER_URL

    # Appearance
    theme: str = DEFAULT_THEME

    # Bulk replace
    export_format: str = DEFAULT_EXPORT_FORMAT
    export_dir: Optional[str] = None  # None = current directory

    # Behaviour
    confirm_deletes: bool = True
    log_level: str = DEFAULT_LOG_LEVEL

    # View state - stores last dashboard state for restoration
    view_state: Optional[ViewState] = None

    @classmethod
    def get_config_path(cls) -> Path:
        """Get the path to the config file."""
        return Path.home() / ".linkdeck" / "config.json"

    @classmethod
    def load(cls) -> "LinkDeckConfig":
        """Load configuration from file, or return defaults if not found.

        ``LINKDECK_SERVER`` overrides the stored server URL.
        """
        config = cls()
        config_path = cls.get_config_path()

        if config_path.exists():
            try:
                with open(config_path, "r", encoding="utf-8") as f:
                    data = json.load(f)
                # Only use known fields to avoid issues with old config versions
                known_fields = {f.name for f in cls.__dataclass_fields__.values()}
                filtered_data = {k: v for k, v in data.items() if k in known_fields}

                # Handle nested ViewState
                if "view_state" in filtered_data and filtered_data["view_state"] is not None:
                    view_state_data = filtered_data["view_state"]
                    if isinstance(view_state_data, dict):
                        view_state_fields = {f.name for f in ViewState.__dataclass_fields__.values()}
                        filtered_view_state = {k: v for k, v in view_state_data.items() if k in view_state_fields}
                        filtered_data["view_state"] = ViewState(**filtered_view_state)
                    else:
                        filtered_data["view_state"] = None

                config = cls(**filtered_data)
            except (json.JSONDecodeError, TypeError, ValueError, AttributeError):
                # Invalid config, use defaults
                config = cls()

        env_server = os.environ.get(SERVER_URL_ENV)
        if env_server:
            config.server_url = env_server
        return config

    def save(self) -> None:
        """Save configuration to file."""
        config_path = self.get_config_path()

        # Ensure directory exists
        config_path.parent.mkdir(parents=True, exist_ok=True)

        with open(config_path, "w", encoding="utf-8") as f:
            json.dump(asdict(self), f, indent=2)

    def reset(self) -> None:
        """Reset configuration to defaults."""
        self.server_url = DEFAULT_SERVER_URL
        self.theme = DEFAULT_THEME
        self.export_format = DEFAULT_EXPORT_FORMAT
        self.export_dir = None
        self.confirm_deletes = True
        self.log_level = DEFAULT_LOG_LEVEL
        self.view_state = None

    def set_value(self, key: str, value: str) -> None:
        """Set a top-level setting from its string form.

        Raises:
            KeyError: Unknown setting.
            ValueError: Value not valid for the setting.
        """
        if key not in SETTABLE_KEYS:
            raise KeyError(key)
        if key == "confirm_deletes":
            lowered = value.strip().lower()
            if lowered not in {"true", "false", "1", "0", "yes", "no", "on", "off"}:
                raise ValueError(f"Expected a boolean, got {value!r}")
            setattr(self, key, lowered in {"true", "1", "yes", "on"})
        elif key == "export_format":
            if value not in {code for code, _ in EXPORT_FORMAT_OPTIONS}:
                raise ValueError(f"Expected one of json, yaml; got {value!r}")
            self.export_format = value
        elif key == "log_level":
            if value.upper() not in LOG_LEVELS:
                raise ValueError(f"Expected one of {', '.join(LOG_LEVELS)}; got {value!r}")
            self.log_level = value.upper()
        elif key == "export_dir":
            self.export_dir = value or None
        else:
            setattr(self, key, value)

    def save_view_state(
        self,
        last_group_id: Optional[int] = None,
        active_tab: Optional[str] = None,
    ) -> None:
        """Save the current view state for restoration on next launch."""
        self.view_state = ViewState(
            last_group_id=last_group_id,
            active_tab=active_tab,
        )
        self.save()


SETTABLE_KEYS = ("server_url", "theme", "export_format", "export_dir", "confirm_deletes", "log_level")

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

# Available options for settings
AVAILABLE_THEMES = [
    ("textual-dark", "Textual Dark"),
    ("textual-light", "Textual Light"),
    ("nord", "Nord"),
    ("gruvbox", "Gruvbox"),
    ("dracula", "Dracula"),
    ("tokyo-night", "Tokyo Night"),
]

EXPORT_FORMAT_OPTIONS = [
    ("json", "JSON (.json)"),
    ("yaml", "YAML (.yaml)"),
]
