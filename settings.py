"""
Configuration for Gothic Organizer.

Where data lives, the user's preferences, and the built-in game profiles.

Data directory resolution (first match wins):
    $GOTHIC_ORGANIZER_DATA_DIR
    %LOCALAPPDATA%/gothic-organizer          (Windows)
    $XDG_DATA_HOME/gothic-organizer          (elsewhere, default ~/.local/share)

Preferences are stored in ``<data dir>/settings.json``:

{
    "mod_storage_dir": "/home/me/.local/share/gothic-organizer/mods",
    "theme_name": "Dark",
    "archive_extensions": [".zip"]
}
"""

from __future__ import annotations

import json
import logging
import os
import sys
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from archive_extraction import SUPPORTED_EXTENSIONS
from organizer_errors import StorageIOError

APP_NAME = "gothic-organizer"
APP_TITLE = "Gothic Organizer"
APP_VERSION = "0.4.0"
DATA_DIR_ENV = "GOTHIC_ORGANIZER_DATA_DIR"
SETTINGS_FILENAME = "settings.json"

DEFAULT_PROFILES = (
    "Gothic",
    "Gothic 2 Classic",
    "Gothic 2 Night of Raven",
    "Gothic Sequel",
)

_log = logging.getLogger(__name__)


def local_app_data_path() -> Path:
    if sys.platform == "win32":
        return Path(os.environ.get("LOCALAPPDATA", "~")).expanduser()
    return Path(os.environ.get("XDG_DATA_HOME", "~/.local/share")).expanduser()


def default_data_dir() -> Path:
    override = os.environ.get(DATA_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return local_app_data_path() / APP_NAME


def default_mod_storage_dir(data_dir: Path | None = None) -> Path:
    return (data_dir or default_data_dir()) / "mods"


class Preferences(BaseModel):
    """User preferences persisted next to the profiles."""

    mod_storage_dir: Path | None = None
    theme_name: str = "Dark"
    archive_extensions: list[str] = Field(default_factory=lambda: [".zip"])

    @field_validator("archive_extensions")
    @classmethod
    def _normalize_extensions(cls, v: list[str]) -> list[str]:
        normalized = []
        for ext in v:
            ext = ext.strip().lower()
            if not ext.startswith("."):
                ext = "." + ext
            if ext not in SUPPORTED_EXTENSIONS:
                raise ValueError(
                    f"Unsupported archive extension {ext!r} "
                    f"(supported: {', '.join(sorted(SUPPORTED_EXTENSIONS))})"
                )
            if ext not in normalized:
                normalized.append(ext)
        if not normalized:
            raise ValueError("At least one archive extension must be enabled")
        return normalized

    def storage_dir(self, data_dir: Path) -> Path:
        return self.mod_storage_dir or default_mod_storage_dir(data_dir)


def load_preferences(data_dir: Path) -> Preferences:
    """Read ``settings.json``; missing or invalid files give the defaults."""
    path = Path(data_dir) / SETTINGS_FILENAME
    if not path.exists():
        return Preferences()
    try:
        return Preferences.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as exc:
        _log.warning("Could not load preferences from %s, using defaults: %s", path, exc)
        return Preferences()


def save_preferences(preferences: Preferences, data_dir: Path):
    path = Path(data_dir) / SETTINGS_FILENAME
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(preferences.model_dump_json(indent=2), encoding="utf-8")
    except OSError as exc:
        raise StorageIOError(f"Could not write preferences to {path}", exc) from exc
