"""
Shared fixtures and helpers for the Gothic Organizer test suite.
"""

import zipfile
from pathlib import Path

import pytest

from instance_store import InstanceStore
from mod_installer import build_mod_record


def write_tree(root: Path, files: dict[str, str]) -> Path:
    """Create ``{relative/path: content}`` files under root and return root."""
    root.mkdir(parents=True, exist_ok=True)
    for rel, content in files.items():
        path = root / rel
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return root


def make_zip(path: Path, members: dict[str, str]) -> Path:
    with zipfile.ZipFile(path, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return path


@pytest.fixture
def game_dir(tmp_path):
    """A small base game install: game/data/textures.vdf and game/System/Gothic.ini."""
    return write_tree(
        tmp_path / "game",
        {
            "data/textures.vdf": "base textures",
            "System/Gothic.ini": "[GAME]",
        },
    )


@pytest.fixture
def storage_root(tmp_path):
    root = tmp_path / "storage"
    root.mkdir()
    return root


@pytest.fixture
def store(game_dir):
    """An ACTIVE instance store snapshotted from game_dir."""
    s = InstanceStore()
    s.take_snapshot(game_dir)
    return s


@pytest.fixture
def make_mod(tmp_path):
    """Build a ModRecord from ``{relative/path: content}`` stored under tmp_path/mods/<name>."""

    def _make(name: str, files: dict[str, str], enabled: bool = True):
        root = write_tree(tmp_path / "mods" / name, files)
        return build_mod_record(root, name=name, enabled=enabled)

    return _make
