"""
Gothic Organizer - Profiles, instances and their file stores.

A Profile owns the base game directory and any number of named Instances.
Each Instance owns one InstanceStore:

    active_files   target path -> the FileRecord currently in effect
    overlay_stack  target path -> displaced records, lowest priority first
    mods           installed mods, declaration order = override priority

An instance moves through these states:

    UNSELECTED -> SELECTED_NO_BASE_PATH -> SELECTED_UNSNAPSHOTTED -> ACTIVE

ACTIVE is reached by ``InstanceStore.take_snapshot`` once the profile has a
base path. Only ACTIVE stores accept overlay operations.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from directory_snapshot import snapshot_directory
from file_records import FileRecord, ModRecord
from organizer_errors import AlreadyExistsError, NotFoundError

_log = logging.getLogger(__name__)


class InstanceState(enum.Enum):
    UNSELECTED = "unselected"
    SELECTED_NO_BASE_PATH = "selected_no_base_path"
    SELECTED_UNSNAPSHOTTED = "selected_unsnapshotted"
    ACTIVE = "active"


@dataclass
class InstanceStore:
    active_files: dict[Path, FileRecord] = field(default_factory=dict)
    overlay_stack: dict[Path, list[FileRecord]] = field(default_factory=dict)
    mods: list[ModRecord] = field(default_factory=list)
    snapshotted: bool = False

    def take_snapshot(self, base_path: str | Path):
        """Populate ``active_files`` from the base directory and become ACTIVE.

        Mods are not applied here; callers follow up with a reload.
        """
        self.active_files = snapshot_directory(base_path)
        self.overlay_stack = {}
        self.snapshotted = True
        _log.info("Snapshotted %s: %d base entr(ies)", base_path, len(self.active_files))

    def reset(self):
        """Forget files and history but keep the mod list."""
        self.active_files = {}
        self.overlay_stack = {}
        self.snapshotted = False

    def find_mod(self, mod_name: str) -> Optional[ModRecord]:
        return next((m for m in self.mods if m.name == mod_name), None)

    def get_mod(self, mod_name: str) -> ModRecord:
        mod = self.find_mod(mod_name)
        if mod is None:
            raise NotFoundError(f"No mod named '{mod_name}' in this instance")
        return mod

    def mod_index(self, mod_name: str) -> int:
        for i, mod in enumerate(self.mods):
            if mod.name == mod_name:
                return i
        raise NotFoundError(f"No mod named '{mod_name}' in this instance")


@dataclass
class Instance:
    name: str
    store: InstanceStore = field(default_factory=InstanceStore)


@dataclass
class Profile:
    name: str
    base_path: Optional[Path] = None
    instances: dict[str, Instance] = field(default_factory=dict)

    def add_instance(self, instance: Instance):
        if not instance.name:
            raise ValueError("Instance name must not be empty")
        if instance.name in self.instances:
            raise AlreadyExistsError(
                f"Instance '{instance.name}' already exists in profile '{self.name}'",
                "Pick another instance name.",
            )
        self.instances[instance.name] = instance

    def remove_instance(self, instance_name: str) -> Instance:
        try:
            return self.instances.pop(instance_name)
        except KeyError:
            raise NotFoundError(
                f"No instance named '{instance_name}' in profile '{self.name}'"
            ) from None

    def get_instance(self, instance_name: str) -> Instance:
        instance = self.instances.get(instance_name)
        if instance is None:
            raise NotFoundError(
                f"No instance named '{instance_name}' in profile '{self.name}'"
            )
        return instance


def instance_state(profile: Optional[Profile], instance_name: Optional[str]) -> InstanceState:
    if profile is None or not instance_name or instance_name not in profile.instances:
        return InstanceState.UNSELECTED
    if profile.base_path is None:
        return InstanceState.SELECTED_NO_BASE_PATH
    if not profile.instances[instance_name].store.snapshotted:
        return InstanceState.SELECTED_UNSNAPSHOTTED
    return InstanceState.ACTIVE


# ── Queries & file toggles ────────────────────────────────────────────


def directory_entries(store: InstanceStore, directory: str | Path) -> list[tuple[Path, FileRecord]]:
    """Entries directly inside ``directory``: directories first, then by name."""
    directory = Path(directory)
    entries = [
        (path, record)
        for path, record in store.active_files.items()
        if path.parent == directory
    ]
    entries.sort(key=lambda item: (not item[1].source_path.is_dir(), item[0].name.lower()))
    return entries


def toggle_file(store: InstanceStore, path: str | Path, enabled: Optional[bool] = None) -> bool:
    """Flip (or set) a file's enabled flag; descendants of a directory follow it.

    Returns the new state. Raises ``NotFoundError`` for an untracked path.
    """
    path = Path(path)
    record = store.active_files.get(path)
    if record is None:
        raise NotFoundError(f"{path} is not tracked by this instance")

    new_state = (not record.enabled) if enabled is None else enabled
    store.active_files[path] = record.with_enabled(new_state)
    changed = 1
    for other, rec in list(store.active_files.items()):
        if path in other.parents and rec.enabled != new_state:
            store.active_files[other] = rec.with_enabled(new_state)
            changed += 1

    _log.debug("%s %s (%d entr(ies))", "Enabled" if new_state else "Disabled", path, changed)
    return new_state
