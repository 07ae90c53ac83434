"""
Persistence for Gothic Organizer.

One JSON document per profile holds the whole instance/mod/file graph:

    <data dir>/<profile name>/profile.json

Everything is keyed by stable names (profile, instance, mod) and by path,
never by list position, so documents survive reordering. Mods are stored as
an ordered list because their order is their override priority.

The last active profile and instance go to ``<data dir>/session.json``.

Schema version 1
----------------
{
    "version": 1,
    "name": "Gothic 2 Night of Raven",
    "base_path": "/games/Gothic II",
    "instances": {
        "Vanilla+": {
            "snapshotted": true,
            "active_files": [{"enabled": true, "source_path": "...",
                              "target_path": "...", "owning_mod": null}],
            "overlay_stack": {"<target path>": [<file record>, ...]},
            "mods": [{"name": "HDTextures", "enabled": true,
                      "storage_path": "...", "files": [<file record>, ...]}]
        }
    }
}
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from file_records import FileRecord, ModRecord
from instance_store import Instance, InstanceStore, Profile
from organizer_errors import StorageIOError

PROFILE_FILENAME = "profile.json"
SESSION_FILENAME = "session.json"
SCHEMA_VERSION = 1

_log = logging.getLogger(__name__)


# ── Document schema ───────────────────────────────────────────────────


class FileRecordDoc(BaseModel):
    enabled: bool = True
    source_path: Path
    target_path: Path
    owning_mod: Optional[str] = None


class ModRecordDoc(BaseModel):
    name: str
    enabled: bool = True
    storage_path: Path
    files: list[FileRecordDoc] = Field(default_factory=list)


class InstanceDoc(BaseModel):
    snapshotted: bool = False
    active_files: list[FileRecordDoc] = Field(default_factory=list)
    overlay_stack: dict[str, list[FileRecordDoc]] = Field(default_factory=dict)
    mods: list[ModRecordDoc] = Field(default_factory=list)

    @model_validator(mode="after")
    def _no_duplicate_mods(self) -> InstanceDoc:
        seen = set()
        for mod in self.mods:
            if mod.name in seen:
                raise ValueError(f"Duplicate mod name: {mod.name!r}")
            seen.add(mod.name)
        return self


class ProfileDoc(BaseModel):
    version: int = SCHEMA_VERSION
    name: str
    base_path: Optional[Path] = None
    instances: dict[str, InstanceDoc] = Field(default_factory=dict)

    @model_validator(mode="after")
    def _check_version(self) -> ProfileDoc:
        if self.version > SCHEMA_VERSION:
            raise ValueError(
                f"Profile document version {self.version} requires a newer Gothic Organizer"
            )
        return self


class SessionDoc(BaseModel):
    active_profile: Optional[str] = None
    active_instance: Optional[str] = None


# ── Conversion ────────────────────────────────────────────────────────


def _record_to_doc(record: FileRecord) -> FileRecordDoc:
    return FileRecordDoc(
        enabled=record.enabled,
        source_path=record.source_path,
        target_path=record.target_path,
        owning_mod=record.owning_mod,
    )


def _record_from_doc(doc: FileRecordDoc) -> FileRecord:
    return FileRecord(
        enabled=doc.enabled,
        source_path=doc.source_path,
        target_path=doc.target_path,
        owning_mod=doc.owning_mod,
    )


def profile_to_doc(profile: Profile) -> ProfileDoc:
    instances = {}
    for name, instance in profile.instances.items():
        store = instance.store
        instances[name] = InstanceDoc(
            snapshotted=store.snapshotted,
            active_files=[_record_to_doc(r) for _, r in sorted(store.active_files.items())],
            overlay_stack={
                str(target): [_record_to_doc(r) for r in stack]
                for target, stack in sorted(store.overlay_stack.items())
            },
            mods=[
                ModRecordDoc(
                    name=mod.name,
                    enabled=mod.enabled,
                    storage_path=mod.storage_path,
                    files=[_record_to_doc(r) for _, r in sorted(mod.files.items())],
                )
                for mod in store.mods
            ],
        )
    return ProfileDoc(name=profile.name, base_path=profile.base_path, instances=instances)


def profile_from_doc(doc: ProfileDoc) -> Profile:
    profile = Profile(name=doc.name, base_path=doc.base_path)
    for name, inst in doc.instances.items():
        store = InstanceStore(
            active_files={r.target_path: _record_from_doc(r) for r in inst.active_files},
            overlay_stack={
                Path(target): [_record_from_doc(r) for r in stack]
                for target, stack in inst.overlay_stack.items()
                if stack
            },
            mods=[
                ModRecord(
                    name=m.name,
                    enabled=m.enabled,
                    storage_path=m.storage_path,
                    files={r.source_path: _record_from_doc(r) for r in m.files},
                )
                for m in inst.mods
            ],
            snapshotted=inst.snapshotted,
        )
        profile.add_instance(Instance(name=name, store=store))
    return profile


# ── Profiles ──────────────────────────────────────────────────────────


def _find_profile_dir(name: str, data_dir: Path) -> Optional[Path]:
    if not data_dir.is_dir():
        return None
    for entry in data_dir.iterdir():
        if entry.is_dir() and entry.name.lower() == name.lower():
            return entry
    return None


def load_profile(name: str, data_dir: str | Path) -> Optional[Profile]:
    """Load a profile by (case-insensitive) name; None if absent or unreadable."""
    profile_dir = _find_profile_dir(name, Path(data_dir))
    if profile_dir is None:
        return None
    path = profile_dir / PROFILE_FILENAME
    if not path.is_file():
        return None
    try:
        doc = ProfileDoc.model_validate(json.loads(path.read_text(encoding="utf-8")))
        profile = profile_from_doc(doc)
    except (OSError, ValueError, ValidationError) as exc:
        _log.warning("Could not load profile %s: %s", path, exc)
        return None
    _log.info("Loaded profile '%s' (%d instance(s))", profile.name, len(profile.instances))
    return profile


def save_profile(profile: Profile, data_dir: str | Path):
    """Write the whole profile graph. Raises ``StorageIOError`` on failure."""
    data_dir = Path(data_dir)
    try:
        profile_dir = _find_profile_dir(profile.name, data_dir) or data_dir / profile.name
        path = profile_dir / PROFILE_FILENAME
        tmp = path.with_suffix(".json.tmp")
        profile_dir.mkdir(parents=True, exist_ok=True)
        tmp.write_text(profile_to_doc(profile).model_dump_json(indent=2), encoding="utf-8")
        tmp.replace(path)
    except OSError as exc:
        raise StorageIOError(f"Could not save profile '{profile.name}'", exc) from exc
    _log.debug("Saved profile '%s' to %s", profile.name, path)


# ── Session ───────────────────────────────────────────────────────────


def load_session(data_dir: str | Path) -> SessionDoc:
    path = Path(data_dir) / SESSION_FILENAME
    if not path.is_file():
        return SessionDoc()
    try:
        return SessionDoc.model_validate(json.loads(path.read_text(encoding="utf-8")))
    except (OSError, ValueError, ValidationError) as exc:
        _log.warning("Could not load session %s: %s", path, exc)
        return SessionDoc()


def save_session(session: SessionDoc, data_dir: str | Path):
    path = Path(data_dir) / SESSION_FILENAME
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(session.model_dump_json(indent=2), encoding="utf-8")
    except OSError as exc:
        raise StorageIOError("Could not save session", exc) from exc
