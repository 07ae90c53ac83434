"""
Gothic Organizer - Mod Installer

Acquires mod content (a directory copy or an archive extraction) into the
mod storage area and builds the ModRecord describing it.

Storage layout:
    <storage_root>/<profile name>/<instance name>/<mod base name>/...

The installer never overwrites an existing storage slot. Content is staged
in a hidden sibling directory and renamed into place once complete, so a
failed copy or extraction leaves no half-populated mod behind.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Iterable, Optional

from archive_extraction import extract_archive
from directory_snapshot import snapshot_directory
from file_records import ModRecord
from organizer_errors import AlreadyExistsError, InvalidSourceError, StorageIOError

_log = logging.getLogger(__name__)

DEFAULT_ARCHIVE_EXTENSIONS = (".zip",)
STAGING_PREFIX = ".staging-"


# ── Validation ────────────────────────────────────────────────────────


def validate(path: str | Path, archive_extensions: Iterable[str] = DEFAULT_ARCHIVE_EXTENSIONS) -> bool:
    """A mod source is valid iff it exists and is a directory or an accepted archive."""
    path = Path(path)
    if not path.exists():
        return False
    if path.is_dir():
        return True
    return path.is_file() and path.suffix.lower() in {e.lower() for e in archive_extensions}


def mod_base_name(path: str | Path, archive_extensions: Iterable[str] = DEFAULT_ARCHIVE_EXTENSIONS) -> str:
    """Storage directory name for a mod source: the file name minus an archive suffix."""
    name = Path(path).name
    for ext in archive_extensions:
        if name.lower().endswith(ext.lower()) and len(name) > len(ext):
            return name[: -len(ext)]
    return name


# ── Storage ───────────────────────────────────────────────────────────


def _copy_tree(src: Path, dst: Path) -> int:
    count = 0
    for dirpath, dirnames, filenames in os.walk(src):
        rel = Path(dirpath).relative_to(src)
        for d in dirnames:
            (dst / rel / d).mkdir(parents=True, exist_ok=True)
        for f in filenames:
            out = dst / rel / f
            out.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(Path(dirpath) / f, out)
            count += 1
    return count


def move_to_storage(
    source_path: str | Path,
    storage_root: str | Path,
    profile_name: str,
    instance_name: str,
    archive_extensions: Iterable[str] = DEFAULT_ARCHIVE_EXTENSIONS,
) -> Path:
    """Copy or extract ``source_path`` into its storage slot and return the slot path.

    Raises ``InvalidSourceError`` for an unusable source, ``AlreadyExistsError``
    when the slot is taken and ``StorageIOError`` (or ``CorruptArchiveError``)
    when copying or extracting fails.
    """
    source_path = Path(source_path)
    archive_extensions = tuple(archive_extensions)

    if not validate(source_path, archive_extensions):
        raise InvalidSourceError(
            f"Not a mod folder or supported archive: {source_path}",
            f"Select a folder or one of: {', '.join(archive_extensions)}",
        )

    base_name = mod_base_name(source_path, archive_extensions)
    parent = Path(storage_root) / profile_name / instance_name
    dst_dir = parent / base_name
    if dst_dir.exists():
        raise AlreadyExistsError(
            f"Mod '{base_name}' already exists in storage ({dst_dir})",
            "Choose a different mod, or remove the installed one first.",
        )

    try:
        parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=STAGING_PREFIX, dir=parent))
    except OSError as exc:
        raise StorageIOError(f"Cannot create mod storage in {parent}", exc) from exc

    try:
        if source_path.is_dir():
            _log.info("Copying mod folder %s to %s", source_path, dst_dir)
            try:
                count = _copy_tree(source_path, staging)
            except OSError as exc:
                raise StorageIOError(f"Copying {source_path.name} failed", exc) from exc
        else:
            _log.info("Extracting mod archive %s to %s", source_path, dst_dir)
            count = extract_archive(source_path, staging)

        try:
            os.rename(staging, dst_dir)
        except OSError as exc:
            raise StorageIOError(f"Cannot move staged mod into {dst_dir}", exc) from exc
    except Exception:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    _log.info("Stored mod '%s' (%d file(s))", base_name, count)
    return dst_dir


def delete_storage(storage_path: str | Path):
    """Remove a mod's storage directory. Missing directories are not an error."""
    storage_path = Path(storage_path)
    if not storage_path.exists():
        _log.debug("Mod storage already gone: %s", storage_path)
        return
    try:
        shutil.rmtree(storage_path)
    except OSError as exc:
        raise StorageIOError(f"Failed to remove mod directory {storage_path}", exc) from exc
    _log.info("Removed mod storage %s", storage_path)


# ── Records ───────────────────────────────────────────────────────────


def build_mod_record(
    storage_path: str | Path, name: Optional[str] = None, enabled: bool = True
) -> ModRecord:
    """Walk a stored mod and tag every entry with the mod's name."""
    storage_path = Path(storage_path)
    name = name or storage_path.name
    files = snapshot_directory(storage_path, owning_mod=name)
    return ModRecord(name=name, enabled=enabled, storage_path=storage_path, files=files)


def install_mod(
    source_path: str | Path,
    storage_root: str | Path,
    profile_name: str,
    instance_name: str,
    archive_extensions: Iterable[str] = DEFAULT_ARCHIVE_EXTENSIONS,
) -> ModRecord:
    """``move_to_storage`` followed by ``build_mod_record``."""
    dst_dir = move_to_storage(
        source_path, storage_root, profile_name, instance_name, archive_extensions
    )
    return build_mod_record(dst_dir)
