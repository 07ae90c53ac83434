"""
Directory snapshot: turn a directory tree into FileRecords.

Used for the base game directory when an instance is first activated and for
a mod's storage directory when its ModRecord is built. Every entry below the
root is recorded, files and directories alike, hidden ones included.
Symlinks are never followed: a symlinked directory is recorded as a single
entry and not descended into.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Optional

from file_records import FileRecord
from organizer_errors import StorageIOError

_log = logging.getLogger(__name__)


def snapshot_directory(
    root: str | Path, owning_mod: Optional[str] = None
) -> dict[Path, FileRecord]:
    """Walk ``root`` and return ``{path: FileRecord}`` for every entry below it.

    Each record is enabled with ``source_path == target_path == path``.
    Raises ``StorageIOError`` when ``root`` itself cannot be read; unreadable
    subdirectories are skipped with a warning.
    """
    root = Path(root)
    try:
        with os.scandir(root):
            pass
    except OSError as exc:
        raise StorageIOError(f"Cannot read directory {root}", exc) from exc

    def _on_error(exc: OSError):
        _log.warning("Skipping unreadable directory %s: %s", exc.filename, exc.strerror)

    records: dict[Path, FileRecord] = {}
    for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error, followlinks=False):
        current = Path(dirpath)
        for name in dirnames + filenames:
            path = current / name
            records[path] = FileRecord(
                enabled=True,
                source_path=path,
                target_path=path,
                owning_mod=owning_mod,
            )

    _log.debug("Snapshot of %s: %d entr(ies)", root, len(records))
    return records
