"""
Archive collaborator: extract a mod archive into a directory.

``.zip`` is always available. ``.7z`` and ``.rar`` are handled by py7zr and
rarfile; they are only reached when the user enables those extensions in
the preferences (``Preferences.archive_extensions``).
"""

from __future__ import annotations

import logging
import shutil
import zipfile
import zlib
from pathlib import Path, PurePosixPath

import py7zr
import rarfile

from organizer_errors import CorruptArchiveError, InvalidSourceError, StorageIOError

_log = logging.getLogger(__name__)

SUPPORTED_EXTENSIONS = {".zip", ".7z", ".rar"}


def _safe_member_path(dest: Path, member: str) -> Path | None:
    """Map an archive member name to a path under ``dest``.

    Returns None for names that are absolute or climb out of ``dest``.
    """
    parts = PurePosixPath(member.replace("\\", "/")).parts
    if not parts or parts[0] == "/" or ".." in parts or ":" in parts[0]:
        return None
    return dest.joinpath(*parts)


def _extract_zip(filepath: Path, dest: Path) -> int:
    count = 0
    with zipfile.ZipFile(filepath, "r") as zf:
        for info in zf.infolist():
            out = _safe_member_path(dest, info.filename)
            if out is None:
                _log.warning("Skipping unsafe archive entry %r in %s", info.filename, filepath.name)
                continue
            if info.is_dir():
                out.mkdir(parents=True, exist_ok=True)
                continue
            out.parent.mkdir(parents=True, exist_ok=True)
            with zf.open(info) as src, open(out, "wb") as dst:
                shutil.copyfileobj(src, dst)
            count += 1
    return count


def _extract_7z(filepath: Path, dest: Path) -> int:
    with py7zr.SevenZipFile(filepath, "r") as sz:
        names = sz.getnames()
        unsafe = [n for n in names if _safe_member_path(dest, n) is None]
        if unsafe:
            _log.warning("Skipping %d unsafe archive entr(ies) in %s", len(unsafe), filepath.name)
        targets = [n for n in names if n not in unsafe]
        sz.extract(dest, targets=targets)
    return sum(1 for n in targets if (dest / n).is_file())


def _extract_rar(filepath: Path, dest: Path) -> int:
    count = 0
    with rarfile.RarFile(filepath, "r") as rf:
        for info in rf.infolist():
            out = _safe_member_path(dest, info.filename)
            if out is None:
                _log.warning("Skipping unsafe archive entry %r in %s", info.filename, filepath.name)
                continue
            if info.is_dir():
                out.mkdir(parents=True, exist_ok=True)
                continue
            out.parent.mkdir(parents=True, exist_ok=True)
            with rf.open(info) as src, open(out, "wb") as dst:
                shutil.copyfileobj(src, dst)
            count += 1
    return count


def extract_archive(filepath: str | Path, dest: str | Path) -> int:
    """Extract every entry of ``filepath`` into ``dest``, keeping relative paths.

    Returns the number of files written. Raises ``CorruptArchiveError`` when
    the archive cannot be read and ``StorageIOError`` when writing fails.
    """
    filepath = Path(filepath)
    dest = Path(dest)
    ext = filepath.suffix.lower()
    extractors = {".zip": _extract_zip, ".7z": _extract_7z, ".rar": _extract_rar}
    extractor = extractors.get(ext)
    if extractor is None:
        raise InvalidSourceError(f"Unsupported archive format: {ext}")

    _log.debug("Extracting %s to %s", filepath, dest)
    dest.mkdir(parents=True, exist_ok=True)
    try:
        count = extractor(filepath, dest)
    except (zipfile.BadZipFile, zlib.error, py7zr.Bad7zFile, rarfile.Error, EOFError) as exc:
        raise CorruptArchiveError(f"Cannot read archive {filepath.name}", exc) from exc
    except OSError as exc:
        raise StorageIOError(f"Extraction of {filepath.name} failed", exc) from exc

    _log.debug("Extracted %d file(s) from %s", count, filepath.name)
    return count
