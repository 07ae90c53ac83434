"""
Value types tracked by the overlay engine.

A ``FileRecord`` describes one path in a game's logical directory tree and
where its bytes come from. A ``ModRecord`` groups the records one installed
mod contributes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Optional


@dataclass(frozen=True)
class FileRecord:
    """One tracked filesystem entry."""

    enabled: bool
    source_path: Path  # Where the bytes live (base install or mod storage)
    target_path: Path  # Logical location inside the game directory
    owning_mod: Optional[str] = None  # None = base-game file

    @property
    def is_base(self) -> bool:
        return self.owning_mod is None

    @property
    def origin(self) -> tuple[Path, Path, Optional[str]]:
        """Identity of this contribution, ignoring the enabled flag."""
        return self.source_path, self.target_path, self.owning_mod

    def with_target_path(self, target_path: Path) -> FileRecord:
        return replace(self, target_path=Path(target_path))

    def with_enabled(self, enabled: bool) -> FileRecord:
        return replace(self, enabled=enabled)


@dataclass
class ModRecord:
    """An installed mod.

    ``files`` is keyed by the mod's own source path inside ``storage_path``;
    records are re-rooted onto the game directory only when applied.
    """

    name: str
    enabled: bool
    storage_path: Path
    files: dict[Path, FileRecord] = field(default_factory=dict)

