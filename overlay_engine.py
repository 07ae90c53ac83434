"""
Gothic Organizer - Overlay resolution engine.

Applies and un-applies a mod's FileRecords against an InstanceStore while
keeping a per-path overlay stack, so that disabling a mod restores exactly
what it displaced.

    apply_mod     insert the mod's records, pushing displaced ones on the stack
    unapply_mod   remove the active records, restore the next stack entry
    reload_mods   roll back to base records and re-apply enabled mods in order

apply/unapply are the fast path. They are exact for adding or removing the
highest-priority mod; ``toggle_mod`` and ``move_mod`` fall back to a
full reload whenever the priority order could be affected.

All functions take the store and the profile's base path explicitly. A store
that is not ACTIVE (no base path, or not snapshotted yet) is left untouched.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Optional

from file_records import FileRecord, ModRecord
from instance_store import InstanceStore
from mod_installer import delete_storage
from organizer_errors import AlreadyExistsError

_log = logging.getLogger(__name__)


def _is_active(store: InstanceStore, base_path: Optional[Path], action: str) -> bool:
    if base_path is None or not store.snapshotted:
        _log.warning("Cannot %s: instance is not active (base path set and snapshotted)", action)
        return False
    return True


def _mod_targets(mod: ModRecord, base_path: Path) -> Iterator[tuple[Path, FileRecord]]:
    """Yield ``(target, record)`` for every file of ``mod``, re-rooted onto ``base_path``."""
    for internal_path, record in mod.files.items():
        try:
            relative = Path(internal_path).relative_to(mod.storage_path)
        except ValueError:
            _log.debug("Skipping %s: not under %s", internal_path, mod.storage_path)
            continue
        if not relative.parts:
            continue
        yield Path(base_path) / relative, record


def _stack_contains(stack: list[FileRecord], record: FileRecord) -> bool:
    return any(r.origin == record.origin for r in stack)


# ── Incremental apply / unapply ───────────────────────────────────────


def apply_mod(store: InstanceStore, mod: ModRecord, base_path: Optional[Path]):
    """Make ``mod``'s files the active ones for every path it contributes."""
    if not _is_active(store, base_path, f"apply '{mod.name}'"):
        return

    displaced = 0
    for target, record in _mod_targets(mod, base_path):
        new_record = record.with_target_path(target)
        old_record = store.active_files.get(target)
        store.active_files[target] = new_record

        if old_record is None or old_record.origin == new_record.origin:
            continue

        stack = store.overlay_stack.setdefault(target, [])
        if not _stack_contains(stack, old_record):
            stack.append(old_record)
        stack.append(new_record)
        displaced += 1

    _log.debug("Applied '%s' (%d overridden path(s))", mod.name, displaced)


def unapply_mod(store: InstanceStore, mod: ModRecord, base_path: Optional[Path]):
    """Remove ``mod``'s paths from the active set, restoring what they displaced.

    Idempotent: paths that are already gone, or that another contributor now
    owns, are not removed again.
    """
    if not _is_active(store, base_path, f"unapply '{mod.name}'"):
        return

    for target, record in _mod_targets(mod, base_path):
        active = store.active_files.get(target)
        if active is None:
            _log.debug("Nothing active at %s, skipping", target)
            continue

        stack = store.overlay_stack.get(target)
        if active.owning_mod != mod.name:
            # Another contributor is on top; only forget this mod's history entry.
            if stack is not None:
                origin = record.with_target_path(target).origin
                stack[:] = [r for r in stack if r.origin != origin]
                if not stack:
                    del store.overlay_stack[target]
            continue

        del store.active_files[target]
        if stack is None:
            continue

        # Mods are toggled independently, so the removed record may sit
        # anywhere in the history, not only at the tail.
        stack[:] = [r for r in stack if r.origin != active.origin]
        if stack:
            store.active_files[target] = stack.pop()
        if not stack:
            del store.overlay_stack[target]

    _log.debug("Unapplied '%s'", mod.name)


# ── Reload ────────────────────────────────────────────────────────────


def _base_record(stack: list[FileRecord]) -> Optional[FileRecord]:
    return next((r for r in stack if r.is_base), None)


def reload_mods(store: InstanceStore, base_path: Optional[Path]):
    """Recompute the effective file set from base records and enabled mods.

    Every mod-owned active path is rolled back to its base record (or dropped
    when the base game has none), history is cleared, and enabled mods are
    applied again from lowest to highest priority.
    """
    if not _is_active(store, base_path, "reload mods"):
        return

    for target, record in list(store.active_files.items()):
        if record.is_base:
            continue
        base = _base_record(store.overlay_stack.get(target, []))
        if base is None:
            del store.active_files[target]
        else:
            store.active_files[target] = base

    store.overlay_stack.clear()

    enabled = [m for m in store.mods if m.enabled]
    for mod in enabled:
        apply_mod(store, mod, base_path)
    _log.info("Reloaded %d enabled mod(s)", len(enabled))


# ── Mod list operations ───────────────────────────────────────────────


def _overlaps(mod: ModRecord, others: list[ModRecord], base_path: Path) -> bool:
    targets = {t for t, _ in _mod_targets(mod, base_path)}
    return any(
        t in targets for other in others for t, _ in _mod_targets(other, base_path)
    )


def _is_top_contributor(store: InstanceStore, mod: ModRecord, base_path: Path) -> bool:
    for target, _ in _mod_targets(mod, base_path):
        active = store.active_files.get(target)
        if active is not None and active.owning_mod != mod.name:
            return False
    return True


def toggle_mod(
    store: InstanceStore, mod_name: str, enabled: bool, base_path: Optional[Path]
) -> bool:
    """Enable or disable a mod. Returns False when nothing changed: the mod was
    already in that state, or the store is not active.

    Raises ``NotFoundError`` for an unknown mod.
    """
    mod = store.get_mod(mod_name)
    if mod.enabled == enabled:
        _log.debug("'%s' is already %s", mod_name, "enabled" if enabled else "disabled")
        return False
    if not _is_active(store, base_path, f"toggle '{mod_name}'"):
        return False

    index = store.mod_index(mod_name)
    if enabled:
        later = [m for m in store.mods[index + 1:] if m.enabled]
        incremental = not _overlaps(mod, later, base_path)
    else:
        incremental = _is_top_contributor(store, mod, base_path)

    mod.enabled = enabled
    if not incremental:
        _log.info("%s '%s' changes override order, reloading", "Enabling" if enabled else "Disabling", mod_name)
        reload_mods(store, base_path)
    elif enabled:
        _log.info("Enabling '%s'", mod_name)
        apply_mod(store, mod, base_path)
    else:
        _log.info("Disabling '%s'", mod_name)
        unapply_mod(store, mod, base_path)
    return True


def add_mod(store: InstanceStore, mod: ModRecord, base_path: Optional[Path]):
    """Append ``mod`` at the highest priority and apply it when enabled."""
    if store.find_mod(mod.name) is not None:
        raise AlreadyExistsError(
            f"A mod named '{mod.name}' is already installed in this instance",
            "Remove the existing mod first, or rename the new one.",
        )
    store.mods.append(mod)
    if mod.enabled:
        apply_mod(store, mod, base_path)
    _log.info("Added mod '%s' (%d entr(ies))", mod.name, len(mod.files))


def remove_mod(store: InstanceStore, mod_name: str, base_path: Optional[Path]) -> ModRecord:
    """Disable a mod, delete its storage and forget it.

    If deleting the storage fails the error propagates and the mod stays in
    the list, so its storage is never orphaned silently.
    """
    mod = store.get_mod(mod_name)
    toggle_mod(store, mod_name, False, base_path)
    delete_storage(mod.storage_path)

    store.mods.remove(mod)
    for target in list(store.overlay_stack):
        stack = [r for r in store.overlay_stack[target] if r.owning_mod != mod_name]
        if stack:
            store.overlay_stack[target] = stack
        else:
            del store.overlay_stack[target]

    _log.info("Removed mod '%s'", mod_name)
    return mod


def move_mod(store: InstanceStore, mod_name: str, index: int, base_path: Optional[Path]):
    """Move a mod to ``index`` in the priority order and recompute."""
    current = store.mod_index(mod_name)
    index = max(0, min(index, len(store.mods) - 1))
    if index == current:
        return
    mod = store.mods.pop(current)
    store.mods.insert(index, mod)
    _log.info("Moved '%s' to position %d", mod_name, index)
    reload_mods(store, base_path)


def conflicts(store: InstanceStore) -> dict[Path, list[str]]:
    """Paths with more than one contributor, mapped to owners lowest priority first.

    Base-game records are reported as ``"<base>"``. Directories are left out.
    """
    result: dict[Path, list[str]] = {}
    for target, stack in sorted(store.overlay_stack.items()):
        # A folder shipped by several sources only merges their contents.
        if all(record.source_path.is_dir() for record in stack):
            continue
        owners = []
        for record in stack:
            owner = record.owning_mod or "<base>"
            if owner not in owners:
                owners.append(owner)
        active = store.active_files.get(target)
        if active is not None:
            owner = active.owning_mod or "<base>"
            if owner in owners:
                owners.remove(owner)
            owners.append(owner)
        if len(owners) > 1:
            result[target] = owners
    return result
