"""
Tests for the overlay resolution engine: apply/unapply, reload, toggling,
removal, reordering and conflict listing.
"""

import pytest

import overlay_engine
from file_records import FileRecord, ModRecord
from instance_store import InstanceStore
from organizer_errors import AlreadyExistsError, NotFoundError, StorageIOError


def snapshot_state(store):
    return dict(store.active_files), {k: list(v) for k, v in store.overlay_stack.items()}


def owner(store, path):
    return store.active_files[path].owning_mod


# ── scenario ──────────────────────────────────────────────────────────────────

def test_hd_textures_scenario(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    assert store.active_files[textures] == FileRecord(
        enabled=True, source_path=textures, target_path=textures, owning_mod=None
    )

    mod = make_mod("HDTextures", {"data/textures.vdf": "hd"})
    overlay_engine.add_mod(store, mod, game_dir)

    assert owner(store, textures) == "HDTextures"
    assert store.active_files[textures].source_path == mod.storage_path / "data" / "textures.vdf"
    assert store.active_files[textures].target_path == textures

    assert overlay_engine.toggle_mod(store, "HDTextures", False, game_dir)

    assert owner(store, textures) is None
    assert store.active_files[textures].source_path == textures
    assert not mod.enabled


# ── apply / unapply ───────────────────────────────────────────────────────────

def test_apply_then_unapply_restores_sole_contributor(game_dir, store, make_mod):
    before = dict(store.active_files)
    mod = make_mod("A", {"data/textures.vdf": "a", "data/new.vdf": "new"})

    overlay_engine.apply_mod(store, mod, game_dir)
    assert owner(store, game_dir / "data" / "new.vdf") == "A"

    overlay_engine.unapply_mod(store, mod, game_dir)

    assert store.active_files == before
    assert store.overlay_stack == {}
    assert game_dir / "data" / "new.vdf" not in store.active_files


def test_unapply_is_idempotent(game_dir, store, make_mod):
    mod = make_mod("A", {"data/textures.vdf": "a", "Textures/extra.tex": "x"})
    overlay_engine.apply_mod(store, mod, game_dir)
    overlay_engine.unapply_mod(store, mod, game_dir)
    first = snapshot_state(store)

    overlay_engine.unapply_mod(store, mod, game_dir)

    assert snapshot_state(store) == first
    assert owner(store, game_dir / "data" / "textures.vdf") is None


def test_apply_records_displaced_and_new_records(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    base = store.active_files[textures]
    mod = make_mod("A", {"data/textures.vdf": "a"})

    overlay_engine.apply_mod(store, mod, game_dir)

    stack = store.overlay_stack[textures]
    assert stack[0] == base
    assert stack[-1] == store.active_files[textures]
    assert len(stack) == 2


def test_second_override_does_not_duplicate_history(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    a = make_mod("A", {"data/textures.vdf": "a"})
    b = make_mod("B", {"data/textures.vdf": "b"})

    overlay_engine.apply_mod(store, a, game_dir)
    overlay_engine.apply_mod(store, b, game_dir)

    owners = [r.owning_mod for r in store.overlay_stack[textures]]
    assert owners == [None, "A", "B"]


def test_unapply_lower_mod_keeps_top_mod_active(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    a = make_mod("A", {"data/textures.vdf": "a"})
    b = make_mod("B", {"data/textures.vdf": "b"})
    overlay_engine.apply_mod(store, a, game_dir)
    overlay_engine.apply_mod(store, b, game_dir)

    overlay_engine.unapply_mod(store, a, game_dir)
    assert owner(store, textures) == "B"

    overlay_engine.unapply_mod(store, b, game_dir)
    assert owner(store, textures) is None


def test_apply_skips_paths_outside_storage(game_dir, store, tmp_path):
    stray = tmp_path / "elsewhere" / "file.txt"
    mod = ModRecord(
        name="Broken",
        enabled=True,
        storage_path=tmp_path / "mods" / "Broken",
        files={stray: FileRecord(True, stray, stray, "Broken")},
    )
    before = snapshot_state(store)

    overlay_engine.apply_mod(store, mod, game_dir)

    assert snapshot_state(store) == before


def test_operations_on_inactive_store_are_noops(game_dir, make_mod):
    store = InstanceStore()
    mod = make_mod("A", {"data/textures.vdf": "a"})
    store.mods.append(mod)

    overlay_engine.apply_mod(store, mod, game_dir)
    overlay_engine.reload_mods(store, game_dir)
    assert store.active_files == {}

    snapped = InstanceStore()
    snapped.take_snapshot(game_dir)
    before = snapshot_state(snapped)
    overlay_engine.apply_mod(snapped, mod, None)
    assert snapshot_state(snapped) == before

    assert overlay_engine.toggle_mod(store, "A", False, game_dir) is False
    assert mod.enabled


# ── reload ────────────────────────────────────────────────────────────────────

def test_reload_later_installed_mod_wins(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    overlay_engine.add_mod(store, make_mod("A", {"data/textures.vdf": "a"}), game_dir)
    overlay_engine.add_mod(store, make_mod("B", {"data/textures.vdf": "b"}), game_dir)

    overlay_engine.reload_mods(store, game_dir)

    assert owner(store, textures) == "B"
    assert [r.owning_mod for r in store.overlay_stack[textures]] == [None, "A", "B"]


def test_reload_skips_disabled_mods_and_restores_base(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    a = make_mod("A", {"data/textures.vdf": "a", "data/only_a.vdf": "a"})
    overlay_engine.add_mod(store, a, game_dir)

    a.enabled = False
    overlay_engine.reload_mods(store, game_dir)

    assert owner(store, textures) is None
    assert game_dir / "data" / "only_a.vdf" not in store.active_files
    assert store.overlay_stack == {}


def test_enabling_lower_priority_mod_keeps_later_mod_on_top(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    overlay_engine.add_mod(store, make_mod("A", {"data/textures.vdf": "a"}, enabled=False), game_dir)
    overlay_engine.add_mod(store, make_mod("B", {"data/textures.vdf": "b"}), game_dir)

    overlay_engine.toggle_mod(store, "A", True, game_dir)

    assert owner(store, textures) == "B"
    overlay_engine.toggle_mod(store, "B", False, game_dir)
    assert owner(store, textures) == "A"


def test_three_mods_disabled_out_of_order(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    for name in ("A", "B", "C"):
        overlay_engine.add_mod(store, make_mod(name, {"data/textures.vdf": name}), game_dir)
    assert owner(store, textures) == "C"

    overlay_engine.toggle_mod(store, "B", False, game_dir)
    assert owner(store, textures) == "C"

    overlay_engine.toggle_mod(store, "C", False, game_dir)
    assert owner(store, textures) == "A"

    overlay_engine.toggle_mod(store, "A", False, game_dir)
    assert owner(store, textures) is None
    assert store.overlay_stack == {}


# ── toggle / add / remove / move ──────────────────────────────────────────────

def test_toggle_to_current_state_is_noop(game_dir, store, make_mod):
    overlay_engine.add_mod(store, make_mod("A", {"data/textures.vdf": "a"}), game_dir)
    before = snapshot_state(store)

    assert overlay_engine.toggle_mod(store, "A", True, game_dir) is False
    assert snapshot_state(store) == before


def test_toggle_unknown_mod_raises(game_dir, store):
    with pytest.raises(NotFoundError):
        overlay_engine.toggle_mod(store, "Missing", True, game_dir)


def test_add_mod_rejects_duplicate_name(game_dir, store, make_mod):
    overlay_engine.add_mod(store, make_mod("A", {"data/textures.vdf": "a"}), game_dir)

    with pytest.raises(AlreadyExistsError):
        overlay_engine.add_mod(store, make_mod("A", {"data/other.vdf": "a"}), game_dir)
    assert len(store.mods) == 1


def test_remove_mod_restores_base_and_deletes_storage(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    new_file = game_dir / "data" / "new.vdf"
    mod = make_mod("A", {"data/textures.vdf": "a", "data/new.vdf": "n"})
    overlay_engine.add_mod(store, mod, game_dir)

    removed = overlay_engine.remove_mod(store, "A", game_dir)

    assert removed is mod
    assert store.mods == []
    assert owner(store, textures) is None
    assert new_file not in store.active_files
    assert not mod.storage_path.exists()
    assert all(r.owning_mod != "A" for stack in store.overlay_stack.values() for r in stack)


def test_remove_disabled_mod_purges_its_history(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    overlay_engine.add_mod(store, make_mod("A", {"data/textures.vdf": "a"}), game_dir)
    overlay_engine.add_mod(store, make_mod("B", {"data/textures.vdf": "b"}), game_dir)
    overlay_engine.toggle_mod(store, "A", False, game_dir)

    overlay_engine.remove_mod(store, "A", game_dir)

    assert owner(store, textures) == "B"
    assert [r.owning_mod for r in store.overlay_stack[textures]] == [None, "B"]


def test_remove_mod_keeps_record_when_storage_delete_fails(game_dir, store, make_mod, monkeypatch):
    mod = make_mod("A", {"data/textures.vdf": "a"})
    overlay_engine.add_mod(store, mod, game_dir)

    def fail(path):
        raise StorageIOError(f"Failed to remove mod directory {path}", PermissionError("denied"))

    monkeypatch.setattr(overlay_engine, "delete_storage", fail)

    with pytest.raises(StorageIOError):
        overlay_engine.remove_mod(store, "A", game_dir)
    assert store.find_mod("A") is mod
    assert mod.storage_path.exists()


def test_move_mod_changes_priority(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    overlay_engine.add_mod(store, make_mod("A", {"data/textures.vdf": "a"}), game_dir)
    overlay_engine.add_mod(store, make_mod("B", {"data/textures.vdf": "b"}), game_dir)

    overlay_engine.move_mod(store, "B", 0, game_dir)

    assert [m.name for m in store.mods] == ["B", "A"]
    assert owner(store, textures) == "A"


def test_conflicts_lists_owners_in_priority_order(game_dir, store, make_mod):
    textures = game_dir / "data" / "textures.vdf"
    overlay_engine.add_mod(store, make_mod("A", {"data/textures.vdf": "a", "data/a.vdf": "a"}), game_dir)
    overlay_engine.add_mod(store, make_mod("B", {"data/textures.vdf": "b"}), game_dir)

    result = overlay_engine.conflicts(store)

    assert result[textures] == ["<base>", "A", "B"]
    assert game_dir / "data" not in result
    assert game_dir / "data" / "a.vdf" not in result
