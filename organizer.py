"""
Gothic Organizer - Orchestration layer

Sits between a front end (CLI or GUI) and the engine. It owns the explicit
application context (profiles, active profile/instance, preferences) and
converts engine errors into ``(ok, message)`` results for the user.

Workflow:
    1. load() to read preferences, the built-in profiles and the last session
    2. switch_profile() / set_game_dir() / add_instance() / select_instance()
    3. add_mod() / toggle_mod() / move_mod() / remove_mod() to manage mods
    4. save() before exit (or rely on switch_profile() committing the old one)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

import mod_installer
import overlay_engine
from file_records import FileRecord
from instance_store import (
    Instance,
    InstanceState,
    Profile,
    directory_entries,
    instance_state,
    toggle_file,
)
from organizer_errors import (
    InconsistentStateError,
    NotFoundError,
    OrganizerError,
)
from profile_store import (
    SessionDoc,
    load_profile,
    load_session,
    save_profile,
    save_session,
)
from settings import DEFAULT_PROFILES, Preferences, load_preferences, save_preferences

_log = logging.getLogger(__name__)


@dataclass
class Context:
    """The active profile and instance an operation works on."""

    profile: Profile
    instance: Instance

    @property
    def base_path(self) -> Optional[Path]:
        return self.profile.base_path


class Organizer:
    def __init__(
        self,
        data_dir: str | Path,
        preferences: Optional[Preferences] = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.data_dir = Path(data_dir)
        self.preferences = preferences or load_preferences(self.data_dir)
        self._log_cb = log_callback or print

        # Runtime state
        self.profiles: dict[str, Profile] = {}
        self.active_profile: Optional[str] = None
        self.active_instance: Optional[str] = None

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    def _fail(self, action: str, exc: OrganizerError) -> tuple[bool, str]:
        if isinstance(exc, (NotFoundError, InconsistentStateError)):
            _log.warning("%s: %s", action, exc.message)
        else:
            _log.error("%s: %s", action, exc.message)
        self.log(f"{action} failed: {exc.message}")
        return False, exc.user_message()

    # ── Context ───────────────────────────────────────────────────────

    @property
    def mod_storage_dir(self) -> Path:
        return self.preferences.storage_dir(self.data_dir)

    def current_profile(self) -> Profile:
        profile = self.profiles.get(self.active_profile) if self.active_profile else None
        if profile is None:
            raise InconsistentStateError("No active profile")
        return profile

    def context(self) -> Context:
        profile = self.current_profile()
        instance = profile.instances.get(self.active_instance) if self.active_instance else None
        if instance is None:
            raise InconsistentStateError(f"No active instance in profile '{profile.name}'")
        return Context(profile, instance)

    def active_context(self) -> Context:
        """Like ``context`` but also require a game directory and a snapshot."""
        ctx = self.context()
        if self.state() != InstanceState.ACTIVE:
            raise InconsistentStateError(
                f"Instance '{ctx.instance.name}' is not active",
                f"Set the {ctx.profile.name} game directory first.",
            )
        return ctx

    def state(self) -> InstanceState:
        profile = self.profiles.get(self.active_profile) if self.active_profile else None
        return instance_state(profile, self.active_instance)

    # ── Load / Save ───────────────────────────────────────────────────

    def load(self):
        for name in DEFAULT_PROFILES:
            self.profiles[name] = load_profile(name, self.data_dir) or Profile(name=name)
        for entry in sorted(self.data_dir.iterdir()) if self.data_dir.is_dir() else []:
            if entry.is_dir() and entry.name not in self.profiles:
                profile = load_profile(entry.name, self.data_dir)
                if profile is not None:
                    self.profiles[profile.name] = profile

        session = load_session(self.data_dir)
        if session.active_profile in self.profiles:
            self.active_profile = session.active_profile
            if session.active_instance in self.profiles[session.active_profile].instances:
                self.active_instance = session.active_instance
                try:
                    self._activate()
                except OrganizerError as exc:
                    _log.warning("Could not restore instance '%s': %s", self.active_instance, exc.message)
        self.log(f"Loaded {len(self.profiles)} profile(s)")

    def save(self) -> tuple[bool, str]:
        """Write every profile and the session. Blocking; errors are reported."""
        try:
            for profile in self.profiles.values():
                if profile.base_path is not None or profile.instances:
                    save_profile(profile, self.data_dir)
            save_session(
                SessionDoc(active_profile=self.active_profile, active_instance=self.active_instance),
                self.data_dir,
            )
        except OrganizerError as exc:
            return self._fail("Save", exc)
        return True, "Saved"

    def _activate(self):
        """Snapshot the active instance if it has not been yet, then reload its mods."""
        if self.state() != InstanceState.SELECTED_UNSNAPSHOTTED:
            return
        ctx = self.context()
        ctx.instance.store.take_snapshot(ctx.base_path)
        overlay_engine.reload_mods(ctx.instance.store, ctx.base_path)

    def update_preferences(self, **changes) -> tuple[bool, str]:
        """Validate and persist changed preferences; None values are left alone."""
        changes = {k: v for k, v in changes.items() if v is not None}
        try:
            preferences = Preferences.model_validate({**self.preferences.model_dump(), **changes})
            save_preferences(preferences, self.data_dir)
        except ValidationError as exc:
            reason = exc.errors()[0]["msg"]
            _log.warning("Rejected preferences %s: %s", changes, reason)
            return False, f"Invalid preferences: {reason}"
        except OrganizerError as exc:
            return self._fail("Save preferences", exc)

        self.preferences = preferences
        self.log("Preferences saved")
        return True, "Preferences saved"

    # ── Profiles & Instances ──────────────────────────────────────────

    def switch_profile(self, profile_name: str) -> tuple[bool, str]:
        if profile_name not in self.profiles:
            return self._fail("Switch profile", NotFoundError(f"No profile named '{profile_name}'"))

        if self.active_profile and self.active_profile in self.profiles:
            try:
                save_profile(self.profiles[self.active_profile], self.data_dir)
            except OrganizerError as exc:
                return self._fail("Switch profile", exc)

        self.active_profile = profile_name
        self.active_instance = None
        self.log(f"Switched to profile: {profile_name}")
        return True, f"Active profile: {profile_name}"

    def set_game_dir(self, path: str | Path) -> tuple[bool, str]:
        try:
            profile = self.current_profile()
            path = Path(path)
            if not path.is_dir():
                raise NotFoundError(
                    f"Game directory does not exist: {path}",
                    f"Select the {profile.name} installation folder.",
                )
            profile.base_path = path
            for instance in profile.instances.values():
                instance.store.reset()
            self._activate()
        except OrganizerError as exc:
            return self._fail("Set game directory", exc)

        self.log(f"Game directory for {profile.name}: {path}")
        return True, f"Game directory set to {path}"

    def add_instance(self, instance_name: str) -> tuple[bool, str]:
        instance_name = instance_name.strip()
        if not instance_name:
            self.log("Instance name is empty")
            return False, "Enter a name for the new instance."
        try:
            profile = self.current_profile()
            profile.add_instance(Instance(name=instance_name))
        except OrganizerError as exc:
            return self._fail("Add instance", exc)

        self.log(f"Added instance: {instance_name}")
        return self.select_instance(instance_name)

    def remove_instance(self, instance_name: str) -> tuple[bool, str]:
        try:
            profile = self.current_profile()
            profile.remove_instance(instance_name)
        except OrganizerError as exc:
            return self._fail("Remove instance", exc)

        if self.active_instance == instance_name:
            self.active_instance = None
        self.log(f"Removed instance: {instance_name}")
        return True, f"Removed instance {instance_name}"

    def select_instance(self, instance_name: str) -> tuple[bool, str]:
        try:
            profile = self.current_profile()
            profile.get_instance(instance_name)
            self.active_instance = instance_name
            self._activate()
        except OrganizerError as exc:
            return self._fail("Select instance", exc)

        self.log(f"Switched to instance: {instance_name}")
        return True, f"Active instance: {instance_name}"

    # ── Mods ──────────────────────────────────────────────────────────

    def add_mod(self, source_path: str | Path) -> tuple[bool, str]:
        source_path = Path(source_path)
        self.log(f"Adding mod from {source_path}...")
        try:
            ctx = self.context()
            mod = mod_installer.install_mod(
                source_path,
                self.mod_storage_dir,
                ctx.profile.name,
                ctx.instance.name,
                self.preferences.archive_extensions,
            )
            try:
                overlay_engine.add_mod(ctx.instance.store, mod, ctx.base_path)
            except OrganizerError:
                mod_installer.delete_storage(mod.storage_path)
                raise
        except OrganizerError as exc:
            return self._fail("Add mod", exc)

        self.log(f"  Installed '{mod.name}' ({len(mod.files)} entr(ies))")
        return True, f"Installed {mod.name}"

    def toggle_mod(self, mod_name: str, enabled: bool) -> tuple[bool, str]:
        try:
            ctx = self.active_context()
            changed = overlay_engine.toggle_mod(ctx.instance.store, mod_name, enabled, ctx.base_path)
        except OrganizerError as exc:
            return self._fail("Toggle mod", exc)

        word = "Enabled" if enabled else "Disabled"
        if not changed:
            return True, f"{mod_name} is already {word.lower()}"
        self.log(f"{word} '{mod_name}'")
        return True, f"{word} {mod_name}"

    def remove_mod(self, mod_name: str) -> tuple[bool, str]:
        try:
            ctx = self.context()
            overlay_engine.remove_mod(ctx.instance.store, mod_name, ctx.base_path)
        except OrganizerError as exc:
            return self._fail("Remove mod", exc)

        self.log(f"Removed '{mod_name}'")
        return True, f"Removed {mod_name}"

    def move_mod(self, mod_name: str, index: int) -> tuple[bool, str]:
        try:
            ctx = self.context()
            overlay_engine.move_mod(ctx.instance.store, mod_name, index, ctx.base_path)
        except OrganizerError as exc:
            return self._fail("Move mod", exc)
        return True, f"Moved {mod_name}"

    def reload_mods(self) -> tuple[bool, str]:
        try:
            ctx = self.active_context()
            overlay_engine.reload_mods(ctx.instance.store, ctx.base_path)
        except OrganizerError as exc:
            return self._fail("Reload mods", exc)
        return True, "Reloaded mods"

    # ── Files ─────────────────────────────────────────────────────────

    def toggle_file(self, path: str | Path) -> tuple[bool, str]:
        try:
            ctx = self.context()
            enabled = toggle_file(ctx.instance.store, path)
        except OrganizerError as exc:
            return self._fail("Toggle file", exc)
        return True, f"{'Enabled' if enabled else 'Disabled'} {Path(path).name}"

    def directory_entries(self, directory: str | Path | None = None) -> list[tuple[Path, FileRecord]]:
        """Entries of ``directory`` (default: the game directory) for display."""
        try:
            ctx = self.context()
        except InconsistentStateError as exc:
            _log.warning("%s", exc.message)
            return []
        if ctx.base_path is None:
            return []
        return directory_entries(ctx.instance.store, directory or ctx.base_path)

    def conflicts(self) -> dict[Path, list[str]]:
        try:
            ctx = self.context()
        except InconsistentStateError as exc:
            _log.warning("%s", exc.message)
            return {}
        return overlay_engine.conflicts(ctx.instance.store)
