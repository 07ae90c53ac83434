#!/usr/bin/env python3
"""Gothic Organizer - Entry Point"""

import argparse
import faulthandler
import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from organizer import Organizer
from settings import APP_NAME, APP_TITLE, APP_VERSION, default_data_dir, load_preferences


def setup_logging(log_dir: Path) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / f"{APP_NAME}.log"

    handler = RotatingFileHandler(
        log_file,
        maxBytes=1 * 1024 * 1024,  # 1 MB
        backupCount=2,
        encoding="utf-8",
    )
    handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"))

    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    logger.addHandler(handler)
    return logger


def install_crash_handler(logger: logging.Logger, log_dir: Path):
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception

    # faulthandler can't go through logging after a hard crash
    crash_file = log_dir / "crash.log"
    faulthandler.enable(open(crash_file, "w"), all_threads=True)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog=APP_NAME, description=f"{APP_TITLE} {APP_VERSION}")
    parser.add_argument("--data-dir", help="Where profiles, settings and logs live")
    parser.add_argument("--mod-storage-dir", help="Where installed mods are stored")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("profiles", help="List profiles and their instances")

    p = sub.add_parser("config", help="Show or change preferences")
    p.add_argument("--theme", dest="theme_name")
    p.add_argument("--archive-extensions", nargs="+", metavar="EXT")
    p.add_argument("--storage-dir", dest="storage_dir")

    p = sub.add_parser("set-game-dir", help="Set a profile's game directory")
    p.add_argument("profile")
    p.add_argument("path")

    for name, help_text in (
        ("add-instance", "Create an instance and snapshot the game directory"),
        ("remove-instance", "Delete an instance"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("profile")
        p.add_argument("instance")

    def instance_command(name: str, help_text: str) -> argparse.ArgumentParser:
        p = sub.add_parser(name, help=help_text)
        p.add_argument("profile")
        p.add_argument("instance")
        return p

    instance_command("add-mod", "Install a mod folder or archive").add_argument("source")
    instance_command("enable-mod", "Enable an installed mod").add_argument("mod")
    instance_command("disable-mod", "Disable an installed mod").add_argument("mod")
    instance_command("remove-mod", "Uninstall a mod and delete its storage").add_argument("mod")
    p = instance_command("move-mod", "Change a mod's override priority")
    p.add_argument("mod")
    p.add_argument("index", type=int)
    instance_command("reload", "Recompute the effective files from scratch")
    instance_command("ls", "List the effective files of a directory").add_argument(
        "directory", nargs="?"
    )
    instance_command("conflicts", "Show paths provided by more than one source")
    return parser


def _print_profiles(organizer: Organizer):
    for profile in organizer.profiles.values():
        base = profile.base_path or "(game directory not set)"
        print(f"{profile.name}: {base}")
        for instance in profile.instances.values():
            print(f"  {instance.name}")
            for i, mod in enumerate(instance.store.mods):
                state = "on " if mod.enabled else "off"
                print(f"    {i:>3} [{state}] {mod.name}")


def run(args: argparse.Namespace, organizer: Organizer) -> tuple[bool, str]:
    if args.command == "profiles":
        _print_profiles(organizer)
        return True, ""
    if args.command == "config":
        if args.theme_name is None and args.archive_extensions is None and args.storage_dir is None:
            print(organizer.preferences.model_dump_json(indent=2))
            return True, ""
        return organizer.update_preferences(
            theme_name=args.theme_name,
            archive_extensions=args.archive_extensions,
            mod_storage_dir=args.storage_dir,
        )

    ok, msg = organizer.switch_profile(args.profile)
    if not ok:
        return ok, msg

    if args.command == "set-game-dir":
        return organizer.set_game_dir(args.path)
    if args.command == "add-instance":
        return organizer.add_instance(args.instance)
    if args.command == "remove-instance":
        return organizer.remove_instance(args.instance)

    ok, msg = organizer.select_instance(args.instance)
    if not ok:
        return ok, msg

    if args.command == "add-mod":
        return organizer.add_mod(args.source)
    if args.command == "enable-mod":
        return organizer.toggle_mod(args.mod, True)
    if args.command == "disable-mod":
        return organizer.toggle_mod(args.mod, False)
    if args.command == "remove-mod":
        return organizer.remove_mod(args.mod)
    if args.command == "move-mod":
        return organizer.move_mod(args.mod, args.index)
    if args.command == "reload":
        return organizer.reload_mods()
    if args.command == "ls":
        for path, record in organizer.directory_entries(args.directory):
            owner = record.owning_mod or "base"
            flag = " " if record.enabled else "-"
            print(f"{flag} {path.name:<40} {owner}")
        return True, ""
    if args.command == "conflicts":
        for path, owners in organizer.conflicts().items():
            print(f"{path}: {' < '.join(owners)}")
        return True, ""
    return False, f"Unknown command: {args.command}"


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    data_dir = Path(args.data_dir).expanduser() if args.data_dir else default_data_dir()

    logger = setup_logging(data_dir)
    install_crash_handler(logger, data_dir)
    logger.info("Starting %s %s (%s)", APP_TITLE, APP_VERSION, args.command)

    preferences = load_preferences(data_dir)
    if args.mod_storage_dir:
        preferences.mod_storage_dir = Path(args.mod_storage_dir).expanduser()

    organizer = Organizer(data_dir, preferences, log_callback=logger.info)
    organizer.load()

    ok, msg = run(args, organizer)
    if ok and args.command not in ("profiles", "config"):
        ok, save_msg = organizer.save()
        if not ok:
            msg = save_msg
    if msg:
        print(msg, file=sys.stdout if ok else sys.stderr)
    return 0 if ok else 1


if __name__ == "__main__":
    sys.exit(main())
