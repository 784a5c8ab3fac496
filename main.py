#!/usr/bin/env python3
"""modkeeper - Entry Point"""

from __future__ import annotations

import argparse
import logging
import sys
import traceback
from logging.handlers import RotatingFileHandler
from pathlib import Path

from mod_errors import ConfigError, ModManagerError, describe
from package_id import PackageId
from profile_store import DEFAULT_GAME, AppContext, ProfileStore, default_config_root
from snapshot_cache import create_snapshot, list_snapshots, restore_snapshot

_log = logging.getLogger("modkeeper")


def setup_logging(config_root: Path, verbose: bool = False) -> logging.Logger:
    logger = logging.getLogger()
    logger.setLevel(logging.DEBUG)
    for old in [h for h in logger.handlers if getattr(h, "_modkeeper", False)]:
        logger.removeHandler(old)
        old.close()

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(logging.DEBUG if verbose else logging.WARNING)
    console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    console._modkeeper = True
    logger.addHandler(console)

    log_dir = config_root / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / "modkeeper.log",
            maxBytes=1 * 1024 * 1024,  # 1 MB
            backupCount=2,
            encoding="utf-8",
        )
    except OSError as exc:
        _log.warning("File logging disabled: %s", exc)
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s  %(levelname)-8s  %(name)s  %(message)s"))
        handler._modkeeper = True
        logger.addHandler(handler)
    return _log


def install_crash_handler(logger: logging.Logger):
    def handle_exception(exc_type, exc_value, exc_tb):
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc_value, exc_tb)
            return
        logger.critical(
            "Unhandled exception:\n%s",
            "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
        )

    sys.excepthook = handle_exception


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="modkeeper", description="Profile-scoped game mod manager")
    parser.add_argument(
        "--config-dir",
        type=Path,
        help="configuration root (default: $MODKEEPER_CONFIG_DIR or ~/.config/modkeeper)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    profile = sub.add_parser("profile", help="manage profiles")
    profile_sub = profile.add_subparsers(dest="action", required=True)
    profile_sub.add_parser("ls", help="list profiles")
    create = profile_sub.add_parser("create", help="create a profile")
    create.add_argument("name")
    create.add_argument("--install-path", required=True, type=Path)
    create.add_argument("--game", default=DEFAULT_GAME)
    select = profile_sub.add_parser("select", help="make a profile current")
    select.add_argument("name")
    rm = profile_sub.add_parser("rm", help="remove a profile")
    rm.add_argument("name")

    cache = sub.add_parser("cache", help="snapshot or restore the content directory")
    cache_sub = cache.add_subparsers(dest="action", required=True)
    cache_sub.add_parser("ls", help="list snapshots of the current profile")
    cache_create = cache_sub.add_parser("create", help="snapshot the content directory")
    cache_create.add_argument("name")
    cache_restore = cache_sub.add_parser("restore", help="replace the content directory with a snapshot")
    cache_restore.add_argument("name")

    repo = sub.add_parser("repo", help="manage the repository list")
    repo_sub = repo.add_subparsers(dest="action", required=True)
    repo_sub.add_parser("ls", help="list repositories in lookup order")
    repo_add = repo_sub.add_parser("add", help="append a repository")
    repo_add.add_argument("host")
    repo_rm = repo_sub.add_parser("rm", help="remove a repository")
    repo_rm.add_argument("host")

    install = sub.add_parser("install", help="install packages and their dependencies")
    install.add_argument("packages", nargs="+", metavar="author/name")
    install.add_argument("--update", action="store_true", help="re-fetch archives and rebuild indices")
    install.add_argument("--force", action="store_true", help="skip conflict checks and reinstall")
    install.add_argument("--verbose", action="store_true")

    uninstall = sub.add_parser("uninstall", help="remove installed packages")
    uninstall.add_argument("packages", nargs="+", metavar="author/name")
    uninstall.add_argument("--verbose", action="store_true")
    return parser


# ── Commands ──────────────────────────────────────────────────────────


def cmd_profile(args, config_root: Path):
    store = ProfileStore(config_root)
    if args.action == "ls":
        current = store.load_config().current_profile
        for name in store.list_profiles():
            marker = "*" if name == current else " "
            profile = store.load_profile(name)
            print(f"{marker} {name}  ({profile.game})  {profile.install_path}")
    elif args.action == "create":
        store.create_profile(args.name, args.install_path, args.game)
        print(f"Created profile {args.name}")
    elif args.action == "select":
        store.select_profile(args.name)
        print(f"Selected profile {args.name}")
    elif args.action == "rm":
        store.remove_profile(args.name)
        print(f"Removed profile {args.name}")


def cmd_cache(args, config_root: Path):
    ctx = AppContext.load(config_root)
    name, profile = ctx.active_profile()
    cache_dir = ctx.store.snapshot_dir(name)
    if args.action == "ls":
        for snapshot in list_snapshots(cache_dir):
            print(snapshot)
    elif args.action == "create":
        create_snapshot(profile.install_path, cache_dir, args.name)
        print(f"Created cache {args.name}")
    elif args.action == "restore":
        restore_snapshot(profile.install_path, cache_dir, args.name)
        print(f"Restored cache {args.name}")


def cmd_repo(args, config_root: Path):
    ctx = AppContext.load(config_root, require_profile=False)
    repos = ctx.config.repositories
    if args.action == "ls":
        for host in repos:
            print(host)
        return
    host = args.host.strip()
    if not host or "," in host:
        raise ConfigError(f"Invalid repository {args.host!r}")
    if args.action == "add":
        if host in repos:
            raise ConfigError(f"Repository {host} is already configured")
        repos.append(host)
    elif args.action == "rm":
        if host not in repos:
            raise ConfigError(f"Repository {host} is not configured")
        repos.remove(host)
    ctx.save_config()


def cmd_install(args, config_root: Path):
    from mod_manager import ModManager

    ids = [PackageId.parse(p) for p in args.packages]
    ctx = AppContext.load(config_root)
    manager = ModManager(ctx)
    try:
        manager.install(ids, force=args.force, update=args.update)
    finally:
        manager.remote.close()


def cmd_uninstall(args, config_root: Path):
    from mod_manager import ModManager

    ids = [PackageId.parse(p) for p in args.packages]
    ctx = AppContext.load(config_root)
    manager = ModManager(ctx)
    try:
        manager.uninstall(ids)
    finally:
        manager.remote.close()


COMMANDS = {
    "profile": cmd_profile,
    "cache": cmd_cache,
    "repo": cmd_repo,
    "install": cmd_install,
    "uninstall": cmd_uninstall,
}


def run(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    config_root = (args.config_dir or default_config_root()).expanduser()

    logger = setup_logging(config_root, verbose=getattr(args, "verbose", False))
    install_crash_handler(logger)
    logger.debug("Running %s", " ".join(argv if argv is not None else sys.argv[1:]))

    try:
        COMMANDS[args.command](args, config_root)
    except ModManagerError as exc:
        logger.error("%s", describe(exc))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(run())
