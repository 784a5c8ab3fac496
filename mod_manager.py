"""
modkeeper - Core Logic

Installs and uninstalls packages into the active profile's install path and
keeps the file ownership registry and enabled-package list in step with what
is actually on disk.

Install runs in two phases:

    resolve   fetch + index every package needed, build a dependency-ordered
              plan, check it for conflicts.  The install path is not touched.
    apply     extract each planned package and register it.  Every step is
              journaled with its inverse; any failure undoes the whole plan.
"""

from __future__ import annotations

import logging
import shutil
import tempfile
from enum import Enum
from pathlib import Path
from typing import Callable, Iterable, Optional

import conflict_detection
from archive_io import extract_archive
from dependency_resolver import DependencyResolver
from file_ownership import OwnershipRegistry
from mod_errors import (
    IoError,
    ModManagerError,
    PackageAlreadyInstalled,
    PackageNotFound,
    PackageNotInstalled,
)
from package_cache import PackageCache
from package_id import PackageId
from package_index import PackageIndex
from profile_store import AppContext, Profile
from remote_repository import RemoteRepository

_log = logging.getLogger(__name__)


class InstallState(Enum):
    PENDING = "pending"
    CACHED_CHECK = "cached_check"
    FETCHING = "fetching"
    INDEXED = "indexed"
    DEPENDENCIES_DISCOVERED = "dependencies_discovered"
    CONFLICT_CHECKED = "conflict_checked"
    APPLIED = "applied"
    REGISTERED = "registered"
    DONE = "done"
    FAILED = "failed"


class InstallJournal:
    """Compensating-action log for one install run.

    Each completed step registers a callable that undoes it.  ``rollback``
    runs them newest first.  Files overwritten during the run are backed up
    into a private temporary directory that lives as long as the journal.
    """

    def __init__(self):
        self._undo: list[tuple[str, Callable[[], None]]] = []
        self._tmp: tempfile.TemporaryDirectory | None = None
        self._backup_dir: Path | None = None

    def __enter__(self) -> InstallJournal:
        self._tmp = tempfile.TemporaryDirectory(prefix="modkeeper-journal-")
        self._backup_dir = Path(self._tmp.name)
        return self

    def __exit__(self, *exc_info):
        if self._tmp is not None:
            self._tmp.cleanup()
            self._tmp = None

    def __len__(self) -> int:
        return len(self._undo)

    def record(self, description: str, undo: Callable[[], None]):
        self._undo.append((description, undo))

    def place_file(self, src: Path, dst: Path, stop_at: Path):
        """Copy ``src`` to ``dst``, remembering how to put ``dst`` back."""
        assert self._backup_dir is not None, "InstallJournal used outside its context"

        backup: Path | None = None
        if dst.is_symlink() or dst.exists():
            if dst.is_dir() and not dst.is_symlink():
                raise IoError(f"Cannot install file over directory {dst}", dst)
            backup = self._backup_dir / f"{len(self._undo)}"
            shutil.copy2(dst, backup, follow_symlinks=False)

        created: list[Path] = []
        parent = dst.parent
        while parent != stop_at and not parent.exists():
            created.append(parent)
            parent = parent.parent
        dst.parent.mkdir(parents=True, exist_ok=True)
        if dst.is_symlink():
            dst.unlink()
        shutil.copy2(src, dst, follow_symlinks=False)

        def undo():
            if dst.is_symlink() or dst.exists():
                dst.unlink()
            if backup is not None:
                shutil.copy2(backup, dst, follow_symlinks=False)
            for d in created:
                if d.exists() and not any(d.iterdir()):
                    d.rmdir()

        self.record(f"place {dst}", undo)

    def remove_file(self, path: Path):
        """Delete ``path``, keeping a copy to put back on rollback."""
        assert self._backup_dir is not None, "InstallJournal used outside its context"

        backup = self._backup_dir / f"{len(self._undo)}"
        shutil.copy2(path, backup, follow_symlinks=False)
        path.unlink()

        def undo():
            if path.is_symlink() or path.exists():
                return
            path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(backup, path, follow_symlinks=False)

        self.record(f"remove {path}", undo)

    def rollback(self):
        while self._undo:
            description, undo = self._undo.pop()
            try:
                undo()
            except (OSError, ModManagerError) as exc:
                _log.error("Rollback step '%s' failed: %s", description, exc)


class ModManager:
    """
    Install/uninstall engine for the active profile.

    Workflow:
        1. install() resolves, fetches and applies packages and their dependencies
        2. uninstall() removes packages and releases their files
    """

    def __init__(
        self,
        ctx: AppContext,
        remote: RemoteRepository | None = None,
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self.ctx = ctx
        self.cache = PackageCache(ctx.config_root)
        self.index = PackageIndex(ctx.config_root, self.cache)
        self.ownership = OwnershipRegistry(ctx.config_root)
        self.remote = remote or RemoteRepository(timeout=ctx.config.request_timeout)
        self._log_cb = log_callback or print

        # Runtime state
        self.states: dict[PackageId, InstallState] = {}
        self._manifests: dict[PackageId, list[str]] = {}

    # ── Logging ───────────────────────────────────────────────────────

    def log(self, msg: str):
        self._log_cb(msg)

    def _set_state(self, package_id: PackageId, state: InstallState):
        self.states[package_id] = state
        _log.debug("%s -> %s", package_id, state.name)

    @property
    def repositories(self) -> list[str]:
        return self.ctx.config.repositories

    # ── Cache / index ─────────────────────────────────────────────────

    def ensure_cached(self, package_id: PackageId, refresh: bool = False):
        """Make sure the archive for ``package_id`` is in the local cache."""
        self._set_state(package_id, InstallState.CACHED_CHECK)
        cached = self.cache.is_cached(package_id)
        if cached and not refresh:
            return

        self._set_state(package_id, InstallState.FETCHING)
        self.log(f"  Fetching {package_id}...")
        try:
            data = self.remote.fetch(self.repositories, package_id)
        except PackageNotFound:
            if not cached:
                raise
            self.log(f"  WARNING: could not refresh {package_id}, using cached copy")
            return
        self.cache.store(package_id, data)

    def _discover(self, package_id: PackageId, update: bool) -> list[PackageId]:
        self._set_state(package_id, InstallState.PENDING)
        try:
            self.ensure_cached(package_id, refresh=update)
            self._manifests[package_id] = self.index.ensure_index(package_id, rebuild=update)
            self._set_state(package_id, InstallState.INDEXED)
            deps = self.remote.fetch_dependencies(self.repositories, package_id)
        except ModManagerError:
            self._set_state(package_id, InstallState.FAILED)
            raise
        self._set_state(package_id, InstallState.DEPENDENCIES_DISCOVERED)
        return deps

    # ── Install ───────────────────────────────────────────────────────

    def resolve_plan(
        self,
        package_ids: Iterable[PackageId],
        *,
        force: bool = False,
        update: bool = False,
    ) -> list[PackageId]:
        """Resolve phase: everything needed, dependencies first, conflict-checked."""
        _, profile = self.ctx.active_profile()
        requested = list(dict.fromkeys(package_ids))

        for pid in requested:
            if profile.is_enabled(pid) and not force:
                raise PackageAlreadyInstalled(pid)

        resolver = DependencyResolver(
            discover=lambda pid: self._discover(pid, update),
            is_enabled=profile.is_enabled,
            log_callback=self.log,
        )
        plan = resolver.resolve(requested)

        if not force:
            pending: dict[str, PackageId] = {}
            for pid in plan:
                manifest = self._manifests[pid]
                self._check_conflicts(profile, pid, manifest, pending)
                for rel in manifest:
                    pending[rel] = pid
        return plan

    def _check_conflicts(
        self,
        profile: Profile,
        package_id: PackageId,
        manifest: list[str],
        pending: dict[str, PackageId] | None = None,
    ):
        try:
            conflict_detection.check(profile, package_id, manifest, pending)
        except ModManagerError:
            self._set_state(package_id, InstallState.FAILED)
            raise
        self._set_state(package_id, InstallState.CONFLICT_CHECKED)

    def install(
        self,
        package_ids: Iterable[PackageId],
        *,
        force: bool = False,
        update: bool = False,
    ) -> list[PackageId]:
        """Install ``package_ids`` and their dependencies.  Returns the packages installed, in order."""
        name, profile = self.ctx.active_profile()
        plan = self.resolve_plan(package_ids, force=force, update=update)
        if not plan:
            self.log("Nothing to install")
            return []
        self.log(f"Installing {len(plan)} package(s): {', '.join(str(p) for p in plan)}")

        with InstallJournal() as journal:
            current: PackageId | None = None
            try:
                for pid in plan:
                    current = pid
                    self._apply_package(name, profile, pid, self._manifests[pid], journal, force)
                current = None
                self.ctx.save_profile()
            except Exception:
                if current is not None:
                    self._set_state(current, InstallState.FAILED)
                self.log(f"  Install failed, rolling back {len(journal)} step(s)...")
                journal.rollback()
                raise

        self.log(f"Successfully installed {len(plan)} package(s)")
        return plan

    def _apply_package(
        self,
        profile_name: str,
        profile: Profile,
        package_id: PackageId,
        manifest: list[str],
        journal: InstallJournal,
        force: bool,
    ):
        install_path = Path(profile.install_path)
        self.log(f"Installing {package_id}...")

        # Earlier packages in this plan have been written since the pre-flight check
        if not force:
            self._check_conflicts(profile, package_id, manifest)

        data = self.cache.read(package_id)
        installed_files: list[str] = []
        with tempfile.TemporaryDirectory(prefix="modkeeper-stage-") as tmpdir:
            staging = Path(tmpdir)
            extract_archive(data, staging)
            try:
                install_path.mkdir(parents=True, exist_ok=True)
            except OSError as exc:
                raise IoError(f"Could not create install path {install_path}", install_path) from exc

            for rel in manifest:
                src = staging / rel
                if not (src.is_file() or src.is_symlink()):
                    self.log(f"  WARNING: Expected file not found after extraction: {rel}")
                    continue
                try:
                    journal.place_file(src, install_path / rel, install_path)
                except OSError as exc:
                    raise IoError(f"Could not install {rel}", install_path / rel) from exc
                installed_files.append(rel)
                _log.debug("  Copied: %s", rel)
        self._set_state(package_id, InstallState.APPLIED)

        if profile.is_enabled(package_id):
            self._drop_stale_files(profile_name, install_path, package_id, installed_files, journal)

        previous = self.ownership.record_install(
            profile_name, package_id, installed_files, reclaim=force
        )
        journal.record(
            f"ownership of {package_id}",
            lambda: self.ownership.revert_install(profile_name, package_id, previous),
        )
        self._set_state(package_id, InstallState.REGISTERED)

        if not profile.is_enabled(package_id):
            profile.enable(package_id)
            journal.record(f"enable {package_id}", lambda: profile.disable(package_id))
        self._set_state(package_id, InstallState.DONE)
        self.log(f"  Installed {package_id} ({len(installed_files)} file(s))")

    def _drop_stale_files(
        self,
        profile_name: str,
        install_path: Path,
        package_id: PackageId,
        installed_files: list[str],
        journal: InstallJournal,
    ):
        """On reinstall, remove files the package owned that its new archive no longer ships."""
        keep = set(installed_files)
        stale = [f for f in self.ownership.files_owned_by(profile_name, package_id) if f not in keep]
        if not stale:
            return

        for rel in stale:
            fp = install_path / rel
            if fp.is_symlink() or fp.is_file():
                try:
                    journal.remove_file(fp)
                except OSError as exc:
                    raise IoError(f"Could not remove {fp}", fp) from exc
                self.log(f"  Removed stale: {rel}")
            self._prune_empty_dirs(fp.parent, install_path)

        released = self.ownership.record_uninstall(profile_name, package_id, stale)
        journal.record(
            f"release stale files of {package_id}",
            lambda: self.ownership.record_install(profile_name, package_id, released, reclaim=True),
        )

    # ── Uninstall ─────────────────────────────────────────────────────

    def uninstall(self, package_ids: Iterable[PackageId]) -> list[PackageId]:
        name, profile = self.ctx.active_profile()
        requested = list(dict.fromkeys(package_ids))
        for pid in requested:
            if not profile.is_enabled(pid):
                raise PackageNotInstalled(pid)

        for pid in requested:
            self._uninstall_package(name, profile, pid)
        return requested

    def _uninstall_package(self, profile_name: str, profile: Profile, package_id: PackageId):
        install_path = Path(profile.install_path)
        self.log(f"Uninstalling {package_id}...")

        if not self.index.has_index(package_id):
            self.log(f"  Index for {package_id} does not exist. Generating.")
        manifest = self.index.ensure_index(package_id)
        owners = self.ownership.load(profile_name)
        # An older version of the package may own paths the current index lacks
        files = list(dict.fromkeys(manifest + self.ownership.files_owned_by(profile_name, package_id)))

        removed = 0
        for rel in files:
            owner = owners.get(rel)
            if owner is not None and owner != package_id:
                self.log(f"  Kept: {rel} (now owned by {owner})")
                continue
            fp = install_path / rel
            if fp.is_symlink() or fp.is_file():
                try:
                    fp.unlink()
                except OSError as exc:
                    raise IoError(f"Could not remove {fp}", fp) from exc
                removed += 1
                self.log(f"  Removed: {rel}")
            else:
                _log.debug("  Already missing: %s", rel)
            self._prune_empty_dirs(fp.parent, install_path)

        self.ownership.record_uninstall(profile_name, package_id, files)
        profile.disable(package_id)
        self.ctx.save_profile()
        self.log(f"  Successfully uninstalled {package_id} ({removed} file(s) removed)")

    @staticmethod
    def _prune_empty_dirs(directory: Path, stop_at: Path):
        """Remove ``directory`` and its parents while empty, never ``stop_at`` itself."""
        while directory != stop_at and stop_at in directory.parents:
            if not directory.is_dir() or any(directory.iterdir()):
                return
            directory.rmdir()
            _log.debug("  Removed empty dir: %s", directory)
            directory = directory.parent
