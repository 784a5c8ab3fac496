"""
File ownership registry.

For each profile, records which package installed each file under the
install path::

    <config root>/profiles/<profile>/file_ownership.json
    {"textures/armor.dds": "someone/armor-pack", ...}

A path has at most one owner.  Only the install/uninstall engine mutates the
registry, and every mutation rewrites the whole map.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import ValidationError

from mod_errors import ConfigError, FileConflict, IoError
from package_id import PackageId
from profile_store import PROFILES_DIRNAME, check_plain_name

OWNERSHIP_FILENAME = "file_ownership.json"

_log = logging.getLogger(__name__)


class OwnershipRegistry:
    def __init__(self, config_root: str | Path):
        self.profiles_dir = Path(config_root) / PROFILES_DIRNAME

    def registry_path(self, profile: str) -> Path:
        return self.profiles_dir / check_plain_name(profile, "profile") / OWNERSHIP_FILENAME

    def load(self, profile: str) -> dict[str, PackageId]:
        path = self.registry_path(profile)
        if not path.exists():
            return {}
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            return {file: PackageId.model_validate(owner) for file, owner in raw.items()}
        except (OSError, json.JSONDecodeError, ValidationError, AttributeError) as exc:
            raise ConfigError(f"Could not load file ownership table {path}") from exc

    def _save(self, profile: str, owners: dict[str, PackageId]):
        path = self.registry_path(profile)
        data = {file: str(owner) for file, owner in sorted(owners.items())}
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            raise IoError(f"Could not write file ownership table {path}", path) from exc

    def files_owned_by(self, profile: str, package_id: PackageId) -> list[str]:
        return [f for f, owner in self.load(profile).items() if owner == package_id]

    def record_install(
        self,
        profile: str,
        package_id: PackageId,
        manifest: list[str],
        *,
        reclaim: bool = False,
    ) -> dict[str, PackageId | None]:
        """Make ``package_id`` the owner of every path in ``manifest``.

        A path already owned by another package is a conflicting claim:
        without ``reclaim`` it raises ``FileConflict`` and nothing is saved;
        with ``reclaim`` ownership moves over and a warning is logged.

        Returns the previous owner of each path (``None`` if unowned) so the
        claim can be undone with ``revert_install``.
        """
        owners = self.load(profile)
        previous: dict[str, PackageId | None] = {}

        for path in manifest:
            current = owners.get(path)
            if current is not None and current != package_id:
                if not reclaim:
                    raise FileConflict(package_id, path, owner=current)
                _log.warning("%s: taking ownership of %s from %s", package_id, path, current)
            previous[path] = current
            owners[path] = package_id

        self._save(profile, owners)
        return previous

    def revert_install(
        self,
        profile: str,
        package_id: PackageId,
        previous: dict[str, PackageId | None],
    ):
        """Undo a ``record_install`` of ``package_id`` given its return value."""
        owners = self.load(profile)
        for path, old_owner in previous.items():
            if owners.get(path) != package_id:
                continue
            if old_owner is None:
                del owners[path]
            else:
                owners[path] = old_owner
        self._save(profile, owners)

    def record_uninstall(self, profile: str, package_id: PackageId, manifest: list[str]) -> list[str]:
        """Drop entries for ``manifest`` that ``package_id`` still owns.  Returns the dropped paths."""
        owners = self.load(profile)
        released = []
        for path in manifest:
            if owners.get(path) == package_id:
                del owners[path]
                released.append(path)
        self._save(profile, owners)
        return released
