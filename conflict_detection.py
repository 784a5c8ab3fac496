"""
Conflict detection for modkeeper.

A "conflict" means installing a package would write a file that already
exists under the profile's install path, whoever put it there (another
package, the game itself, or an earlier install of the same package).

Public API
----------
check(profile, package_id, manifest, pending=None)
    -> None, or raises FileConflict naming every clashing path
find_conflicts(install_path, manifest)
    -> every manifest path already present on disk
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

from mod_errors import FileConflict

if TYPE_CHECKING:
    from package_id import PackageId
    from profile_store import Profile

_log = logging.getLogger(__name__)


def _exists(install_path: Path, rel: str) -> bool:
    target = install_path / rel
    # is_symlink catches dangling links that exists() reports as absent
    return target.exists() or target.is_symlink()


def find_conflicts(install_path: Path, manifest: list[str]) -> list[str]:
    """Return every manifest path already present under ``install_path``."""
    install_path = Path(install_path)
    return [rel for rel in manifest if _exists(install_path, rel)]


def check(
    profile: Profile,
    package_id: PackageId,
    manifest: list[str],
    pending: dict[str, PackageId] | None = None,
):
    """Raise ``FileConflict`` if any manifest path would be overwritten.

    ``pending`` maps paths that earlier packages in the same install plan are
    about to write to the package writing them; a clash with one of those is
    reported the same way as a clash on disk.
    """
    if pending:
        for rel in manifest:
            if rel in pending and pending[rel] != package_id:
                raise FileConflict(package_id, rel, owner=pending[rel])

    install_path = Path(profile.install_path)
    clashes = find_conflicts(install_path, manifest)
    if clashes:
        _log.debug("%s: %d path(s) already exist under %s", package_id, len(clashes), install_path)
        raise FileConflict(package_id, clashes[0], also=clashes[1:])
