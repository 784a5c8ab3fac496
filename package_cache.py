"""
Local cache of downloaded package archives.

    <config root>/mods/cached/<author>/<name>/mod.tar.gz

A package is "cached" exactly when that file exists.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from mod_errors import IoError, PackageNotCached
from package_id import PackageId

ARCHIVE_FILENAME = "mod.tar.gz"

_log = logging.getLogger(__name__)


class PackageCache:
    def __init__(self, config_root: str | Path):
        self.root = Path(config_root) / "mods" / "cached"

    def archive_path(self, package_id: PackageId) -> Path:
        return self.root / package_id.author / package_id.name / ARCHIVE_FILENAME

    def is_cached(self, package_id: PackageId) -> bool:
        return self.archive_path(package_id).is_file()

    def read(self, package_id: PackageId) -> bytes:
        path = self.archive_path(package_id)
        if not path.is_file():
            raise PackageNotCached(package_id)
        try:
            return path.read_bytes()
        except OSError as exc:
            raise IoError(f"Could not read cached archive {path}", path) from exc

    def store(self, package_id: PackageId, data: bytes) -> Path:
        """Write ``data`` as the cached archive, replacing any previous copy in one step."""
        path = self.archive_path(package_id)
        tmp = path.with_name(path.name + ".part")
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            tmp.write_bytes(data)
            os.replace(tmp, path)
        except OSError as exc:
            raise IoError(f"Could not write cached archive {path}", path) from exc
        _log.debug("Cached %s (%d bytes) at %s", package_id, len(data), path)
        return path
