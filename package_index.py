"""
Per-package file indices.

An index is the list of files a package archive contains, relative to the
package root, with directory entries dropped.  It is generated once from the
cached archive and stored as newline-delimited text::

    <config root>/mods/indices/<author>/<name>/index

Indices are not regenerated when the cached archive changes; callers pass
``rebuild=True`` (``install --update``) to force it.
"""

from __future__ import annotations

import logging
from pathlib import Path

from archive_io import check_entry_safe, list_archive_entries
from mod_errors import IoError
from package_cache import PackageCache
from package_id import PackageId

INDEX_FILENAME = "index"

_log = logging.getLogger(__name__)


class PackageIndex:
    def __init__(self, config_root: str | Path, cache: PackageCache | None = None):
        self.root = Path(config_root) / "mods" / "indices"
        self.cache = cache or PackageCache(config_root)

    def index_path(self, package_id: PackageId) -> Path:
        return self.root / package_id.author / package_id.name / INDEX_FILENAME

    def has_index(self, package_id: PackageId) -> bool:
        return self.index_path(package_id).is_file()

    def build_index(self, package_id: PackageId) -> list[str]:
        """List the cached archive, store the file entries and return them.

        Raises ``PackageNotCached`` if the archive has not been fetched yet.
        """
        data = self.cache.read(package_id)
        _log.info("Generating file index for %s", package_id)
        manifest = [e for e in list_archive_entries(data) if not e.endswith("/")]

        path = self.index_path(package_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text("".join(f"{entry}\n" for entry in manifest), encoding="utf-8")
        except OSError as exc:
            raise IoError(f"Could not write index {path}", path) from exc
        for entry in manifest:
            _log.debug("  %s: %s", package_id, entry)
        return manifest

    def load_index(self, package_id: PackageId) -> list[str]:
        path = self.index_path(package_id)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as exc:
            raise IoError(f"Could not read index {path}", path) from exc
        manifest = [line for line in text.splitlines() if line]
        for entry in manifest:
            check_entry_safe(entry)
        return manifest

    def ensure_index(self, package_id: PackageId, rebuild: bool = False) -> list[str]:
        if rebuild or not self.has_index(package_id):
            return self.build_index(package_id)
        return self.load_index(package_id)
