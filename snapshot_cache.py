"""
Whole-directory snapshots of a profile's content directory.

    <config root>/caches/<profile>/<name>.tar.gz

Unrelated to the per-package archive cache: a snapshot is a backup of
everything under the install path, taken before experimenting with packages.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from pathlib import Path

from archive_io import compress_directory, extract_archive
from mod_errors import CacheExists, CacheMissing, ConfigError, IoError

SNAPSHOT_SUFFIX = ".tar.gz"

_log = logging.getLogger(__name__)


def snapshot_path(cache_dir: Path, name: str) -> Path:
    if not name or "/" in name or "\\" in name or name in (".", ".."):
        raise ConfigError(f"Invalid cache name {name!r}")
    return Path(cache_dir) / f"{name}{SNAPSHOT_SUFFIX}"


def list_snapshots(cache_dir: Path) -> list[str]:
    cache_dir = Path(cache_dir)
    if not cache_dir.is_dir():
        return []
    return sorted(
        p.name[: -len(SNAPSHOT_SUFFIX)]
        for p in cache_dir.iterdir()
        if p.is_file() and p.name.endswith(SNAPSHOT_SUFFIX)
    )


def create_snapshot(content_dir: Path, cache_dir: Path, name: str) -> Path:
    """Archive ``content_dir`` as ``cache_dir/name.tar.gz``.

    Raises ``CacheExists`` rather than replacing an existing snapshot.
    """
    content_dir = Path(content_dir)
    target = snapshot_path(cache_dir, name)
    if target.exists():
        raise CacheExists(name)
    if not content_dir.is_dir():
        raise IoError(f"{content_dir} is not a valid directory", content_dir)

    data = compress_directory(content_dir)
    tmp = target.with_name(target.name + ".part")
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        tmp.write_bytes(data)
        os.replace(tmp, target)
    except OSError as exc:
        raise IoError(f"Could not write cache {target}", target) from exc

    _log.info("Created cache '%s' of %s (%d bytes)", name, content_dir, len(data))
    return target


def restore_snapshot(content_dir: Path, cache_dir: Path, name: str):
    """Replace ``content_dir`` with the contents of snapshot ``name``.

    The snapshot is unpacked next to ``content_dir`` first; the live
    directory is only swapped out once extraction has succeeded, so a corrupt
    snapshot leaves it untouched.
    """
    content_dir = Path(content_dir)
    source = snapshot_path(cache_dir, name)
    if not source.is_file():
        raise CacheMissing(name)

    try:
        data = source.read_bytes()
        content_dir.parent.mkdir(parents=True, exist_ok=True)
        staging = Path(tempfile.mkdtemp(prefix=f".{content_dir.name}.restore-", dir=content_dir.parent))
    except OSError as exc:
        raise IoError(f"Could not prepare restore of cache '{name}'", content_dir) from exc

    try:
        extract_archive(data, staging, trusted=True)
        staging.chmod(content_dir.stat().st_mode if content_dir.is_dir() else 0o755)
    except BaseException:
        shutil.rmtree(staging, ignore_errors=True)
        raise

    old = content_dir.with_name(f".{content_dir.name}.old-{staging.name.rsplit('-', 1)[-1]}")
    try:
        if content_dir.exists():
            _log.info("Removing existing content directory %s", content_dir)
            os.replace(content_dir, old)
        os.replace(staging, content_dir)
    except OSError as exc:
        if old.exists() and not content_dir.exists():
            os.replace(old, content_dir)
        shutil.rmtree(staging, ignore_errors=True)
        raise IoError(f"Could not swap restored cache '{name}' into {content_dir}", content_dir) from exc

    if old.exists():
        try:
            shutil.rmtree(old)
        except OSError as exc:
            raise IoError(f"Restored cache '{name}' but could not remove old content at {old}", old) from exc
    _log.info("Restored cache '%s' into %s", name, content_dir)
