"""
Error types for modkeeper.

Every failure the engine can report derives from ``ModManagerError`` so the
command-line entry point can print it and exit nonzero.  Lower-level causes
are chained with ``raise ... from exc``.
"""

from __future__ import annotations

from pathlib import Path


class ModManagerError(Exception):
    """Base class for all expected modkeeper failures."""


class ConfigError(ModManagerError):
    pass


class ProfileNotFound(ModManagerError):
    def __init__(self, name: str):
        super().__init__(f"Profile '{name}' does not exist")
        self.name = name


class CacheExists(ModManagerError):
    def __init__(self, name: str):
        super().__init__(f"Cache '{name}' already exists")
        self.name = name


class CacheMissing(ModManagerError):
    def __init__(self, name: str):
        super().__init__(f"Cache '{name}' does not exist")
        self.name = name


class InvalidPackageId(ModManagerError, ValueError):
    pass


class PackageNotFound(ModManagerError):
    def __init__(self, package_id, repositories: list[str]):
        where = ", ".join(repositories) if repositories else "no repositories configured"
        super().__init__(f"Package {package_id} not found in local cache or any repository ({where})")
        self.package_id = package_id


class PackageNotCached(ModManagerError):
    def __init__(self, package_id):
        super().__init__(f"Package {package_id} is not in the local cache")
        self.package_id = package_id


class PackageAlreadyInstalled(ModManagerError):
    def __init__(self, package_id):
        super().__init__(f"Package {package_id} is already installed (use --force to reinstall)")
        self.package_id = package_id


class PackageNotInstalled(ModManagerError):
    def __init__(self, package_id):
        super().__init__(f"Package {package_id} is not installed in this profile")
        self.package_id = package_id


class FileConflict(ModManagerError):
    """Installing ``package_id`` would write over ``path``.

    ``owner`` is the package that currently claims the path, when known.
    ``also`` lists further clashing paths found in the same check.
    """

    def __init__(self, package_id, path: str, owner=None, also=()):
        if owner is not None:
            msg = f"Cannot install {package_id}: {path} is owned by {owner}"
        else:
            msg = f"Cannot install {package_id}: {path} already exists"
        if also:
            msg += f" (and {len(also)} more: {', '.join(also)})"
        super().__init__(msg)
        self.package_id = package_id
        self.path = path
        self.owner = owner
        self.also = list(also)


class DependencyCycle(ModManagerError):
    def __init__(self, chain: list):
        super().__init__("Dependency cycle: " + " -> ".join(str(p) for p in chain))
        self.chain = chain


class ArchiveError(ModManagerError):
    pass


class IoError(ModManagerError):
    def __init__(self, message: str, path: Path | str | None = None):
        super().__init__(message)
        self.path = path


def describe(exc: BaseException) -> str:
    """Render ``exc`` and its ``__cause__`` chain as ``outer <- inner <- ...``."""
    parts = []
    seen = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen:
        seen.add(id(cur))
        parts.append(str(cur) or type(cur).__name__)
        cur = cur.__cause__
    return " <- ".join(parts)
