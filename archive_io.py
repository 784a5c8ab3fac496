"""
Archive reading and writing for modkeeper.

Package archives arrive as raw bytes from a repository or the local cache.
Repositories publish ``mod.tar.gz`` but some authors repack as zip, 7z or
rar, so the format is sniffed from the leading magic bytes rather than
trusted from the file name.  Snapshots are always written as tar.gz.

Public API
----------
compress_directory(directory) -> bytes
extract_archive(data, dest)
list_archive_entries(data) -> list[str]   (directory entries end with "/")
"""

from __future__ import annotations

import io
import logging
import tarfile
import zipfile
from pathlib import Path, PurePosixPath

import py7zr
import rarfile

from mod_errors import ArchiveError, IoError

_log = logging.getLogger(__name__)

GZIP_MAGIC = b"\x1f\x8b"
ZIP_MAGICS = (b"PK\x03\x04", b"PK\x05\x06")
SEVENZIP_MAGIC = b"7z\xbc\xaf\x27\x1c"
RAR_MAGIC = b"Rar!\x1a\x07"

_CORRUPT_ERRORS = (
    tarfile.TarError,
    zipfile.BadZipFile,
    py7zr.Bad7zFile,
    rarfile.Error,
    EOFError,
)


def sniff_format(data: bytes) -> str:
    if data.startswith(GZIP_MAGIC):
        return "tar"
    if data.startswith(ZIP_MAGICS):
        return "zip"
    if data.startswith(SEVENZIP_MAGIC):
        return "7z"
    if data.startswith(RAR_MAGIC):
        return "rar"
    # Uncompressed tar has no magic at offset 0 ("ustar" sits at 257)
    if len(data) > 262 and data[257:262] == b"ustar":
        return "tar"
    raise ArchiveError("Unrecognised archive format")


def normalize_entry(name: str) -> str:
    """Forward slashes, no leading ``./``.  Directory markers are kept."""
    name = name.replace("\\", "/")
    while name.startswith("./"):
        name = name[2:]
    return name


def check_entry_safe(name: str):
    """Reject members that would land outside the extraction root."""
    path = PurePosixPath(name)
    if name.startswith("/") or path.is_absolute() or (len(name) > 1 and name[1] == ":"):
        raise ArchiveError(f"Archive member has an absolute path: {name!r}")
    if ".." in path.parts:
        raise ArchiveError(f"Archive member escapes the archive root: {name!r}")


# ── Listing ───────────────────────────────────────────────────────────


def _raw_entries(data: bytes, fmt: str) -> list[str]:
    if fmt == "tar":
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tf:
            return [m.name + "/" if m.isdir() else m.name for m in tf.getmembers()]
    if fmt == "zip":
        with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
            return zf.namelist()
    if fmt == "7z":
        with py7zr.SevenZipFile(io.BytesIO(data), "r") as sz:
            return [
                info.filename + "/" if info.is_directory else info.filename
                for info in sz.list()
            ]
    with rarfile.RarFile(io.BytesIO(data), "r") as rf:
        return [info.filename + "/" if info.is_dir() else info.filename for info in rf.infolist()]


def list_archive_entries(data: bytes) -> list[str]:
    """Return every entry path in archive order.  Directories end with ``/``."""
    fmt = sniff_format(data)
    try:
        names = _raw_entries(data, fmt)
    except _CORRUPT_ERRORS as exc:
        raise ArchiveError(f"Could not read {fmt} archive") from exc

    entries = []
    for raw in names:
        name = normalize_entry(raw)
        if name in ("", ".", "./"):
            continue
        check_entry_safe(name)
        entries.append(name)
    return entries


# ── Extraction ────────────────────────────────────────────────────────


def extract_archive(data: bytes, dest: Path, *, trusted: bool = False):
    """Unpack every member of ``data`` into ``dest`` (created if needed).

    Package archives come from third parties, so their tar links must stay
    inside ``dest``.  ``trusted`` is for archives modkeeper wrote itself
    (snapshots): links are restored exactly as they were captured.
    """
    dest = Path(dest)
    fmt = sniff_format(data)
    # Validates member paths before anything touches the disk
    list_archive_entries(data)
    try:
        dest.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise IoError(f"Could not create extraction directory {dest}", dest) from exc

    _log.debug("Extracting %s archive (%d bytes) into %s", fmt, len(data), dest)
    try:
        if fmt == "tar":
            with tarfile.open(fileobj=io.BytesIO(data), mode="r:*") as tf:
                tf.extractall(dest, filter="tar" if trusted else "data")
        elif fmt == "zip":
            with zipfile.ZipFile(io.BytesIO(data), "r") as zf:
                for info in zf.infolist():
                    # Windows-made zips may use backslashes; write where the index says
                    info.filename = normalize_entry(info.filename)
                    if info.filename:
                        zf.extract(info, dest)
        elif fmt == "7z":
            with py7zr.SevenZipFile(io.BytesIO(data), "r") as sz:
                sz.extractall(path=dest)
        else:
            with rarfile.RarFile(io.BytesIO(data), "r") as rf:
                rf.extractall(dest)
    except _CORRUPT_ERRORS as exc:
        raise ArchiveError(f"Could not extract {fmt} archive") from exc
    except OSError as exc:
        raise IoError(f"Could not write extracted files into {dest}", dest) from exc


# ── Compression ───────────────────────────────────────────────────────


def compress_directory(directory: Path) -> bytes:
    """Return a tar.gz of the contents of ``directory`` (paths relative to it)."""
    directory = Path(directory)
    if not directory.is_dir():
        raise IoError(f"{directory} is not a valid directory", directory)

    buf = io.BytesIO()
    try:
        with tarfile.open(fileobj=buf, mode="w:gz") as tf:
            for path in sorted(directory.rglob("*")):
                tf.add(path, arcname=path.relative_to(directory).as_posix(), recursive=False)
    except OSError as exc:
        raise IoError(f"Could not archive {directory}", directory) from exc
    return buf.getvalue()
