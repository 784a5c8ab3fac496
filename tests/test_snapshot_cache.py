import os

import pytest

from mod_errors import ArchiveError, CacheExists, CacheMissing, IoError
from snapshot_cache import create_snapshot, list_snapshots, restore_snapshot


def populate(content_dir):
    (content_dir / "meshes").mkdir(parents=True)
    (content_dir / "meshes" / "a.nif").write_bytes(b"mesh-bytes")
    (content_dir / "plugin.esp").write_bytes(b"\x00\x01plugin")
    (content_dir / "empty").mkdir()


def snapshot_files(root):
    return {
        p.relative_to(root).as_posix(): (p.read_bytes() if p.is_file() else None)
        for p in root.rglob("*")
    }


def test_round_trip_into_empty_target(tmp_path, install_path):
    populate(install_path)
    cache_dir = tmp_path / "caches" / "default"

    path = create_snapshot(install_path, cache_dir, "s1")
    assert path == cache_dir / "s1.tar.gz"

    target = tmp_path / "restored"
    restore_snapshot(target, cache_dir, "s1")

    assert snapshot_files(target) == snapshot_files(install_path)


def test_second_create_fails_and_keeps_original(tmp_path, install_path):
    populate(install_path)
    cache_dir = tmp_path / "caches"
    path = create_snapshot(install_path, cache_dir, "s1")
    original = path.read_bytes()
    (install_path / "new.esp").write_bytes(b"new")

    with pytest.raises(CacheExists):
        create_snapshot(install_path, cache_dir, "s1")

    assert path.read_bytes() == original


def test_round_trip_keeps_links_pointing_outside(tmp_path, install_path):
    outside = tmp_path / "outside.txt"
    outside.write_bytes(b"outside")
    (install_path / "f.txt").write_bytes(b"f")
    (install_path / "abs_link").symlink_to(outside)
    (install_path / "up_link").symlink_to("../../outside.txt")
    cache_dir = tmp_path / "caches"

    create_snapshot(install_path, cache_dir, "links")
    (install_path / "abs_link").unlink()
    restore_snapshot(install_path, cache_dir, "links")

    assert (install_path / "abs_link").is_symlink()
    assert os.readlink(install_path / "abs_link") == str(outside)
    assert os.readlink(install_path / "up_link") == "../../outside.txt"
    assert (install_path / "f.txt").read_bytes() == b"f"


def test_create_requires_directory(tmp_path):
    with pytest.raises(IoError):
        create_snapshot(tmp_path / "missing", tmp_path / "caches", "s1")


def test_restore_replaces_existing_content(tmp_path, install_path):
    populate(install_path)
    cache_dir = tmp_path / "caches"
    create_snapshot(install_path, cache_dir, "clean")
    (install_path / "added_by_mod.esp").write_bytes(b"mod")
    (install_path / "plugin.esp").write_bytes(b"changed")

    restore_snapshot(install_path, cache_dir, "clean")

    assert not (install_path / "added_by_mod.esp").exists()
    assert (install_path / "plugin.esp").read_bytes() == b"\x00\x01plugin"
    leftovers = [p.name for p in install_path.parent.iterdir() if p.name.startswith(".")]
    assert leftovers == []


def test_restore_missing_snapshot(tmp_path, install_path):
    with pytest.raises(CacheMissing):
        restore_snapshot(install_path, tmp_path / "caches", "nope")


def test_corrupt_snapshot_leaves_content_untouched(tmp_path, install_path):
    populate(install_path)
    cache_dir = tmp_path / "caches"
    cache_dir.mkdir()
    (cache_dir / "broken.tar.gz").write_bytes(b"\x1f\x8b" + b"garbage" * 10)

    with pytest.raises(ArchiveError):
        restore_snapshot(install_path, cache_dir, "broken")

    assert (install_path / "meshes" / "a.nif").read_bytes() == b"mesh-bytes"
    assert sorted(p.name for p in install_path.parent.iterdir()) == ["Data"]


def test_list_snapshots(tmp_path, install_path):
    cache_dir = tmp_path / "caches"
    assert list_snapshots(cache_dir) == []
    create_snapshot(install_path, cache_dir, "b")
    create_snapshot(install_path, cache_dir, "a")
    assert list_snapshots(cache_dir) == ["a", "b"]
