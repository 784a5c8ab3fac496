import pytest

from mod_errors import ArchiveError, PackageNotCached
from package_cache import PackageCache
from package_index import PackageIndex
from tests.conftest import make_tarball, make_zip, pid


@pytest.fixture
def index(config_root):
    return PackageIndex(config_root, PackageCache(config_root))


def test_build_index_requires_cached_archive(index):
    with pytest.raises(PackageNotCached):
        index.build_index(pid("a/missing"))
    assert not index.has_index(pid("a/missing"))


def test_build_index_drops_directories_and_writes_file(index, config_root):
    data = make_tarball(
        {"Data/meshes/a.nif": b"a", "Data/b.esp": b"b"},
        dirs=("Data/", "Data/meshes/"),
    )
    index.cache.store(pid("a/mod"), data)

    manifest = index.build_index(pid("a/mod"))

    assert manifest == ["Data/meshes/a.nif", "Data/b.esp"]
    path = config_root / "mods" / "indices" / "a" / "mod" / "index"
    assert path.read_text(encoding="utf-8") == "Data/meshes/a.nif\nData/b.esp\n"
    assert index.has_index(pid("a/mod"))
    assert index.load_index(pid("a/mod")) == manifest


def test_zip_repack_is_indexed_too(index):
    index.cache.store(pid("a/zipped"), make_zip({"dir/": b"", "dir/x.esp": b"x"}))
    assert index.build_index(pid("a/zipped")) == ["dir/x.esp"]


def test_existing_index_is_not_regenerated(index):
    index.cache.store(pid("a/mod"), make_tarball({"old.esp": b""}))
    index.build_index(pid("a/mod"))
    index.cache.store(pid("a/mod"), make_tarball({"new.esp": b""}))

    assert index.ensure_index(pid("a/mod")) == ["old.esp"]
    assert index.ensure_index(pid("a/mod"), rebuild=True) == ["new.esp"]


def test_unsafe_member_rejected(index):
    index.cache.store(pid("a/evil"), make_tarball({"../outside.esp": b"x"}))
    with pytest.raises(ArchiveError):
        index.build_index(pid("a/evil"))
