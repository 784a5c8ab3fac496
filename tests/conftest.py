"""
Shared fixtures and helpers for the modkeeper test suite.
"""

import io
import tarfile
import zipfile

import pytest

from mod_errors import PackageNotFound
from package_id import PackageId
from profile_store import AppContext, ProfileStore

PROFILE = "default"


def make_tarball(members: dict[str, bytes], dirs: tuple[str, ...] = ()) -> bytes:
    """Build a tar.gz in memory from {path: data}, plus explicit directory entries."""
    buf = io.BytesIO()
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        for d in dirs:
            info = tarfile.TarInfo(d)
            info.type = tarfile.DIRTYPE
            info.mode = 0o755
            tf.addfile(info)
        for name, data in members.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            info.mode = 0o644
            tf.addfile(info, io.BytesIO(data))
    return buf.getvalue()


def make_zip(members: dict[str, bytes]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w") as zf:
        for member, data in members.items():
            zf.writestr(member, data)
    return buf.getvalue()


def pid(value: str) -> PackageId:
    return PackageId.parse(value)


class FakeRemote:
    """In-memory stand-in for RemoteRepository."""

    def __init__(self, archives=None, depends=None):
        self.archives: dict[str, bytes] = dict(archives or {})
        self.depends: dict[str, list[str]] = dict(depends or {})
        self.fetched: list[str] = []
        self.closed = False

    def fetch(self, repos, package_id):
        key = str(package_id)
        if key not in self.archives:
            raise PackageNotFound(package_id, repos)
        self.fetched.append(key)
        return self.archives[key]

    def fetch_dependencies(self, repos, package_id):
        return [PackageId.parse(d) for d in self.depends.get(str(package_id), [])]

    def close(self):
        self.closed = True


@pytest.fixture
def config_root(tmp_path):
    root = tmp_path / "config"
    root.mkdir()
    return root


@pytest.fixture
def install_path(tmp_path):
    path = tmp_path / "game" / "Data"
    path.mkdir(parents=True)
    return path


@pytest.fixture
def ctx(config_root, install_path):
    """An AppContext with one selected profile and one configured repository."""
    store = ProfileStore(config_root)
    store.create_profile(PROFILE, install_path, game="falloutnv")
    config = store.load_config()
    config.repositories = ["repo.example"]
    store.save_config(config)
    return AppContext.load(config_root)


@pytest.fixture
def remote():
    return FakeRemote()
