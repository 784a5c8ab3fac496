import httpx
import pytest

from mod_errors import InvalidPackageId, PackageNotFound
from remote_repository import RemoteRepository, package_url, parse_dependency_list
from tests.conftest import pid


def make_remote(routes, seen=None):
    """routes: {url: (status, body)}; unknown URLs answer 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        if seen is not None:
            seen.append(url)
        if url in routes:
            status, body = routes[url]
            if isinstance(body, Exception):
                raise body
            return httpx.Response(status, content=body)
        return httpx.Response(404)

    return RemoteRepository(client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_package_url_defaults_to_https():
    assert (
        package_url("mods.example.org", pid("alice/armor"), "mod.tar.gz")
        == "https://mods.example.org/mods/alice/armor/mod.tar.gz"
    )
    assert (
        package_url("http://localhost:8000/", pid("alice/armor"), "depends.txt")
        == "http://localhost:8000/mods/alice/armor/depends.txt"
    )


def test_first_successful_repository_wins():
    seen = []
    remote = make_remote(
        {
            "https://second.example/mods/alice/armor/mod.tar.gz": (200, b"from-second"),
            "https://third.example/mods/alice/armor/mod.tar.gz": (200, b"from-third"),
        },
        seen,
    )

    data = remote.fetch(["first.example", "second.example", "third.example"], pid("alice/armor"))

    assert data == b"from-second"
    assert seen == [
        "https://first.example/mods/alice/armor/mod.tar.gz",
        "https://second.example/mods/alice/armor/mod.tar.gz",
    ]


def test_server_error_and_connection_failure_fall_through():
    remote = make_remote(
        {
            "https://down.example/mods/alice/armor/mod.tar.gz": (
                0,
                httpx.ConnectError("connection refused"),
            ),
            "https://broken.example/mods/alice/armor/mod.tar.gz": (500, b"oops"),
            "https://good.example/mods/alice/armor/mod.tar.gz": (200, b"ok"),
        }
    )

    data = remote.fetch(["down.example", "broken.example", "good.example"], pid("alice/armor"))

    assert data == b"ok"


def test_fetch_not_found_anywhere():
    remote = make_remote({})
    with pytest.raises(PackageNotFound):
        remote.fetch(["a.example", "b.example"], pid("alice/armor"))


def test_fetch_with_no_repositories():
    remote = make_remote({})
    with pytest.raises(PackageNotFound):
        remote.fetch([], pid("alice/armor"))


def test_dependencies_parsed_from_first_repository_listing_them():
    remote = make_remote(
        {
            "https://b.example/mods/alice/armor/depends.txt": (
                200,
                b"carol/framework\n\n# optional comment\ndave/lib  \n",
            ),
        }
    )

    deps = remote.fetch_dependencies(["a.example", "b.example"], pid("alice/armor"))

    assert deps == [pid("carol/framework"), pid("dave/lib")]


def test_no_dependency_file_means_no_dependencies():
    remote = make_remote({})
    assert remote.fetch_dependencies(["a.example"], pid("alice/armor")) == []


def test_malformed_dependency_rejected():
    with pytest.raises(InvalidPackageId):
        parse_dependency_list("just-a-name\n")


def test_duplicate_dependencies_collapsed():
    assert parse_dependency_list("a/b\na/b\n") == [pid("a/b")]
