"""
Remote package repositories.

A repository is a host serving, for each package::

    https://<repo>/mods/<author>/<name>/mod.tar.gz    archive bytes
    https://<repo>/mods/<author>/<name>/depends.txt   one "author/name" per line

Repositories are tried strictly in the configured order and the first 2xx
response wins.  Anything else (non-2xx status, connection failure) moves on
to the next repository.
"""

from __future__ import annotations

import logging

import httpx

from mod_errors import PackageNotFound
from package_id import PackageId

_log = logging.getLogger(__name__)

ARCHIVE_FILENAME = "mod.tar.gz"
DEPENDS_FILENAME = "depends.txt"


def package_url(repo: str, package_id: PackageId, filename: str) -> str:
    base = repo.rstrip("/")
    if not base.startswith(("http://", "https://")):
        base = f"https://{base}"
    return f"{base}/mods/{package_id.author}/{package_id.name}/{filename}"


def parse_dependency_list(text: str) -> list[PackageId]:
    """Parse ``depends.txt``.  Blank lines and ``#`` comments are ignored."""
    deps: list[PackageId] = []
    for line in text.splitlines():
        line = line.split("#", 1)[0].strip()
        if not line:
            continue
        dep = PackageId.parse(line)
        if dep not in deps:
            deps.append(dep)
    return deps


class RemoteRepository:
    """Fetches package archives and dependency lists over HTTP."""

    def __init__(self, client: httpx.Client | None = None, timeout: float | None = None):
        if client is None:
            client = httpx.Client(timeout=timeout) if timeout is not None else httpx.Client()
        self._client = client

    def close(self):
        self._client.close()

    def __enter__(self) -> RemoteRepository:
        return self

    def __exit__(self, *exc_info):
        self.close()

    def _first_success(self, repos: list[str], package_id: PackageId, filename: str) -> httpx.Response | None:
        for repo in repos:
            url = package_url(repo, package_id, filename)
            try:
                resp = self._client.get(url, follow_redirects=True)
            except httpx.HTTPError as exc:
                _log.warning("Request to %s failed: %s", url, exc)
                continue
            if resp.is_success:
                _log.debug("GET %s -> %d", url, resp.status_code)
                return resp
            _log.debug("GET %s -> %d, trying next repository", url, resp.status_code)
        return None

    def fetch(self, repos: list[str], package_id: PackageId) -> bytes:
        """Return the archive bytes for ``package_id`` from the first repository that has it."""
        resp = self._first_success(repos, package_id, ARCHIVE_FILENAME)
        if resp is None:
            raise PackageNotFound(package_id, repos)
        return resp.content

    def fetch_dependencies(self, repos: list[str], package_id: PackageId) -> list[PackageId]:
        """Return the declared dependencies of ``package_id``; empty if no repository lists any."""
        resp = self._first_success(repos, package_id, DEPENDS_FILENAME)
        if resp is None:
            return []
        return parse_dependency_list(resp.text)
