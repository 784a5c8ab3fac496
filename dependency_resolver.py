"""
Dependency resolution for installs.

Turns the packages a user asked for into an install plan: every package that
needs installing, each listed once and after all of its dependencies.  The
traversal is an explicit LIFO worklist; a dependency that leads back onto the
chain currently being expanded is a cycle and aborts resolution.

Nothing here touches the install path.  ``discover`` is supplied by the
engine and is responsible for making a package available locally (cache and
index) and returning its declared dependencies.
"""

from __future__ import annotations

import logging
from typing import Callable, Iterable, Optional

from mod_errors import DependencyCycle
from package_id import PackageId

_log = logging.getLogger(__name__)

_ENTER = "enter"
_EXIT = "exit"


class DependencyResolver:
    def __init__(
        self,
        discover: Callable[[PackageId], list[PackageId]],
        is_enabled: Callable[[PackageId], bool],
        log_callback: Optional[Callable[[str], None]] = None,
    ):
        self._discover = discover
        self._is_enabled = is_enabled
        self._log_cb = log_callback or (lambda _msg: None)

    def resolve(self, requested: Iterable[PackageId]) -> list[PackageId]:
        """Return the install plan for ``requested``.

        Requested ids are always planned, even if already enabled (the caller
        decides whether that is allowed).  Dependencies that are already
        enabled are skipped.
        """
        roots = list(dict.fromkeys(requested))
        root_set = set(roots)

        plan: list[PackageId] = []
        done: set[PackageId] = set()
        chain: list[PackageId] = []

        # Seeded in reverse so the first requested id is popped first
        worklist: list[tuple[str, PackageId]] = [(_ENTER, pid) for pid in reversed(roots)]

        while worklist:
            action, pid = worklist.pop()

            if action == _EXIT:
                chain.pop()
                done.add(pid)
                plan.append(pid)
                continue

            if pid in done:
                continue
            if pid in chain:
                raise DependencyCycle(chain[chain.index(pid):] + [pid])
            if pid not in root_set and self._is_enabled(pid):
                self._log_cb(f"  Dependency {pid} is already installed, skipping")
                done.add(pid)
                continue

            deps = self._discover(pid)
            if deps:
                _log.debug("%s depends on %s", pid, ", ".join(str(d) for d in deps))

            chain.append(pid)
            worklist.append((_EXIT, pid))
            for dep in reversed(deps):
                if dep not in done:
                    worklist.append((_ENTER, dep))

        return plan
