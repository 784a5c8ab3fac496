"""
Profiles and global configuration.

Layout under the config root::

    config                              current profile, repository list
    profiles/<name>/profile             install path, enabled packages, game
    profiles/<name>/file_ownership.json (see file_ownership.py)

``AppContext`` bundles the config root with the loaded config and the active
profile.  It is built once per command and handed to every operation that
needs it.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from dataclasses import dataclass
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_serializer, field_validator

from mod_errors import ConfigError, IoError, ProfileNotFound
from package_id import PackageId

CONFIG_FILENAME = "config"
PROFILE_FILENAME = "profile"
PROFILES_DIRNAME = "profiles"
DEFAULT_GAME = "falloutnv"

_log = logging.getLogger(__name__)


def default_config_root() -> Path:
    env = os.environ.get("MODKEEPER_CONFIG_DIR")
    if env:
        return Path(env).expanduser()
    base = os.environ.get("XDG_CONFIG_HOME") or "~/.config"
    return Path(base).expanduser() / "modkeeper"


def check_plain_name(value: str, kind: str) -> str:
    """Names become directory and file names, so keep them to a single component."""
    if not value or value != value.strip():
        raise ConfigError(f"Invalid {kind} name {value!r}")
    if "/" in value or "\\" in value or value in (".", ".."):
        raise ConfigError(f"Invalid {kind} name {value!r}: must not contain path separators")
    return value


class AppConfig(BaseModel):
    """Contents of the ``config`` file."""

    current_profile: str | None = None
    repositories: list[str] = Field(default_factory=list)
    request_timeout: float | None = None

    @field_validator("repositories", mode="before")
    @classmethod
    def _split_repositories(cls, v):
        if isinstance(v, str):
            v = v.split(",")
        return [r.strip() for r in v if r and r.strip()]

    @field_serializer("repositories")
    def _join_repositories(self, repos: list[str]) -> str:
        return ",".join(repos)


class Profile(BaseModel):
    """One profile: where packages go and which ones are enabled."""

    install_path: Path
    enabled_packages: list[PackageId] = Field(default_factory=list)
    game: str = DEFAULT_GAME

    @field_validator("enabled_packages")
    @classmethod
    def _dedupe(cls, v: list[PackageId]) -> list[PackageId]:
        seen: list[PackageId] = []
        for pid in v:
            if pid not in seen:
                seen.append(pid)
        return seen

    @field_serializer("install_path")
    def _path_str(self, p: Path) -> str:
        return str(p)

    def is_enabled(self, package_id: PackageId) -> bool:
        return package_id in self.enabled_packages

    def enable(self, package_id: PackageId):
        if package_id not in self.enabled_packages:
            self.enabled_packages.append(package_id)

    def disable(self, package_id: PackageId):
        if package_id in self.enabled_packages:
            self.enabled_packages.remove(package_id)


class ProfileStore:
    """Reads and writes the config file and per-profile records."""

    def __init__(self, config_root: str | Path):
        self.config_root = Path(config_root)
        self.config_path = self.config_root / CONFIG_FILENAME
        self.profiles_dir = self.config_root / PROFILES_DIRNAME

    # ── Paths ─────────────────────────────────────────────────────────

    def profile_dir(self, name: str) -> Path:
        return self.profiles_dir / check_plain_name(name, "profile")

    def profile_path(self, name: str) -> Path:
        return self.profile_dir(name) / PROFILE_FILENAME

    def snapshot_dir(self, name: str) -> Path:
        return self.config_root / "caches" / check_plain_name(name, "profile")

    # ── Config file ───────────────────────────────────────────────────

    def load_config(self) -> AppConfig:
        if not self.config_path.exists():
            return AppConfig()
        try:
            return AppConfig.model_validate(json.loads(self.config_path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise ConfigError(f"Could not load config file {self.config_path}") from exc

    def save_config(self, config: AppConfig):
        self._write_json(self.config_path, config.model_dump(mode="json"))

    # ── Profiles ──────────────────────────────────────────────────────

    def list_profiles(self) -> list[str]:
        if not self.profiles_dir.is_dir():
            return []
        return sorted(
            d.name for d in self.profiles_dir.iterdir() if (d / PROFILE_FILENAME).is_file()
        )

    def exists(self, name: str) -> bool:
        return self.profile_path(name).is_file()

    def load_profile(self, name: str) -> Profile:
        path = self.profile_path(name)
        if not path.is_file():
            raise ProfileNotFound(name)
        try:
            return Profile.model_validate(json.loads(path.read_text(encoding="utf-8")))
        except (OSError, json.JSONDecodeError, ValidationError) as exc:
            raise ConfigError(f"Could not load profile '{name}' from {path}") from exc

    def save_profile(self, name: str, profile: Profile):
        self._write_json(self.profile_path(name), profile.model_dump(mode="json"))

    def create_profile(self, name: str, install_path: str | Path, game: str = DEFAULT_GAME) -> Profile:
        if self.exists(name):
            raise ConfigError(f"Profile '{name}' already exists")
        profile = Profile(install_path=Path(install_path).expanduser(), game=game)
        self.save_profile(name, profile)

        config = self.load_config()
        if config.current_profile is None:
            config.current_profile = name
            self.save_config(config)
            _log.info("Selected first profile '%s'", name)
        _log.info("Created profile '%s' (%s) at %s", name, game, profile.install_path)
        return profile

    def select_profile(self, name: str):
        if not self.exists(name):
            raise ProfileNotFound(name)
        config = self.load_config()
        config.current_profile = name
        self.save_config(config)

    def remove_profile(self, name: str):
        if not self.exists(name):
            raise ProfileNotFound(name)
        if self.load_config().current_profile == name:
            raise ConfigError(f"Refusing to remove '{name}': it is the current profile")
        try:
            shutil.rmtree(self.profile_dir(name))
        except OSError as exc:
            raise IoError(f"Could not remove profile directory for '{name}'", self.profile_dir(name)) from exc

    # ── Internals ─────────────────────────────────────────────────────

    @staticmethod
    def _write_json(path: Path, data):
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as exc:
            raise IoError(f"Could not write {path}", path) from exc


@dataclass
class AppContext:
    """Everything one command invocation needs to know about its environment."""

    store: ProfileStore
    config: AppConfig
    profile_name: str | None = None
    profile: Profile | None = None

    @property
    def config_root(self) -> Path:
        return self.store.config_root

    @classmethod
    def load(cls, config_root: str | Path, *, require_profile: bool = True) -> AppContext:
        store = ProfileStore(config_root)
        config = store.load_config()
        ctx = cls(store=store, config=config, profile_name=config.current_profile)
        if config.current_profile is not None and store.exists(config.current_profile):
            ctx.profile = store.load_profile(config.current_profile)
        elif require_profile:
            if config.current_profile is None:
                raise ConfigError("No profile selected. Create one with 'profile create'.")
            raise ProfileNotFound(config.current_profile)
        return ctx

    def active_profile(self) -> tuple[str, Profile]:
        if self.profile_name is None or self.profile is None:
            raise ConfigError("No profile selected. Create one with 'profile create'.")
        return self.profile_name, self.profile

    def save_profile(self):
        name, profile = self.active_profile()
        self.store.save_profile(name, profile)

    def save_config(self):
        self.store.save_config(self.config)
