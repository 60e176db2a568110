"""Configuration loading helpers for jurisdiction profiles and global settings."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

import yaml
from pydantic import ValidationError

from ..errors import ProfileConfigurationError
from .models import GlobalConfig, JurisdictionProfile

CONFIG_EXTENSIONS = (".yaml", ".yml", ".json")
GLOBAL_CONFIG_FILENAME = "global_config.yaml"
PROFILE_SUFFIX = ".yaml"
HOME_ENV = "LIEN_CRAWLER_HOME"


def slugify(name: str) -> str:
    slug = "".join(ch.lower() if ch.isalnum() else "-" for ch in name).strip("-")
    while "--" in slug:
        slug = slug.replace("--", "-")
    return slug


def _is_yaml(path: Path) -> bool:
    return path.suffix.lower() in (".yaml", ".yml")


def _read_file(path: Path) -> dict:
    raw = path.read_text(encoding="utf-8")
    data = (yaml.safe_load(raw) or {}) if _is_yaml(path) else json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} does not hold a key/value mapping")
    return data


def _write_file(path: Path, payload: dict) -> None:
    with path.open("w", encoding="utf-8") as stream:
        if _is_yaml(path):
            yaml.safe_dump(payload, stream, allow_unicode=True, sort_keys=False)
        else:
            json.dump(payload, stream, indent=2, ensure_ascii=False)


@dataclass(slots=True)
class ConfigLocator:
    """Resolve important paths from the project home."""

    project_root: Path | None = None
    data_dir: Path | None = None
    jurisdictions_dir: Path | None = None
    logs_dir: Path | None = None

    def __post_init__(self) -> None:
        home = os.environ.get(HOME_ENV)
        fallback = self.project_root or Path(__file__).resolve().parents[2]
        root = Path(home).expanduser() if home else fallback
        self.project_root = root.resolve()
        self.data_dir = self.project_root / "data"
        self.jurisdictions_dir = self.data_dir / "jurisdictions"
        self.logs_dir = self.project_root / "logs"
        self.ensure_directories()

    def ensure_directories(self) -> None:
        for directory in (self.data_dir, self.jurisdictions_dir, self.logs_dir):
            directory.mkdir(parents=True, exist_ok=True)

    def global_config_path(self) -> Path:
        return self.data_dir / GLOBAL_CONFIG_FILENAME


@dataclass(slots=True)
class ProfileLoadError:
    path: Path
    message: str


class ConfigRepository:
    """Repository encapsulating config IO and schema validation."""

    def __init__(self, locator: ConfigLocator | None = None) -> None:
        self.locator = locator or ConfigLocator()
        self._global_cache: GlobalConfig | None = None

    # ------------------------------------------------------------------
    # Global configuration helpers
    # ------------------------------------------------------------------
    def load_global_config(self) -> GlobalConfig:
        if self._global_cache is None:
            path = self.locator.global_config_path()
            if path.exists():
                self._global_cache = GlobalConfig.model_validate(_read_file(path))
            else:
                self.save_global_config(GlobalConfig())
        return self._global_cache

    def save_global_config(self, config: GlobalConfig) -> None:
        _write_file(self.locator.global_config_path(), config.model_dump(mode="json"))
        self._global_cache = config

    def database_path(self) -> Path:
        return self.load_global_config().resolved_database_path(self.locator.data_dir)

    # ------------------------------------------------------------------
    # Jurisdiction profiles
    # ------------------------------------------------------------------
    def profile_path(self, identifier: str) -> Path:
        return self.locator.jurisdictions_dir / f"{slugify(identifier)}{PROFILE_SUFFIX}"

    def list_profile_files(self) -> Iterable[Path]:
        for path in sorted(self.locator.jurisdictions_dir.glob("*")):
            if path.is_file() and path.suffix in CONFIG_EXTENSIONS:
                yield path

    def load_profile(self, identifier: str | Path) -> JurisdictionProfile:
        path = identifier if isinstance(identifier, Path) else self.profile_path(identifier)
        if not path.exists():
            raise FileNotFoundError(f"Jurisdiction profile not found: {identifier}")
        try:
            return JurisdictionProfile.model_validate(_read_file(path))
        except (ValidationError, ValueError, yaml.YAMLError) as exc:
            raise ProfileConfigurationError(f"{path.name}: {exc}") from exc

    def load_profiles(
        self, *, active_only: bool = False
    ) -> tuple[list[JurisdictionProfile], list[ProfileLoadError]]:
        """Load every profile file, separating valid profiles from rejected ones."""

        profiles: list[JurisdictionProfile] = []
        errors: list[ProfileLoadError] = []
        seen_ids: set[str] = set()
        for path in self.list_profile_files():
            try:
                profile = self.load_profile(path)
            except ProfileConfigurationError as exc:
                errors.append(ProfileLoadError(path=path, message=str(exc)))
                continue
            if profile.id in seen_ids:
                errors.append(ProfileLoadError(path=path, message=f"Duplicate id {profile.id}"))
                continue
            seen_ids.add(profile.id)
            if active_only and not profile.active:
                continue
            profiles.append(profile)
        return profiles, errors

    def save_profile(self, profile: JurisdictionProfile) -> Path:
        path = self.profile_path(profile.id)
        payload = profile.model_dump(mode="json", exclude_none=True)
        _write_file(path, payload)
        return path

    def delete_profile(self, identifier: str) -> bool:
        path = self.profile_path(identifier)
        if path.exists():
            path.unlink()
            return True
        return False

    # ------------------------------------------------------------------
    # Utility
    # ------------------------------------------------------------------
    def template_path(self, template_name: str = "jurisdiction_template.yaml") -> Path:
        """Return a built-in template without copying it into the profile directory."""

        path = Path(__file__).resolve().parent / "templates" / template_name
        if not path.exists():
            raise FileNotFoundError(f"No bundled template named {template_name}")
        return path


__all__ = [
    "CONFIG_EXTENSIONS",
    "ConfigLocator",
    "ConfigRepository",
    "HOME_ENV",
    "ProfileLoadError",
    "slugify",
]
