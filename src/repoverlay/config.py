"""TOML configuration loading for repoverlay."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Dict, Mapping

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from tomli_w import dump as toml_dump

from .models import Source

APP_NAME = "repoverlay"
CONFIG_FILENAME = "config.toml"
OVERLAY_CONFIG_FILENAME = "repoverlay.toml"
LEGACY_SOURCE_NAME = "default"


class ConfigError(RuntimeError):
    """Raised when a configuration file cannot be parsed or validated."""


def _expand_path(raw: str | os.PathLike[str] | Path, *, base_dir: Path) -> Path:
    """Return an absolute ``Path`` by expanding env vars and user segments."""

    text = str(raw)
    expanded = Path(os.path.expandvars(text)).expanduser()
    if expanded.is_absolute():
        return expanded.resolve(strict=False)
    return (base_dir / expanded).resolve(strict=False)


def _xdg_dir(variable: str, fallback: str) -> Path:
    base = os.environ.get(variable)
    root = Path(base).expanduser() if base else Path(fallback).expanduser()
    return root / APP_NAME


def default_config_dir() -> Path:
    return _xdg_dir("XDG_CONFIG_HOME", "~/.config")


def default_data_dir() -> Path:
    return _xdg_dir("XDG_DATA_HOME", "~/.local/share")


def default_cache_dir() -> Path:
    return _xdg_dir("XDG_CACHE_HOME", "~/.cache")


def default_config_path() -> Path:
    return default_config_dir() / CONFIG_FILENAME


class Settings(BaseModel):
    """Global configuration options."""

    model_config = ConfigDict(frozen=True)

    data_dir: Path = Field(default_factory=default_data_dir)
    cache_dir: Path = Field(default_factory=default_cache_dir)

    @classmethod
    def from_raw(cls, raw: Mapping[str, Any], *, base_dir: Path) -> "Settings":
        values: Dict[str, Path] = {}
        for key in ("data_dir", "cache_dir"):
            if raw.get(key) is not None:
                values[key] = _expand_path(raw[key], base_dir=base_dir)
        return cls(**values)

    @property
    def sources_dir(self) -> Path:
        """Directory that holds one clone per configured source."""

        return self.cache_dir / "sources"


class Config(BaseModel):
    """Fully parsed global configuration."""

    model_config = ConfigDict(frozen=True)

    config_path: Path
    settings: Settings = Field(default_factory=Settings)
    sources: tuple[Source, ...] = ()

    def source(self, name: str) -> Source | None:
        return next((source for source in self.sources if source.name == name), None)

    def source_names(self) -> list[str]:
        return [source.name for source in self.sources]

    def with_source(self, source: Source) -> "Config":
        if self.source(source.name) is not None:
            raise ConfigError(f"Source '{source.name}' already exists")
        _validate_source_name(source.name)
        return self.model_copy(update={"sources": (*self.sources, source)})

    def without_source(self, name: str) -> "Config":
        if self.source(name) is None:
            raise ConfigError(f"Unknown source '{name}'. Configured sources: {', '.join(self.source_names()) or 'none'}")
        return self.model_copy(update={"sources": tuple(source for source in self.sources if source.name != name)})


def _validate_source_name(name: str) -> None:
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ConfigError(f"Invalid source name '{name}'")


def _parse_sources(data: Mapping[str, Any]) -> tuple[Source, ...]:
    raw_sources = data.get("sources") or []
    if not isinstance(raw_sources, list):
        raise ConfigError("'sources' must be an array of tables ([[sources]])")

    sources: list[Source] = []
    seen: set[str] = set()
    for index, raw in enumerate(raw_sources):
        if not isinstance(raw, Mapping):
            raise ConfigError(f"Source #{index + 1} must be a table")
        name = raw.get("name")
        url = raw.get("url")
        if not isinstance(name, str) or not isinstance(url, str) or not url:
            raise ConfigError(f"Source #{index + 1} must define string 'name' and 'url' keys")
        _validate_source_name(name)
        if name in seen:
            raise ConfigError(f"Source '{name}' is defined more than once")
        seen.add(name)
        sources.append(Source(name=name, url=url))

    legacy = data.get("overlay_repo")
    if not sources and isinstance(legacy, Mapping) and isinstance(legacy.get("url"), str):
        sources.append(Source(name=LEGACY_SOURCE_NAME, url=legacy["url"]))

    return tuple(sources)


def load_config(path: Path | None = None) -> Config:
    """Load the global configuration.

    Args:
        path: Optional path to the TOML file. Defaults to
            ``$XDG_CONFIG_HOME/repoverlay/config.toml``. A missing file yields
            the default configuration.
    """

    config_path = Path(path) if path is not None else default_config_path()
    if config_path.is_dir():
        config_path = config_path / CONFIG_FILENAME

    if not config_path.exists():
        return Config(config_path=config_path)

    try:
        with config_path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse configuration file '{config_path}': {exc}") from exc

    settings_raw = data.get("settings") or {}
    if not isinstance(settings_raw, Mapping):
        raise ConfigError("[settings] must be a table")

    settings = Settings.from_raw(settings_raw, base_dir=config_path.parent)
    return Config(config_path=config_path, settings=settings, sources=_parse_sources(data))


def save_config(config: Config) -> Path:
    """Write ``config`` back to its file, creating parent directories."""

    data: Dict[str, Any] = {
        "sources": [{"name": source.name, "url": source.url} for source in config.sources],
    }

    defaults = Settings()
    settings: Dict[str, str] = {}
    if config.settings.data_dir != defaults.data_dir:
        settings["data_dir"] = str(config.settings.data_dir)
    if config.settings.cache_dir != defaults.cache_dir:
        settings["cache_dir"] = str(config.settings.cache_dir)
    if settings:
        data["settings"] = settings

    config.config_path.parent.mkdir(parents=True, exist_ok=True)
    with config.config_path.open("wb") as handle:
        toml_dump(data, handle)
    return config.config_path


class OverlayMeta(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str | None = None
    description: str | None = None


class OverlayConfig(BaseModel):
    """Declared configuration shipped inside an overlay (``repoverlay.toml``)."""

    model_config = ConfigDict(frozen=True)

    overlay: OverlayMeta = Field(default_factory=OverlayMeta)
    mappings: Dict[str, str] = Field(default_factory=dict)
    directories: tuple[str, ...] = ()


def load_overlay_config(root: Path) -> OverlayConfig:
    """Read ``repoverlay.toml`` from an overlay root, or return the defaults."""

    path = root / OVERLAY_CONFIG_FILENAME
    if not path.is_file():
        return OverlayConfig()

    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
        return OverlayConfig.model_validate(data)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Failed to parse overlay configuration '{path}': {exc}") from exc
    except ValidationError as exc:
        raise ConfigError(f"Invalid overlay configuration '{path}': {exc}") from exc
