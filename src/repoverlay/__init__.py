"""Core package for the repoverlay project."""

from .backup import BackupStore
from .cli import app, run
from .config import Config, ConfigError, OverlayConfig, Settings, load_config
from .errors import RepoverlayError
from .manager import OverlayManager
from .models import (
    ApplyResult,
    FileEntry,
    LinkMode,
    LocalSource,
    OverlayState,
    RemoteSource,
    RemoveResult,
    RepositorySource,
    RestoreAction,
    RestoreResult,
    StatusReport,
)
from .resolve import OverlayLocator, ResolvedSource, resolve_source
from .sources import SourceManager, SourceRepository

__all__ = [
    "BackupStore",
    "Config",
    "ConfigError",
    "OverlayConfig",
    "Settings",
    "load_config",
    "RepoverlayError",
    "OverlayManager",
    "ApplyResult",
    "FileEntry",
    "LinkMode",
    "LocalSource",
    "OverlayState",
    "RemoteSource",
    "RemoveResult",
    "RepositorySource",
    "RestoreAction",
    "RestoreResult",
    "StatusReport",
    "OverlayLocator",
    "ResolvedSource",
    "resolve_source",
    "SourceManager",
    "SourceRepository",
    "app",
    "run",
]
