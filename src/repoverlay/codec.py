"""Flat record encoding for overlay state.

Overlay records are stored as flat TOML tables whose values are all strings,
so the nested parts of an :class:`OverlayState` (its source variant and its
file list) are packed into delimiter-separated text:

* ``source`` is ``<tag>|<field>|<field>...``
* ``files`` is ``<target>:<source>:<linkmode>[:dir]`` entries joined by ``,``

Every field is percent-escaped for ``%``, ``|``, ``,`` and ``:`` so paths that
contain delimiters survive a round trip.
"""

from __future__ import annotations

import logging
import tomllib
from datetime import datetime
from pathlib import Path
from typing import Mapping
from urllib.parse import unquote

from tomli_w import dump as toml_dump

from .errors import DecodeError
from .models import (
    EntryType,
    FileEntry,
    GlobalMeta,
    LinkMode,
    LocalSource,
    OverlaySource,
    OverlayState,
    RemoteSource,
    RepositorySource,
    ResolvedVia,
    utcnow,
)

logger = logging.getLogger(__name__)

FORMAT_VERSION = "1"
FIELD_SEPARATOR = "|"
ENTRY_SEPARATOR = ","
PART_SEPARATOR = ":"
DIRECTORY_MARKER = "dir"

_ESCAPES = {"%": "%25", "|": "%7C", ",": "%2C", ":": "%3A"}

FlatRecord = dict[str, str]


def escape(value: str) -> str:
    return "".join(_ESCAPES.get(char, char) for char in value)


def unescape(value: str) -> str:
    return unquote(value)


# ----------------------------------------------------------------------
# Source variants


class _LocalCodec:
    tag = LocalSource.tag
    min_fields = 1

    def encode(self, source: LocalSource) -> list[str]:
        return [str(source.path)]

    def decode(self, fields: list[str]) -> LocalSource:
        return LocalSource(path=Path(fields[0]))


class _RemoteCodec:
    tag = RemoteSource.tag
    min_fields = 7

    def encode(self, source: RemoteSource) -> list[str]:
        return [
            source.url,
            source.owner,
            source.repo,
            source.ref,
            source.commit,
            source.subpath or "",
            source.cached_at.isoformat(),
        ]

    def decode(self, fields: list[str]) -> RemoteSource:
        url, owner, repo, ref, commit, subpath, cached_at = fields[:7]
        return RemoteSource(
            url=url,
            owner=owner,
            repo=repo,
            ref=ref,
            commit=commit,
            subpath=subpath or None,
            cached_at=_parse_timestamp(cached_at, field="cached_at"),
        )


class _RepositoryCodec:
    tag = RepositorySource.tag
    min_fields = 4

    def encode(self, source: RepositorySource) -> list[str]:
        fields = [source.org, source.repo, source.name, source.commit]
        if source.resolved_via is not None:
            fields.append(source.resolved_via.value)
        return fields

    def decode(self, fields: list[str]) -> RepositorySource:
        org, repo, name, commit = fields[:4]
        resolved_via = None
        if len(fields) > 4 and fields[4]:
            try:
                resolved_via = ResolvedVia(fields[4])
            except ValueError as exc:
                raise DecodeError(f"Unknown resolution '{fields[4]}' in repository source") from exc
        return RepositorySource(org=org, repo=repo, name=name, commit=commit, resolved_via=resolved_via)


_SOURCE_CODECS = {codec.tag: codec for codec in (_LocalCodec(), _RemoteCodec(), _RepositoryCodec())}


def encode_source(source: OverlaySource) -> str:
    codec = _SOURCE_CODECS[source.tag]
    fields = [source.tag, *codec.encode(source)]
    return FIELD_SEPARATOR.join(escape(item) for item in fields)


def decode_source(text: str) -> OverlaySource:
    parts = [unescape(item) for item in text.split(FIELD_SEPARATOR)]
    tag, fields = parts[0], parts[1:]
    codec = _SOURCE_CODECS.get(tag)
    if codec is None:
        raise DecodeError(f"Unknown source type '{tag}'")
    if len(fields) < codec.min_fields:
        raise DecodeError(f"Source '{tag}' needs at least {codec.min_fields} fields, found {len(fields)}")
    return codec.decode(fields)


# ----------------------------------------------------------------------
# File entries


def encode_files(entries: list[FileEntry]) -> str:
    encoded: list[str] = []
    for entry in entries:
        parts = [escape(entry.target), escape(entry.source), entry.link_mode.value]
        if entry.entry_type is EntryType.DIRECTORY:
            parts.append(DIRECTORY_MARKER)
        encoded.append(PART_SEPARATOR.join(parts))
    return ENTRY_SEPARATOR.join(encoded)


def decode_files(text: str) -> list[FileEntry]:
    entries: list[FileEntry] = []
    for raw in text.split(ENTRY_SEPARATOR):
        if not raw:
            continue
        entry = _decode_file(raw)
        if entry is None:
            logger.warning("Dropping malformed file entry '%s'", raw)
            continue
        entries.append(entry)
    return entries


def _decode_file(raw: str) -> FileEntry | None:
    parts = raw.split(PART_SEPARATOR)
    if len(parts) < 3 or not parts[0] or not parts[1]:
        return None
    try:
        link_mode = LinkMode(parts[2])
    except ValueError:
        return None
    entry_type = EntryType.DIRECTORY if parts[3:4] == [DIRECTORY_MARKER] else EntryType.FILE
    return FileEntry(
        source=unescape(parts[1]),
        target=unescape(parts[0]),
        link_mode=link_mode,
        entry_type=entry_type,
    )


# ----------------------------------------------------------------------
# Whole records


def _parse_timestamp(raw: str, *, field: str) -> datetime:
    try:
        return datetime.fromisoformat(raw)
    except ValueError:
        logger.warning("Unparseable %s '%s'; using the current time", field, raw)
        return utcnow()


def encode(state: OverlayState) -> FlatRecord:
    """Flatten ``state`` into string fields."""

    return {
        "format": FORMAT_VERSION,
        "name": state.name,
        "applied_at": state.applied_at.isoformat(),
        "source": encode_source(state.source),
        "files": encode_files(state.files),
    }


def decode(record: Mapping[str, object]) -> OverlayState:
    """Rebuild an :class:`OverlayState` from a flat record."""

    for key in ("name", "source"):
        if not isinstance(record.get(key), str) or not record[key]:
            raise DecodeError(f"Overlay record is missing '{key}'")

    files_raw = record.get("files", "")
    if not isinstance(files_raw, str):
        raise DecodeError("Overlay record field 'files' must be a string")

    applied_raw = record.get("applied_at")
    applied_at = _parse_timestamp(str(applied_raw), field="applied_at") if applied_raw else utcnow()

    return OverlayState(
        name=str(record["name"]),
        source=decode_source(str(record["source"])),
        applied_at=applied_at,
        files=decode_files(files_raw),
    )


def read_record(path: Path) -> FlatRecord:
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise DecodeError(f"Failed to parse overlay record '{path}': {exc}") from exc
    return {key: value for key, value in data.items() if isinstance(value, str)}


def write_record(path: Path, record: Mapping[str, str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        toml_dump(dict(record), handle)


def load_state(path: Path) -> OverlayState:
    """Read and decode the overlay record at ``path``."""

    try:
        return decode(read_record(path))
    except DecodeError as exc:
        raise DecodeError(f"{exc} ({path})") from exc


def save_state(path: Path, state: OverlayState) -> None:
    write_record(path, encode(state))


def load_meta(path: Path) -> GlobalMeta:
    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
        return GlobalMeta(version=int(data.get("version", 1)))
    except (tomllib.TOMLDecodeError, TypeError, ValueError) as exc:
        raise DecodeError(f"Failed to parse overlay metadata '{path}': {exc}") from exc


def save_meta(path: Path, meta: GlobalMeta) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("wb") as handle:
        toml_dump({"version": meta.version}, handle)
