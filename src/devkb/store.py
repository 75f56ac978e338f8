"""Durable entry store with a tag index kept in lockstep.

Layout under the data directory:

    entries/<id>.md   one Markdown file per entry, YAML frontmatter + content
    store.json        {"schema_version": 1, "next_id": N}

Mutations are serialized by a lock and written through to disk (temp file,
fsync, rename) before they are published. Published state is an immutable
Snapshot of the entries mapping and the tag index, swapped in with a single
assignment, so a reader holding a snapshot always sees entries and tags that
agree with each other.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from types import MappingProxyType
from typing import Any

import frontmatter
import yaml
from pydantic import ValidationError as PydanticValidationError

from .errors import ErrorCode, InternalError, NotFoundError, ValidationError
from .models import ENTRY_TYPES, Entry
from .tag_index import TagIndex, normalize_tags

log = logging.getLogger(__name__)

STATE_FILENAME = "store.json"
ENTRIES_DIRNAME = "entries"
SCHEMA_VERSION = 1

ID_PREFIX = "kb-"
_ID_RE = re.compile(rf"^{re.escape(ID_PREFIX)}(\d+)$")

DEFAULT_SOURCE = "api"


def format_entry_id(seq: int) -> str:
    # Zero padding keeps lexicographic order equal to creation order.
    return f"{ID_PREFIX}{seq:06d}"


def parse_entry_seq(entry_id: str) -> int | None:
    match = _ID_RE.match(entry_id)
    return int(match.group(1)) if match else None


@dataclass(frozen=True)
class Snapshot:
    """A consistent view of the store at one point in time."""

    entries: Mapping[str, Entry] = field(default_factory=lambda: MappingProxyType({}))
    tag_index: TagIndex = field(default_factory=TagIndex)


@dataclass(frozen=True)
class NewEntry:
    """Validated, normalized fields for an entry about to be created."""

    type: str
    title: str
    content: str
    tags: list[str]
    source: str


def validate_new_entry(
    type: str | None,
    title: str | None,
    content: str | None,
    tags: Iterable[str] | None = None,
    source: str | None = None,
) -> NewEntry:
    """Validate and normalize entry fields.

    Title and content are stripped of surrounding whitespace; tags are
    lowercased and deduplicated.

    Raises:
        ValidationError: If title or content is empty, or type is unknown.
    """
    entry_type = (type or "").strip().lower()
    if entry_type not in ENTRY_TYPES:
        raise ValidationError(
            f"Invalid entry type: {type!r}. Expected one of: {', '.join(ENTRY_TYPES)}",
            {"allowed_types": list(ENTRY_TYPES)},
            code=ErrorCode.INVALID_ENTRY_TYPE,
        )

    clean_title = (title or "").strip()
    if not clean_title:
        raise ValidationError("Title must not be empty")

    clean_content = (content or "").strip()
    if not clean_content:
        raise ValidationError("Content must not be empty")

    tag_list = list(tags or [])
    if any(not isinstance(t, str) for t in tag_list):
        raise ValidationError("Tags must be strings")

    clean_source = (source or "").strip() or DEFAULT_SOURCE

    return NewEntry(
        type=entry_type,
        title=clean_title,
        content=clean_content,
        tags=normalize_tags(tag_list),
        source=clean_source,
    )


def atomic_write(path: Path, text: str) -> None:
    """Write text so the file is either fully replaced or untouched."""
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        prefix=f".{path.name}.",
        suffix=".tmp",
        delete=False,
    ) as f:
        temp_path = Path(f.name)
        try:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        except BaseException:
            f.close()
            temp_path.unlink(missing_ok=True)
            raise

    try:
        os.replace(temp_path, path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise


def dump_entry(entry: Entry) -> str:
    """Serialize an entry as Markdown with YAML frontmatter."""
    post = frontmatter.Post(
        entry.content,
        id=entry.id,
        type=entry.type,
        title=entry.title,
        tags=list(entry.tags),
        source=entry.source,
        created=entry.created_at.isoformat(),
    )
    return frontmatter.dumps(post) + "\n"


def load_entry(path: Path) -> Entry:
    """Parse an entry file.

    Raises:
        ValueError: If the file has no usable frontmatter.
        yaml.YAMLError: If the frontmatter is not valid YAML.
        OSError: If the file cannot be read.
    """
    post = frontmatter.load(str(path))
    meta: dict[str, Any] = dict(post.metadata)
    if not meta:
        raise ValueError("missing frontmatter")

    tags = meta.get("tags") or []
    if isinstance(tags, str):
        tags = [tags]
    if not isinstance(tags, list) or any(not isinstance(t, str) for t in tags):
        raise ValueError("invalid tags")

    created = meta.get("created")
    try:
        return Entry(
            id=str(meta.get("id") or path.stem),
            type=meta.get("type"),
            title=meta.get("title"),
            content=post.content,
            tags=normalize_tags(tags),
            source=meta.get("source") or "",
            created_at=created,
        )
    except PydanticValidationError as e:
        raise ValueError(f"invalid frontmatter: {e.error_count()} error(s)") from e


class EntryStore:
    """Entry collection persisted under a data directory."""

    def __init__(
        self,
        data_dir: Path,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._data_dir = Path(data_dir)
        self._entries_dir = self._data_dir / ENTRIES_DIRNAME
        self._state_path = self._data_dir / STATE_FILENAME
        self._clock = clock or (lambda: datetime.now(UTC))
        self._write_lock = threading.Lock()
        self._next_seq = 1
        self._snapshot = Snapshot()
        self._load()

    @property
    def data_dir(self) -> Path:
        return self._data_dir

    def snapshot(self) -> Snapshot:
        """Return the current consistent view (entries + tag index)."""
        return self._snapshot

    # ─────────────────────────────────────────────────────────────────────
    # Reads
    # ─────────────────────────────────────────────────────────────────────

    def get(self, entry_id: str) -> Entry:
        entry = self._snapshot.entries.get(entry_id)
        if entry is None:
            raise NotFoundError(entry_id)
        return entry

    def list(self) -> list[Entry]:
        return list(self._snapshot.entries.values())

    def entries_for_tag(self, tag: str) -> frozenset[str]:
        return self._snapshot.tag_index.entries_for_tag(tag)

    def __len__(self) -> int:
        return len(self._snapshot.entries)

    # ─────────────────────────────────────────────────────────────────────
    # Mutations
    # ─────────────────────────────────────────────────────────────────────

    def create(
        self,
        type: str,
        title: str,
        content: str,
        tags: Iterable[str] | None = None,
        source: str | None = None,
    ) -> Entry:
        """Create and persist a new entry.

        Raises:
            ValidationError: On empty title/content or unknown type. Nothing
                is written.
            InternalError: If the entry could not be persisted. The store and
                tag index are unchanged.
        """
        fields = validate_new_entry(type, title, content, tags, source)

        with self._write_lock:
            seq = self._next_seq
            # Persist the sequence first: a crash after this point burns the
            # id instead of ever handing it out twice.
            try:
                self._write_state(seq + 1)
            except OSError as e:
                log.error("Failed to persist id sequence: %s", e)
                raise InternalError() from e
            self._next_seq = seq + 1

            entry = Entry(
                id=format_entry_id(seq),
                type=fields.type,
                title=fields.title,
                content=fields.content,
                tags=fields.tags,
                source=fields.source,
                created_at=self._clock(),
            )

            try:
                atomic_write(self._entry_path(entry.id), dump_entry(entry))
            except OSError as e:
                log.error("Failed to write entry %s: %s", entry.id, e)
                raise InternalError() from e

            current = self._snapshot
            entries = dict(current.entries)
            entries[entry.id] = entry
            self._snapshot = Snapshot(
                entries=MappingProxyType(entries),
                tag_index=current.tag_index.with_entry(entry),
            )

        log.info("Created entry %s (%s): %s", entry.id, entry.type, entry.title)
        return entry

    def remove(self, entry_id: str) -> Entry:
        """Delete an entry and prune it from the tag index.

        Returns:
            The removed entry.

        Raises:
            NotFoundError: If no live entry has this id.
            InternalError: If the entry file could not be deleted.
        """
        with self._write_lock:
            current = self._snapshot
            entry = current.entries.get(entry_id)
            if entry is None:
                raise NotFoundError(entry_id)

            try:
                self._entry_path(entry_id).unlink(missing_ok=True)
            except OSError as e:
                log.error("Failed to delete entry %s: %s", entry_id, e)
                raise InternalError() from e

            entries = dict(current.entries)
            del entries[entry_id]
            self._snapshot = Snapshot(
                entries=MappingProxyType(entries),
                tag_index=current.tag_index.without_entry(entry),
            )

        log.info("Removed entry %s", entry_id)
        return entry

    # ─────────────────────────────────────────────────────────────────────
    # Persistence
    # ─────────────────────────────────────────────────────────────────────

    def _entry_path(self, entry_id: str) -> Path:
        return self._entries_dir / f"{entry_id}.md"

    def _write_state(self, next_seq: int) -> None:
        payload = {"schema_version": SCHEMA_VERSION, "next_id": next_seq}
        atomic_write(self._state_path, json.dumps(payload, indent=2))

    def _read_state(self) -> int:
        if not self._state_path.exists():
            return 1
        try:
            payload = json.loads(self._state_path.read_text(encoding="utf-8"))
            return max(1, int(payload.get("next_id", 1)))
        except (json.JSONDecodeError, OSError, TypeError, ValueError, AttributeError) as e:
            log.warning("Ignoring unreadable %s: %s", self._state_path, e)
            return 1

    def _load(self) -> None:
        try:
            self._entries_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise InternalError(f"Cannot create data directory {self._data_dir}") from e

        next_seq = self._read_state()
        entries: dict[str, Entry] = {}

        for path in sorted(self._entries_dir.glob("*.md")):
            try:
                entry = load_entry(path)
            except (ValueError, OSError, yaml.YAMLError) as e:
                log.warning("Skipping unreadable entry file %s: %s", path.name, e)
                continue
            if entry.id in entries:
                log.warning("Skipping duplicate entry id %s in %s", entry.id, path.name)
                continue
            entries[entry.id] = entry
            seq = parse_entry_seq(entry.id)
            if seq is not None:
                next_seq = max(next_seq, seq + 1)

        self._next_seq = next_seq
        self._snapshot = Snapshot(
            entries=MappingProxyType(entries),
            tag_index=TagIndex.build(entries.values()),
        )
        log.debug("Loaded %d entries from %s", len(entries), self._entries_dir)
