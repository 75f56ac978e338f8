"""Tag index: normalized tag -> ids of entries carrying it.

The index is derived from the entry store and never authoritative. Instances
are treated as immutable: ``with_entry`` and ``without_entry`` return a new
index, so the store can publish entries and index together in one snapshot.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from .models import Entry


def normalize_tag(tag: str) -> str:
    return tag.strip().lower()


def normalize_tags(tags: Iterable[str]) -> list[str]:
    """Normalize tags, dropping empties and duplicates but keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags:
        normalized = normalize_tag(tag)
        if normalized:
            seen.setdefault(normalized, None)
    return list(seen)


class TagIndex:
    """Mapping from normalized tag to the set of entry ids carrying it."""

    __slots__ = ("_ids_by_tag",)

    def __init__(self, ids_by_tag: Mapping[str, frozenset[str]] | None = None) -> None:
        self._ids_by_tag: dict[str, frozenset[str]] = dict(ids_by_tag or {})

    @classmethod
    def build(cls, entries: Iterable[Entry]) -> TagIndex:
        """Build an index from scratch."""
        ids_by_tag: dict[str, set[str]] = {}
        for entry in entries:
            for tag in entry.tags:
                ids_by_tag.setdefault(tag, set()).add(entry.id)
        return cls({tag: frozenset(ids) for tag, ids in ids_by_tag.items()})

    def entries_for_tag(self, tag: str) -> frozenset[str]:
        return self._ids_by_tag.get(normalize_tag(tag), frozenset())

    def with_entry(self, entry: Entry) -> TagIndex:
        """Return a new index that also contains ``entry``."""
        updated = dict(self._ids_by_tag)
        for tag in entry.tags:
            updated[tag] = updated.get(tag, frozenset()) | {entry.id}
        return TagIndex(updated)

    def without_entry(self, entry: Entry) -> TagIndex:
        """Return a new index with ``entry`` pruned; empty tags disappear."""
        updated = dict(self._ids_by_tag)
        for tag in entry.tags:
            remaining = updated.get(tag, frozenset()) - {entry.id}
            if remaining:
                updated[tag] = remaining
            else:
                updated.pop(tag, None)
        return TagIndex(updated)

    def tags(self) -> list[str]:
        return sorted(self._ids_by_tag)

    def counts(self) -> dict[str, int]:
        return {tag: len(ids) for tag, ids in self._ids_by_tag.items()}

    def __len__(self) -> int:
        return len(self._ids_by_tag)

    def __contains__(self, tag: object) -> bool:
        return isinstance(tag, str) and normalize_tag(tag) in self._ids_by_tag

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, TagIndex):
            return NotImplemented
        return self._ids_by_tag == other._ids_by_tag

    def __repr__(self) -> str:
        return f"TagIndex({len(self)} tags)"
