"""Usage statistics, computed on demand from a store snapshot."""

from __future__ import annotations

from .history import SearchHistory
from .models import ENTRY_TYPES, Statistics, TagCount
from .store import Snapshot


def compute_stats(snapshot: Snapshot, history: SearchHistory) -> Statistics:
    """Compute statistics for one consistent snapshot.

    Nothing is cached, so a create followed by this call always reflects the
    new entry.
    """
    by_type = dict.fromkeys(ENTRY_TYPES, 0)
    for entry in snapshot.entries.values():
        by_type[entry.type] = by_type.get(entry.type, 0) + 1

    return Statistics(
        total_entries=len(snapshot.entries),
        total_tags=len(snapshot.tag_index),
        search_history_count=len(history),
        by_type=by_type,
    )


def tag_counts(snapshot: Snapshot) -> list[TagCount]:
    """All tags with entry counts, most used first, then alphabetical."""
    counts = snapshot.tag_index.counts()
    return [
        TagCount(tag=tag, count=count)
        for tag, count in sorted(counts.items(), key=lambda x: (-x[1], x[0]))
    ]
