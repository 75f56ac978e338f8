"""Lexical search over knowledge entries.

Scoring is a weighted count of query-term matches:

    title substring   3 per term
    exact tag         2 per term
    content substring 1 per term

Entries scoring 0 are dropped. Results are ordered by score descending, then
newest first, then by id, so identical inputs always give identical output.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from typing import NamedTuple

from .errors import ErrorCode, ValidationError
from .history import SearchHistory
from .models import Entry, ScoredEntry
from .store import EntryStore

log = logging.getLogger(__name__)

TITLE_WEIGHT = 3
TAG_WEIGHT = 2
CONTENT_WEIGHT = 1

# Unicode letters and digits; underscore and everything else separates terms
_TERM_RE = re.compile(r"[^\W_]+")


class SearchHit(NamedTuple):
    entry: Entry
    score: int

    def to_scored_entry(self) -> ScoredEntry:
        return ScoredEntry(**self.entry.model_dump(), score=self.score)


def tokenize(query: str) -> list[str]:
    """Split a query into distinct lowercase terms, in first-seen order."""
    return list(dict.fromkeys(_TERM_RE.findall(query.lower())))


def score_entry(entry: Entry, terms: Iterable[str]) -> int:
    title = entry.title.lower()
    content = entry.content.lower()
    tags = set(entry.tags)

    score = 0
    for term in terms:
        if term in title:
            score += TITLE_WEIGHT
        if term in tags:
            score += TAG_WEIGHT
        if term in content:
            score += CONTENT_WEIGHT
    return score


def _sort_key(hit: SearchHit) -> tuple:
    # Newest first among equal scores: negate the timestamp.
    return (-hit.score, -hit.entry.created_at.timestamp(), hit.entry.id)


def rank(entries: Iterable[Entry], query: str, limit: int | None = None) -> list[SearchHit]:
    """Score and order entries for a query. Pure; records nothing."""
    terms = tokenize(query)
    if not terms:
        return []

    hits = []
    for entry in entries:
        score = score_entry(entry, terms)
        if score > 0:
            hits.append(SearchHit(entry, score))

    hits.sort(key=_sort_key)
    if limit is not None:
        hits = hits[:limit]
    return hits


class SearchEngine:
    """Ranks store entries against queries and records each search."""

    def __init__(
        self,
        store: EntryStore,
        history: SearchHistory,
        default_limit: int | None = None,
    ) -> None:
        self._store = store
        self._history = history
        self._default_limit = default_limit

    def search(
        self,
        query: str,
        limit: int | None = None,
        type: str | None = None,
        tag: str | None = None,
    ) -> list[SearchHit]:
        """Search the knowledge base.

        Args:
            query: Free-text query; must contain a non-whitespace character.
            limit: Maximum hits. Defaults to the configured search limit
                (no cap when unset).
            type: Only consider entries of this type.
            tag: Only consider entries carrying this tag.

        Returns:
            Hits ordered by relevance.

        Raises:
            ValidationError: If the query is empty or limit is not positive.
            InternalError: If the search could not be recorded.
        """
        if not query or not query.strip():
            raise ValidationError("Query must not be empty", code=ErrorCode.EMPTY_QUERY)
        if limit is not None and limit < 1:
            raise ValidationError("Limit must be at least 1")

        snapshot = self._store.snapshot()
        candidates: Iterable[Entry] = snapshot.entries.values()
        if tag is not None:
            ids = snapshot.tag_index.entries_for_tag(tag)
            candidates = (snapshot.entries[i] for i in sorted(ids))
        if type is not None:
            entry_type = type.strip().lower()
            candidates = (e for e in candidates if e.type == entry_type)

        hits = rank(candidates, query, limit if limit is not None else self._default_limit)

        self._history.append(query, len(hits))
        log.debug("Search %r: %d hits", query, len(hits))
        return hits
