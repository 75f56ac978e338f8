"""Core business logic for devkb.

KnowledgeBase is the plain request/response interface the HTTP layer and the
CLI sit on: create, get, list and remove entries, search, ask, and
statistics. All state lives under ``config.data_dir``.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime

from .config import ServiceConfig
from .errors import ErrorCode, ValidationError
from .history import SearchHistory
from .models import AskAnswer, Entry, SearchHistoryRecord, Statistics, TagCount
from .search import SearchEngine, SearchHit
from .stats import compute_stats, tag_counts
from .store import EntryStore

log = logging.getLogger(__name__)

SNIPPET_CHARS = 200


def _snippet(content: str) -> str:
    text = " ".join(content.split())
    return text[:SNIPPET_CHARS] + "..." if len(text) > SNIPPET_CHARS else text


class KnowledgeBase:
    """Entry store, tag index, search and statistics behind one object."""

    def __init__(
        self,
        config: ServiceConfig,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.config = config
        self.store = EntryStore(config.data_dir, clock=clock)
        self.history = SearchHistory(config.data_dir, config.history_limit, clock=clock)
        self.engine = SearchEngine(self.store, self.history, default_limit=config.search_limit)
        log.info(
            "Knowledge base ready at %s (%d entries)", config.data_dir, len(self.store)
        )

    # Entries

    def create_entry(
        self,
        type: str,
        title: str,
        content: str,
        tags: Iterable[str] | None = None,
        source: str | None = None,
    ) -> Entry:
        return self.store.create(type, title, content, tags, source)

    def get_entry(self, entry_id: str) -> Entry:
        return self.store.get(entry_id)

    def remove_entry(self, entry_id: str) -> Entry:
        return self.store.remove(entry_id)

    def list_entries(self, type: str | None = None, tag: str | None = None) -> list[Entry]:
        """List entries newest first, optionally filtered by type and tag."""
        snapshot = self.store.snapshot()
        entries: Iterable[Entry] = snapshot.entries.values()
        if tag is not None:
            ids = snapshot.tag_index.entries_for_tag(tag)
            entries = (snapshot.entries[i] for i in ids)
        if type is not None:
            entry_type = type.strip().lower()
            entries = (e for e in entries if e.type == entry_type)
        return sorted(entries, key=lambda e: (-e.created_at.timestamp(), e.id))

    def entries_for_tag(self, tag: str) -> frozenset[str]:
        return self.store.entries_for_tag(tag)

    # Search

    def search(
        self,
        query: str,
        limit: int | None = None,
        type: str | None = None,
        tag: str | None = None,
    ) -> list[SearchHit]:
        return self.engine.search(query, limit=limit, type=type, tag=tag)

    def ask(self, question: str) -> AskAnswer:
        """Answer a question with the best-matching entries.

        No language model is involved: the answer lists the top matches so
        the client has something useful to show.
        """
        if not question or not question.strip():
            raise ValidationError("Question must not be empty", code=ErrorCode.EMPTY_QUERY)

        question = question.strip()
        hits = self.engine.search(question, limit=self.config.ask_sources)
        if not hits:
            return AskAnswer(
                answer="No entries in the knowledge base match this question.",
                sources=[],
            )

        lines = [f"Found {len(hits)} relevant entries:", ""]
        for hit in hits:
            entry = hit.entry
            lines.append(f"- **{entry.title}** ({entry.type}): {_snippet(entry.content)}")
        return AskAnswer(
            answer="\n".join(lines),
            sources=[hit.to_scored_entry() for hit in hits],
        )

    # Statistics

    def stats(self) -> Statistics:
        return compute_stats(self.store.snapshot(), self.history)

    def tags(self) -> list[TagCount]:
        return tag_counts(self.store.snapshot())

    def search_history(self) -> list[SearchHistoryRecord]:
        return self.history.records()
