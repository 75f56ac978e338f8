"""Pydantic models for the knowledge base.

JSON produced by the service uses camelCase keys (``createdAt``,
``totalEntries``); Python code uses the snake_case attribute names.
"""

from datetime import datetime
from typing import Literal, get_args

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

EntryType = Literal[
    "code",
    "documentation",
    "decision",
    "conversation",
    "architecture",
    "process",
]

ENTRY_TYPES: tuple[str, ...] = get_args(EntryType)


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Entry(_CamelModel):
    """A stored unit of knowledge."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    type: EntryType
    title: str
    content: str
    tags: list[str] = Field(default_factory=list)  # normalized, display order
    source: str = ""
    created_at: datetime


class EntryCreate(_CamelModel):
    """Payload for creating an entry.

    Fields are loosely typed on purpose: the store performs validation so
    that every caller (HTTP, CLI, library) gets the same error messages.
    """

    type: str = ""
    title: str = ""
    content: str = ""
    tags: list[str] = Field(default_factory=list)
    source: str | None = None


class ScoredEntry(Entry):
    """An entry with its relevance score for a query."""

    score: int


class SearchHistoryRecord(_CamelModel):
    """One past search."""

    query: str
    timestamp: datetime
    result_count: int


class Statistics(_CamelModel):
    """Usage statistics, derived on demand."""

    total_entries: int
    total_tags: int
    search_history_count: int
    by_type: dict[str, int]  # every entry type present, zero if unused


class TagCount(_CamelModel):
    """A tag with the number of entries carrying it."""

    tag: str
    count: int


class AskRequest(_CamelModel):
    question: str = ""


class AskAnswer(_CamelModel):
    """Answer to a question, assembled from matching entries."""

    answer: str
    sources: list[ScoredEntry] = Field(default_factory=list)
