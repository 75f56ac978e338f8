"""Tests for lexical search.

Coverage:
- tokenization
- weighted scoring (title 3, tag 2, content 1)
- deterministic ordering and tie-breaks
- history recording
- filters and limits
"""

from datetime import UTC, datetime

import pytest

from conftest import create_entry
from devkb.config import ServiceConfig
from devkb.core import KnowledgeBase
from devkb.errors import ErrorCode, ValidationError
from devkb.search import rank, score_entry, tokenize


class TestTokenize:
    @pytest.mark.parametrize(
        ("query", "expected"),
        [
            ("auth", ["auth"]),
            ("JWT Auth", ["jwt", "auth"]),
            ("retry-backoff, v2!", ["retry", "backoff", "v2"]),
            ("snake_case", ["snake", "case"]),
            ("auth AUTH auth", ["auth"]),
            ("café über", ["café", "über"]),
            ("  !!! ", []),
        ],
    )
    def test_tokenize(self, query, expected):
        assert tokenize(query) == expected


class TestScoring:
    def test_weights(self, kb):
        entry = create_entry(kb, "Auth flow", "Uses auth tokens", ["auth"])
        assert score_entry(entry, ["auth"]) == 3 + 2 + 1

    def test_title_match_is_substring(self, kb):
        entry = create_entry(kb, "Authentication Flow", "Nothing relevant")
        assert score_entry(entry, ["auth"]) == 3

    def test_tag_match_is_exact(self, kb):
        entry = create_entry(kb, "Title", "Nothing relevant", ["authentication"])
        assert score_entry(entry, ["auth"]) == 0

    def test_scores_sum_over_terms(self, kb):
        entry = create_entry(kb, "JWT handling", "Session auth", ["jwt"])
        # jwt: title 3 + tag 2 + content 0; auth: content 1
        assert score_entry(entry, ["jwt", "auth"]) == 6


class TestSearchRanking:
    def test_title_and_tag_beat_content_only(self, kb):
        body_only = create_entry(kb, "Session notes", "We discussed auth once.")
        titled = create_entry(kb, "Authentication Flow", "Login sequence.", ["auth"])

        hits = kb.search("auth")

        assert [h.entry.id for h in hits] == [titled.id, body_only.id]
        assert hits[0].score > hits[1].score

    def test_zero_scores_excluded(self, kb):
        create_entry(kb, "Unrelated", "Nothing to see")
        assert kb.search("auth") == []

    def test_each_entry_at_most_once(self, kb):
        create_entry(kb, "Auth auth", "auth auth auth", ["auth"])
        hits = kb.search("auth auth")
        assert len(hits) == 1
        assert hits[0].score == 6

    def test_identical_searches_are_deterministic(self, kb):
        for i in range(10):
            create_entry(kb, f"Entry {i}", "auth" if i % 2 else "jwt auth", ["auth"] if i % 3 else [])

        first = kb.search("auth jwt")
        second = kb.search("auth jwt")

        assert [(h.entry.id, h.score) for h in first] == [(h.entry.id, h.score) for h in second]

    def test_ties_newest_first(self, kb):
        older = create_entry(kb, "Token notes", "body", ["auth"])
        newer = create_entry(kb, "Session notes", "body", ["auth"])

        hits = kb.search("auth")

        assert [h.entry.id for h in hits] == [newer.id, older.id]

    def test_equal_timestamps_break_ties_by_id(self, tmp_data_dir):
        fixed = datetime(2024, 1, 1, tzinfo=UTC)
        kb = KnowledgeBase(ServiceConfig(data_dir=tmp_data_dir), clock=lambda: fixed)
        a = create_entry(kb, "One", "body", ["auth"])
        b = create_entry(kb, "Two", "body", ["auth"])

        hits = kb.search("auth")

        assert [h.entry.id for h in hits] == [a.id, b.id]

    def test_rank_is_pure(self, kb):
        create_entry(kb, "Auth", "body")
        rank(kb.store.list(), "auth")
        assert kb.search_history() == []

    def test_scenario_tag_matches_on_both(self, kb):
        a = create_entry(kb, "Token handling", "Signed tokens.", ["auth", "jwt"], type="code")
        b = create_entry(kb, "Session policy", "Cookie rules.", ["auth"], type="decision")

        hits = kb.search("auth")

        assert {h.entry.id for h in hits} == {a.id, b.id}
        assert [h.score for h in hits] == [2, 2]
        # Equal scores: the newer entry wins
        assert hits[0].entry.id == b.id


class TestSearchOptions:
    def test_limit(self, kb):
        for i in range(5):
            create_entry(kb, f"Auth {i}", "body")
        assert len(kb.search("auth", limit=2)) == 2

    def test_configured_limit_applies_by_default(self, tmp_data_dir, clock):
        kb = KnowledgeBase(ServiceConfig(data_dir=tmp_data_dir, search_limit=3), clock=clock)
        for i in range(5):
            create_entry(kb, f"Auth {i}", "body")
        assert len(kb.search("auth")) == 3
        assert len(kb.search("auth", limit=4)) == 4

    def test_non_positive_limit_rejected(self, kb):
        with pytest.raises(ValidationError):
            kb.search("auth", limit=0)

    def test_type_filter(self, kb):
        code = create_entry(kb, "Auth client", "body", type="code")
        create_entry(kb, "Auth decision", "body", type="decision")
        assert [h.entry.id for h in kb.search("auth", type="code")] == [code.id]

    def test_tag_filter(self, kb):
        tagged = create_entry(kb, "Auth A", "body", ["security"])
        create_entry(kb, "Auth B", "body")
        assert [h.entry.id for h in kb.search("auth", tag="Security")] == [tagged.id]


class TestSearchHistoryRecording:
    def test_every_search_is_recorded(self, kb):
        create_entry(kb, "Auth", "body")
        kb.search("auth")
        kb.search("nothing matches")

        records = kb.search_history()

        assert [(r.query, r.result_count) for r in records] == [
            ("auth", 1),
            ("nothing matches", 0),
        ]

    def test_query_without_terms_records_zero(self, kb):
        create_entry(kb, "Auth", "body")
        assert kb.search("???") == []
        assert kb.search_history()[-1].result_count == 0

    @pytest.mark.parametrize("query", ["", "   "])
    def test_empty_query_rejected_and_not_recorded(self, kb, query):
        with pytest.raises(ValidationError) as exc_info:
            kb.search(query)
        assert exc_info.value.code == ErrorCode.EMPTY_QUERY
        assert kb.search_history() == []
