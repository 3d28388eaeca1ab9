"""Tests for judge.py: exact, document-level and keyword relevance."""
from __future__ import annotations

import pytest

from rag_eval.errors import ConfigurationError
from rag_eval.judge import (
    JudgmentMode,
    is_relevant,
    keyword_coverage,
    keyword_fraction,
    parse_mode,
    primary_mode,
    relevance,
)
from rag_eval.schema import RelevanceJudgment

from conftest import make_result


# ---------------------------------------------------------------------------
# Mode selection
# ---------------------------------------------------------------------------

class TestModes:
    def test_parse_mode(self):
        assert parse_mode("Exact") is JudgmentMode.EXACT
        assert parse_mode("keyword") is JudgmentMode.KEYWORD

    def test_parse_unknown_mode(self):
        with pytest.raises(ConfigurationError):
            parse_mode("fuzzy")

    def test_document_judgment_is_exact(self, exact_judgment):
        assert primary_mode(exact_judgment) is JudgmentMode.EXACT

    def test_keyword_only_judgment(self):
        judgment = RelevanceJudgment(query_id="Q", keywords=("CEO",))
        assert primary_mode(judgment) is JudgmentMode.KEYWORD

    def test_judgment_without_target_is_malformed(self):
        with pytest.raises(ConfigurationError):
            primary_mode(RelevanceJudgment(query_id="Q"))


# ---------------------------------------------------------------------------
# relevance / is_relevant
# ---------------------------------------------------------------------------

class TestRelevance:
    def test_exact_requires_section(self, exact_judgment):
        assert relevance(make_result("A", "3"), exact_judgment, JudgmentMode.EXACT) == 1.0
        assert relevance(make_result("A", "1"), exact_judgment, JudgmentMode.EXACT) == 0.0

    def test_exact_without_section_matches_document(self):
        judgment = RelevanceJudgment(query_id="Q", doc_id="A")
        assert is_relevant(make_result("A", "9"), judgment, JudgmentMode.EXACT)

    def test_document_mode_ignores_section(self, exact_judgment):
        assert relevance(make_result("A", "1"), exact_judgment, JudgmentMode.DOCUMENT) == 1.0

    def test_other_document_is_irrelevant(self, exact_judgment):
        assert not is_relevant(make_result("B", "3"), exact_judgment, JudgmentMode.DOCUMENT)

    def test_keyword_mode_is_graded(self):
        judgment = RelevanceJudgment(query_id="Q", keywords=("Avery", "CEO"))
        result = make_result("X", text="Avery joined in 2015")
        assert relevance(result, judgment, JudgmentMode.KEYWORD) == pytest.approx(0.5)

    def test_keyword_mode_needs_keywords(self, exact_judgment):
        with pytest.raises(ConfigurationError):
            relevance(make_result("A"), exact_judgment, JudgmentMode.KEYWORD)

    def test_document_mode_needs_document(self):
        judgment = RelevanceJudgment(query_id="Q", keywords=("CEO",))
        with pytest.raises(ConfigurationError):
            relevance(make_result("A"), judgment, JudgmentMode.DOCUMENT)


# ---------------------------------------------------------------------------
# keyword_fraction / keyword_coverage
# ---------------------------------------------------------------------------

class TestKeywordCoverage:
    def test_all_keywords_found(self):
        results = [make_result("X", text="Avery Lancaster is the CEO")]
        assert keyword_coverage(results, ["Avery", "CEO"]) == pytest.approx(1.0)

    def test_no_keywords_found(self):
        results = [make_result("X", text="Lancaster is an employee")]
        assert keyword_coverage(results, ["Avery", "CEO"]) == pytest.approx(0.0)

    def test_case_insensitive(self):
        assert keyword_fraction("the ceo of INSURELLM", ["CEO", "Insurellm"]) == pytest.approx(1.0)

    def test_keywords_spread_across_results(self):
        results = [make_result("X", text="Avery Lancaster"), make_result("Y", text="is the CEO")]
        assert keyword_coverage(results, ["Avery", "CEO"]) == pytest.approx(1.0)

    def test_empty_keyword_set_is_vacuously_satisfied(self):
        assert keyword_coverage([make_result("X")], []) == 1.0

    def test_empty_slate(self):
        assert keyword_coverage([], ["CEO"]) == 0.0
