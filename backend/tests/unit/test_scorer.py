"""Unit tests for ConfidenceScorer.

Tests name/email similarity, recency boost, threshold routing and
candidate ranking without any store.

Run with: pytest backend/tests/unit/test_scorer.py -v
"""

from datetime import datetime, timedelta
from uuid import UUID

import pytest

from partnerlink.linking import ConfidenceScorer, MatchDecision, normalize_name
from partnerlink.models import AccountProfile, ClientCandidate, ClientInfo

NOW = datetime(2026, 3, 1, 12, 0)


def account(first, last, email=None, last_search_at=None, account_id=None):
    kwargs = {}
    if account_id is not None:
        kwargs["account_id"] = account_id
    return AccountProfile(
        first_name=first,
        last_name=last,
        email=email,
        last_search_at=last_search_at,
        **kwargs,
    )


def candidate(confidence: float) -> ClientCandidate:
    return ClientCandidate(
        internal_account_id=UUID(int=1),
        first_name="A",
        last_name="B",
        match_confidence=confidence,
    )


class TestConfidenceThresholds:
    """Tests for confidence-based routing thresholds."""

    def test_auto_link_threshold(self):
        scorer = ConfidenceScorer()

        assert scorer.should_auto_link(0.95) is True
        assert scorer.should_auto_link(1.0) is True
        assert scorer.should_auto_link(0.9499) is False

    def test_disambiguation_range(self):
        scorer = ConfidenceScorer()

        assert scorer.should_disambiguate(0.60) is True
        assert scorer.should_disambiguate(0.94) is True
        assert scorer.should_disambiguate(0.95) is False
        assert scorer.should_disambiguate(0.59) is False

    def test_discard_threshold(self):
        scorer = ConfidenceScorer()

        assert scorer.should_discard(0.59) is True
        assert scorer.should_discard(0.0) is True
        assert scorer.should_discard(0.60) is False

    def test_custom_thresholds(self):
        scorer = ConfidenceScorer(auto_link_threshold=0.9, disambiguation_threshold=0.5)

        assert scorer.should_auto_link(0.9) is True
        assert scorer.should_disambiguate(0.5) is True

    def test_rejects_inverted_thresholds(self):
        with pytest.raises(ValueError):
            ConfidenceScorer(auto_link_threshold=0.5, disambiguation_threshold=0.7)

    def test_decide(self):
        scorer = ConfidenceScorer()

        assert scorer.decide([]) == MatchDecision.CREATE
        assert scorer.decide([candidate(0.97), candidate(0.7)]) == MatchDecision.AUTO_LINK
        assert scorer.decide([candidate(0.8)]) == MatchDecision.DISAMBIGUATE


class TestNormalization:
    """Tests for name normalization."""

    def test_accents_case_and_punctuation(self):
        assert normalize_name("  José  O'Neil ") == "jose oneil"
        assert normalize_name("MÜLLER-Lüdenscheidt") == "mullerludenscheidt"

    def test_empty(self):
        assert normalize_name(None) == ""
        assert normalize_name("   ") == ""


class TestScoring:
    """Tests for single-pair scoring."""

    def test_exact_match_with_email(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe", email="john@example.com")

        result = scorer.score(info, account("John", "Doe", "john@example.com"), now=NOW)

        assert result.confidence == 1.0
        assert result.email_score == 1.0
        assert result.signals["email_match"] is True

    def test_email_case_and_whitespace_ignored(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="john", last_name="DOE", email=" John@Example.COM ")

        result = scorer.score(info, account("John", "Doe", "john@example.com"), now=NOW)

        assert result.confidence == 1.0

    def test_name_only_never_auto_links(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe")

        result = scorer.score(info, account("John", "Doe", "john@example.com"), now=NOW)

        assert result.email_score is None
        assert result.confidence == pytest.approx(0.85)
        assert not scorer.should_auto_link(result.confidence)

    def test_name_only_with_recent_activity_still_below_auto_link(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe")
        recent = account("John", "Doe", last_search_at=NOW - timedelta(days=10))

        result = scorer.score(info, recent, now=NOW)

        assert result.recency_boost == 0.05
        assert result.confidence == pytest.approx(0.9)
        assert result.signals["recent_activity"] is True
        assert not scorer.should_auto_link(result.confidence)

    def test_stale_activity_earns_no_boost(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe")
        stale = account("John", "Doe", last_search_at=NOW - timedelta(days=200))

        result = scorer.score(info, stale, now=NOW)

        assert result.recency_boost == 0.0
        assert result.confidence == pytest.approx(0.85)

    def test_confidence_is_clamped(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe", email="john@example.com")
        recent = account(
            "John", "Doe", "john@example.com", last_search_at=NOW - timedelta(days=1)
        )

        assert scorer.score(info, recent, now=NOW).confidence == 1.0

    def test_different_email_domain_scores_low(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe", email="john@other.org")

        result = scorer.score(info, account("John", "Doe", "john@example.com"), now=NOW)

        assert result.email_score == 0.0
        assert result.confidence == pytest.approx(0.4)
        assert scorer.should_discard(result.confidence)

    def test_similar_local_part_same_domain(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe", email="john.doe@example.com")

        result = scorer.score(info, account("John", "Doe", "jdoe@example.com"), now=NOW)

        assert 0.0 < result.email_score < 1.0
        assert scorer.should_disambiguate(result.confidence)

    def test_first_name_prefix(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="Jon", last_name="Doe")

        result = scorer.score(info, account("Jonathan", "Doe"), now=NOW)

        assert result.signals["first_name_score"] == 0.85
        assert 0.78 < result.confidence < 0.79

    def test_swapped_first_and_last_name(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="Doe", last_name="John")

        result = scorer.score(info, account("John", "Doe"), now=NOW)

        assert result.name_score == 1.0
        assert result.signals["token_sort_score"] == 1.0

    def test_unrelated_names(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="Alice", last_name="Wong")

        result = scorer.score(info, account("John", "Doe"), now=NOW)

        assert scorer.should_discard(result.confidence)


class TestRanking:
    """Tests for candidate ranking."""

    def test_ranked_by_confidence(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe")
        accounts = [
            account("Jon", "Doe"),
            account("John", "Doe"),
            account("Alice", "Wong"),
        ]

        ranked = scorer.rank(info, accounts, now=NOW)

        assert [c.first_name for c in ranked] == ["John", "Jon"]
        confidences = [c.match_confidence for c in ranked]
        assert confidences == sorted(confidences, reverse=True)

    def test_ties_broken_by_recent_activity_then_id(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe")
        never = account("John", "Doe", account_id=UUID(int=1))
        older = account("John", "Doe", account_id=UUID(int=3), last_search_at=NOW - timedelta(days=400))
        old = account("John", "Doe", account_id=UUID(int=2), last_search_at=NOW - timedelta(days=300))
        never_b = account("John", "Doe", account_id=UUID(int=4))

        ranked = scorer.rank(info, [never_b, older, never, old], now=NOW)

        assert [c.internal_account_id for c in ranked] == [
            UUID(int=2),
            UUID(int=3),
            UUID(int=1),
            UUID(int=4),
        ]

    def test_capped_at_max_candidates(self):
        scorer = ConfidenceScorer(max_candidates=2)
        info = ClientInfo(first_name="John", last_name="Doe")

        ranked = scorer.rank(info, [account("John", "Doe") for _ in range(5)], now=NOW)

        assert len(ranked) == 2

    def test_returns_every_qualifying_candidate_by_default(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe")
        accounts = [account("John", "Doe") for _ in range(12)]

        ranked = scorer.rank(info, [*accounts, account("Zed", "Quinn")], now=NOW)

        assert len(ranked) == 12
        assert scorer.max_candidates is None

    def test_candidates_carry_account_fields(self):
        scorer = ConfidenceScorer()
        info = ClientInfo(first_name="John", last_name="Doe", email="john@example.com")
        match = account("John", "Doe", "john@example.com")

        [ranked] = scorer.rank(info, [match], now=NOW)

        assert ranked.internal_account_id == match.account_id
        assert ranked.email == "john@example.com"
        assert ranked.match_confidence == 1.0
        assert "first_name_score" in ranked.signals
