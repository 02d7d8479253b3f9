"""Confidence scoring for client identity matches.

Compares partner-supplied client info against internal account records
and turns the comparison into a single confidence in [0, 1].

Scoring:
- Email present on both sides: 0.6 * email + 0.4 * name
- Otherwise: 0.85 * name (a name alone never reaches auto-link)
- Recent activity on the account: +0.05

Confidence thresholds:
- >= auto_link_threshold: auto-link the top candidate
- >= disambiguation_threshold: offer as a candidate
- below: ignore (a new account is created when nothing qualifies)
"""

import re
import unicodedata
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Iterable

from rapidfuzz import fuzz

from ..models import AccountProfile, ClientCandidate, ClientInfo


class MatchDecision(str, Enum):
    """What the resolver should do with a ranked candidate list."""

    AUTO_LINK = "auto_link"
    DISAMBIGUATE = "disambiguate"
    CREATE = "create"


@dataclass
class ScoreBreakdown:
    """Confidence for one (client info, account) pair."""

    confidence: float
    name_score: float
    email_score: float | None
    recency_boost: float
    signals: dict[str, Any] = field(default_factory=dict)


def normalize_name(name: str | None) -> str:
    """Normalize a person name for comparison.

    Strips accents, casefolds, drops punctuation and collapses whitespace.

    Examples:
        >>> normalize_name("  José  O'Neil ")
        'jose oneil'
    """
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name)
    stripped = "".join(c for c in decomposed if not unicodedata.combining(c))
    normalized = re.sub(r"[^\w\s]", "", stripped.casefold())
    return re.sub(r"\s+", " ", normalized).strip()


def normalize_email(email: str | None) -> str:
    """Lowercase and trim an email; empty string when missing."""
    if not email:
        return ""
    return email.strip().lower()


class ConfidenceScorer:
    """Scores client info against existing accounts.

    Uses RapidFuzz ratios for names and email local parts. First names
    that are a prefix or initial of each other ("Jon" / "Jonathan") are
    floored at ``PREFIX_FIRST_NAME_SCORE``; swapped first/last order is
    caught by a token-sort comparison of the full names.
    """

    EMAIL_WEIGHT = 0.6
    NAME_WEIGHT = 0.4
    NAME_ONLY_CAP = 0.85
    RECENCY_BOOST = 0.05
    PREFIX_FIRST_NAME_SCORE = 0.85

    def __init__(
        self,
        auto_link_threshold: float = 0.95,
        disambiguation_threshold: float = 0.6,
        recency_window_days: int = 90,
        max_candidates: int | None = None,
    ):
        """Initialize the scorer.

        Args:
            auto_link_threshold: Auto-link at or above this confidence
            disambiguation_threshold: Offer candidates at or above this confidence
            recency_window_days: Activity newer than this earns the recency boost
            max_candidates: Optional cap on candidates returned by rank();
                None returns every candidate that qualifies
        """
        if not 0.0 <= disambiguation_threshold <= auto_link_threshold <= 1.0:
            raise ValueError(
                "Thresholds must satisfy 0 <= disambiguation <= auto_link <= 1, "
                f"got {disambiguation_threshold} / {auto_link_threshold}"
            )
        self.auto_link_threshold = auto_link_threshold
        self.disambiguation_threshold = disambiguation_threshold
        self.recency_window = timedelta(days=recency_window_days)
        self.max_candidates = max_candidates

    @classmethod
    def from_settings(cls, settings) -> "ConfidenceScorer":
        """Build a scorer from application settings."""
        return cls(
            auto_link_threshold=settings.auto_link_threshold,
            disambiguation_threshold=settings.disambiguation_threshold,
            recency_window_days=settings.recency_window_days,
            max_candidates=settings.max_candidates,
        )

    # =========================
    # Thresholds
    # =========================

    def should_auto_link(self, confidence: float) -> bool:
        return confidence >= self.auto_link_threshold

    def should_disambiguate(self, confidence: float) -> bool:
        return self.disambiguation_threshold <= confidence < self.auto_link_threshold

    def should_discard(self, confidence: float) -> bool:
        return confidence < self.disambiguation_threshold

    # =========================
    # Scoring
    # =========================

    def score(
        self,
        info: ClientInfo,
        account: AccountProfile,
        now: datetime | None = None,
    ) -> ScoreBreakdown:
        """Score one account against the incoming client info."""
        name_score, name_signals = self._name_score(info, account)
        signals: dict[str, Any] = dict(name_signals)

        email_score = self._email_score(info.email, account.email)
        if email_score is None:
            base = self.NAME_ONLY_CAP * name_score
        else:
            signals["email_score"] = round(email_score, 4)
            signals["email_match"] = email_score == 1.0
            base = self.EMAIL_WEIGHT * email_score + self.NAME_WEIGHT * name_score

        recency_boost = 0.0
        if self._is_recent(account.last_search_at, now or datetime.utcnow()):
            recency_boost = self.RECENCY_BOOST
            signals["recent_activity"] = True

        confidence = round(min(max(base + recency_boost, 0.0), 1.0), 4)
        return ScoreBreakdown(
            confidence=confidence,
            name_score=name_score,
            email_score=email_score,
            recency_boost=recency_boost,
            signals=signals,
        )

    def rank(
        self,
        info: ClientInfo,
        accounts: Iterable[AccountProfile],
        now: datetime | None = None,
    ) -> list[ClientCandidate]:
        """Score accounts and keep those at or above the disambiguation threshold.

        Returns:
            Candidates sorted by confidence (highest first), then most
            recent activity, then account id. Every qualifying account is
            returned unless max_candidates is set.
        """
        now = now or datetime.utcnow()
        kept: list[ClientCandidate] = []
        for account in accounts:
            breakdown = self.score(info, account, now=now)
            if self.should_discard(breakdown.confidence):
                continue
            kept.append(
                ClientCandidate(
                    internal_account_id=account.account_id,
                    first_name=account.first_name,
                    last_name=account.last_name,
                    email=account.email,
                    last_search_at=account.last_search_at,
                    match_confidence=breakdown.confidence,
                    signals=breakdown.signals,
                )
            )

        kept.sort(key=lambda c: str(c.internal_account_id))
        kept.sort(
            key=lambda c: (c.match_confidence, c.last_search_at or datetime.min),
            reverse=True,
        )
        if self.max_candidates is None:
            return kept
        return kept[: self.max_candidates]

    def decide(self, candidates: list[ClientCandidate]) -> MatchDecision:
        """Apply the linking policy to a ranked candidate list."""
        if not candidates:
            return MatchDecision.CREATE
        if self.should_auto_link(candidates[0].match_confidence):
            return MatchDecision.AUTO_LINK
        return MatchDecision.DISAMBIGUATE

    def _name_score(
        self, info: ClientInfo, account: AccountProfile
    ) -> tuple[float, dict[str, Any]]:
        """Similarity of first/last names in [0, 1]."""
        first_a = normalize_name(info.first_name)
        first_b = normalize_name(account.first_name)
        last_a = normalize_name(info.last_name)
        last_b = normalize_name(account.last_name)

        first = fuzz.ratio(first_a, first_b) / 100
        if first_a and first_b and (
            first_a.startswith(first_b) or first_b.startswith(first_a)
        ):
            first = max(first, self.PREFIX_FIRST_NAME_SCORE)
        last = fuzz.ratio(last_a, last_b) / 100
        paired = (first + last) / 2

        swapped = fuzz.token_sort_ratio(
            f"{first_a} {last_a}", f"{first_b} {last_b}"
        ) / 100

        signals = {
            "first_name_score": round(first, 4),
            "last_name_score": round(last, 4),
        }
        if swapped > paired:
            signals["token_sort_score"] = round(swapped, 4)
        return max(paired, swapped), signals

    def _email_score(self, email_a: str | None, email_b: str | None) -> float | None:
        """Email similarity, or None when either side has no email."""
        a = normalize_email(email_a)
        b = normalize_email(email_b)
        if not a or not b:
            return None
        if a == b:
            return 1.0

        local_a, _, domain_a = a.rpartition("@")
        local_b, _, domain_b = b.rpartition("@")
        if domain_a and domain_a == domain_b:
            return fuzz.ratio(local_a, local_b) / 100
        return 0.0

    def _is_recent(self, last_search_at: datetime | None, now: datetime) -> bool:
        if last_search_at is None:
            return False
        return timedelta(0) <= now - last_search_at <= self.recency_window
