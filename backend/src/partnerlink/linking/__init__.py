"""Identity linking for partner agents and clients.

Provides confidence scoring, link persistence and the resolver that
ties them together.
"""

from .errors import (
    AgentAccountConflictError,
    AgentNotLinkedError,
    ClientNotLinkedError,
    DisambiguationNotFoundError,
    InvalidCandidateError,
    LinkConflictError,
    LinkingError,
)
from .resolver import IdentityResolver
from .scorer import (
    ConfidenceScorer,
    MatchDecision,
    ScoreBreakdown,
    normalize_email,
    normalize_name,
)
from .store import InMemoryLinkStore, KeyedLock, LinkStore

__all__ = [
    "AgentAccountConflictError",
    "AgentNotLinkedError",
    "ClientNotLinkedError",
    "ConfidenceScorer",
    "DisambiguationNotFoundError",
    "IdentityResolver",
    "InMemoryLinkStore",
    "InvalidCandidateError",
    "KeyedLock",
    "LinkConflictError",
    "LinkStore",
    "LinkingError",
    "MatchDecision",
    "ScoreBreakdown",
    "normalize_email",
    "normalize_name",
]
