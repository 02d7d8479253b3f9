"""Pytest fixtures for partnerlink unit tests."""

import os

# Partner keys must be in place before settings are first read
os.environ["PARTNER_API_KEYS"] = "test-key:acme,other-key:globex"
os.environ.setdefault("LOG_FORMAT", "text")

from datetime import datetime, timedelta
from uuid import UUID

import pytest

from partnerlink.config import get_settings
from partnerlink.linking import ConfidenceScorer, IdentityResolver, InMemoryLinkStore
from partnerlink.models import AccountProfile, ClientInfo

get_settings.cache_clear()

# Fixed ids keep tie-break ordering deterministic
MARIA_OLD_ID = UUID("00000000-0000-4000-8000-000000000001")
MARIA_NEW_ID = UUID("00000000-0000-4000-8000-000000000002")


@pytest.fixture
def john() -> AccountProfile:
    """Account that matches John Doe / john@example.com exactly."""
    return AccountProfile(
        first_name="John",
        last_name="Doe",
        email="john@example.com",
        created_at=datetime(2025, 1, 10),
    )


@pytest.fixture
def jane() -> AccountProfile:
    return AccountProfile(
        first_name="Jane",
        last_name="Smith",
        email="jane.smith@example.com",
        created_at=datetime(2025, 2, 1),
    )


@pytest.fixture
def marias() -> list[AccountProfile]:
    """Two same-name accounts without email: both land in disambiguation."""
    return [
        AccountProfile(
            account_id=MARIA_OLD_ID,
            first_name="Maria",
            last_name="Garcia",
            created_at=datetime(2024, 5, 1),
        ),
        AccountProfile(
            account_id=MARIA_NEW_ID,
            first_name="Maria",
            last_name="Garcia",
            last_search_at=datetime.utcnow() - timedelta(days=200),
            created_at=datetime(2024, 6, 1),
        ),
    ]


@pytest.fixture
def sample_accounts(john, jane, marias) -> list[AccountProfile]:
    return [john, jane, *marias]


@pytest.fixture
def store(sample_accounts) -> InMemoryLinkStore:
    """In-memory link store seeded with the sample directory."""
    return InMemoryLinkStore(sample_accounts)


@pytest.fixture
def scorer() -> ConfidenceScorer:
    return ConfidenceScorer()


@pytest.fixture
def resolver(store, scorer) -> IdentityResolver:
    return IdentityResolver(store, scorer)


@pytest.fixture
def maria_info() -> ClientInfo:
    return ClientInfo(first_name="Maria", last_name="Garcia", email="maria@example.com")


@pytest.fixture
def john_info() -> ClientInfo:
    return ClientInfo(first_name="John", last_name="Doe", email="john@example.com")
