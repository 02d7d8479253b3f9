"""Unit tests for Settings parsing and validation."""

import pytest
from pydantic import ValidationError

from partnerlink.api.auth import resolve_partner
from partnerlink.config import Settings
from partnerlink.linking import ConfidenceScorer


class TestPartnerKeys:
    def test_parses_key_pairs(self):
        settings = Settings(partner_api_keys=" k1:acme , broken, :nobody, k2:globex ,")

        assert settings.partner_keys == {"k1": "acme", "k2": "globex"}

    def test_keys_are_hidden_from_repr(self):
        settings = Settings(partner_api_keys="secret-key:acme")

        assert "secret-key" not in repr(settings)

    def test_resolve_partner_uses_configured_keys(self):
        assert resolve_partner("test-key") == "acme"
        assert resolve_partner("other-key") == "globex"
        assert resolve_partner("wrong") is None
        assert resolve_partner(None) is None


class TestLinkingSettings:
    def test_defaults(self):
        settings = Settings()

        assert settings.auto_link_threshold == 0.95
        assert settings.disambiguation_threshold == 0.6
        assert settings.max_candidates is None
        assert settings.database_pool_size == 10
        assert settings.database_max_overflow == 20
        assert settings.recency_window_days == 90

    def test_inverted_thresholds_rejected(self):
        with pytest.raises(ValidationError):
            Settings(auto_link_threshold=0.5, disambiguation_threshold=0.7)

    def test_scorer_from_settings(self):
        settings = Settings(auto_link_threshold=0.9, max_candidates=3)

        scorer = ConfidenceScorer.from_settings(settings)

        assert scorer.auto_link_threshold == 0.9
        assert scorer.max_candidates == 3

    def test_database_url(self):
        settings = Settings(postgres_host="db", postgres_user="u", postgres_password="p")

        assert settings.database_url.startswith("postgresql+asyncpg://u:p@db:5432/")
