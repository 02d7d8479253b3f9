"""Unit tests for database session and advisory lock helpers.

Run with: pytest backend/tests/unit/test_db.py -v
"""

from unittest.mock import AsyncMock

import pytest

from partnerlink import db


@pytest.fixture
def session(monkeypatch) -> AsyncMock:
    session = AsyncMock()
    monkeypatch.setattr(db, "get_session_factory", lambda: lambda: session)
    return session


class TestGetDbSession:
    """Tests for the transactional session context manager."""

    @pytest.mark.asyncio
    async def test_commits_on_clean_exit(self, session):
        async with db.get_db_session() as yielded:
            assert yielded is session

        session.commit.assert_awaited_once()
        session.rollback.assert_not_awaited()
        session.close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rolls_back_on_error(self, session):
        with pytest.raises(RuntimeError):
            async with db.get_db_session():
                raise RuntimeError("boom")

        session.commit.assert_not_awaited()
        session.rollback.assert_awaited_once()
        session.close.assert_awaited_once()


class TestAdvisoryLock:
    """Tests for advisory_xact_lock."""

    @pytest.mark.asyncio
    async def test_single_key_form(self):
        session = AsyncMock()

        await db.advisory_xact_lock(session, "acme:client:c-1")

        statement, params = session.execute.call_args.args
        assert statement.text == "SELECT pg_advisory_xact_lock(hashtext(:key))"
        assert params == {"key": "acme:client:c-1"}

    @pytest.mark.asyncio
    async def test_namespaced_form(self):
        session = AsyncMock()

        await db.advisory_xact_lock(session, "acme:client:c-1", namespace=7)

        statement, params = session.execute.call_args.args
        assert "pg_advisory_xact_lock(:namespace, hashtext(:key))" in statement.text
        assert params == {"namespace": 7, "key": "acme:client:c-1"}


class TestCloseAllConnections:
    @pytest.mark.asyncio
    async def test_disposes_engine_once(self, monkeypatch):
        engine = AsyncMock()
        monkeypatch.setattr(db, "_engine", engine)
        monkeypatch.setattr(db, "_session_factory", object())

        await db.close_all_connections()
        await db.close_all_connections()

        engine.dispose.assert_awaited_once()
        assert db._engine is None
        assert db._session_factory is None
