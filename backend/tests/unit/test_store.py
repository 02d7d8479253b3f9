"""Unit tests for the in-memory link store and KeyedLock.

Run with: pytest backend/tests/unit/test_store.py -v
"""

import asyncio
from datetime import datetime, timedelta

import pytest

from partnerlink.linking import InMemoryLinkStore, KeyedLock
from partnerlink.models import (
    AccountProfile,
    ClientInfo,
    LinkAction,
    LinkStatus,
    PartnerAgentLink,
    PartnerClientLink,
)


def client_link(account_id=None, status=LinkStatus.LINKED, client_id="c-1", **overrides):
    fields = dict(
        partner_id="acme",
        partner_client_id=client_id,
        partner_agent_id="a-1",
        status=status,
        client_info=ClientInfo(first_name="Zed", last_name="Quinn"),
        internal_account_id=account_id,
        action=LinkAction.CREATED if status == LinkStatus.LINKED else None,
        confidence=1.0 if status == LinkStatus.LINKED else None,
    )
    fields.update(overrides)
    return PartnerClientLink(**fields)


class TestKeyedLock:
    """Tests for per-key serialization."""

    @pytest.mark.asyncio
    async def test_same_key_serializes(self):
        lock = KeyedLock()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with lock("k"):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))

        assert peak == 1
        assert len(lock) == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        lock = KeyedLock()
        entered = asyncio.Event()

        async def first():
            async with lock("a"):
                await asyncio.wait_for(entered.wait(), timeout=1)

        async def second():
            async with lock("b"):
                entered.set()

        await asyncio.gather(first(), second())
        assert len(lock) == 0

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        lock = KeyedLock()

        with pytest.raises(RuntimeError):
            async with lock("k"):
                raise RuntimeError("boom")

        assert len(lock) == 0
        async with lock("k"):
            pass


class TestAgentLinks:
    """Tests for agent link commits."""

    @pytest.mark.asyncio
    async def test_first_writer_wins(self):
        store = InMemoryLinkStore()
        first_account = AccountProfile(first_name="A", last_name="One")
        second_account = AccountProfile(first_name="A", last_name="Two")
        first = PartnerAgentLink(
            partner_id="acme", partner_agent_id="a-1",
            internal_account_id=first_account.account_id, existing_account=False,
        )
        second = PartnerAgentLink(
            partner_id="acme", partner_agent_id="a-1",
            internal_account_id=second_account.account_id, existing_account=False,
        )

        stored, written = await store.commit_agent_link(first, new_account=first_account)
        assert written is True
        assert stored == first

        stored, written = await store.commit_agent_link(second, new_account=second_account)
        assert written is False
        assert stored.internal_account_id == first_account.account_id
        # The loser's account is never created
        assert store.account_count == 1
        assert await store.get_account(second_account.account_id) is None

    @pytest.mark.asyncio
    async def test_find_agent_link_for_account(self, store, john):
        link = PartnerAgentLink(
            partner_id="acme", partner_agent_id="a-1",
            internal_account_id=john.account_id, existing_account=True,
        )
        await store.commit_agent_link(link)

        assert await store.find_agent_link_for_account("acme", john.account_id) == link
        assert await store.find_agent_link_for_account("globex", john.account_id) is None


class TestClientLinks:
    """Tests for pending and linked client links."""

    @pytest.mark.asyncio
    async def test_linked_client_is_never_overwritten(self):
        store = InMemoryLinkStore()
        first = AccountProfile(first_name="Zed", last_name="Quinn")
        second = AccountProfile(first_name="Zed", last_name="Quinn")

        _, written = await store.commit_client_link(
            client_link(first.account_id), new_account=first
        )
        assert written is True

        stored, written = await store.commit_client_link(
            client_link(second.account_id), new_account=second
        )
        assert written is False
        assert stored.internal_account_id == first.account_id
        assert store.account_count == 1

    @pytest.mark.asyncio
    async def test_pending_then_linked(self, store, john):
        pending = client_link(status=LinkStatus.PENDING_DISAMBIGUATION)
        _, written = await store.save_pending_client(pending)
        assert written is True

        # A second pending save keeps the first snapshot
        stored, written = await store.save_pending_client(
            client_link(status=LinkStatus.PENDING_DISAMBIGUATION, partner_agent_id="a-2")
        )
        assert written is False
        assert stored.partner_agent_id == "a-1"

        linked = pending.model_copy(
            update={
                "status": LinkStatus.LINKED,
                "internal_account_id": john.account_id,
                "action": LinkAction.EXISTING,
                "confidence": 0.8,
            }
        )
        _, written = await store.commit_client_link(linked)
        assert written is True

        stored = await store.get_client_link("acme", "c-1")
        assert stored.is_linked
        assert stored.internal_account_id == john.account_id

    @pytest.mark.asyncio
    async def test_list_pending_clients(self):
        store = InMemoryLinkStore()
        await store.save_pending_client(
            client_link(status=LinkStatus.PENDING_DISAMBIGUATION, client_id="c-1")
        )
        await store.save_pending_client(
            client_link(status=LinkStatus.PENDING_DISAMBIGUATION, client_id="c-2", partner_id="globex")
        )
        account = AccountProfile(first_name="Zed", last_name="Quinn")
        await store.commit_client_link(client_link(account.account_id, client_id="c-3"), account)

        assert {l.partner_client_id for l in await store.list_pending_clients()} == {"c-1", "c-2"}
        assert [l.partner_client_id for l in await store.list_pending_clients("acme")] == ["c-1"]
        assert len(await store.list_pending_clients(limit=1)) == 1


class TestAccountDirectory:
    """Tests for account lookups and the blocking pass."""

    @pytest.mark.asyncio
    async def test_find_account_by_email_is_case_insensitive(self, store, john):
        found = await store.find_account_by_email("  JOHN@example.com")
        assert found == john

    @pytest.mark.asyncio
    async def test_find_account_by_email_returns_oldest(self, john):
        newer = AccountProfile(
            first_name="Johnny", last_name="Doe", email="john@example.com",
            created_at=datetime(2026, 1, 1),
        )
        store = InMemoryLinkStore([newer, john])

        assert await store.find_account_by_email("john@example.com") == john
        assert await store.find_account_by_email("") is None
        assert await store.find_account_by_email("nobody@example.com") is None

    @pytest.mark.asyncio
    async def test_blocking_keeps_similar_surnames_and_email_matches(self, store, john, jane, marias):
        info = ClientInfo(first_name="Someone", last_name="Garcia", email="jane.smith@example.com")

        found = {a.account_id for a in await store.find_candidate_accounts(info)}

        assert found == {jane.account_id, *(m.account_id for m in marias)}
        assert john.account_id not in found

    @pytest.mark.asyncio
    async def test_blocking_catches_swapped_names(self, store, john):
        info = ClientInfo(first_name="Doe", last_name="John")

        found = await store.find_candidate_accounts(info)

        assert john in found

    @pytest.mark.asyncio
    async def test_blocking_respects_limit(self, store):
        info = ClientInfo(first_name="Maria", last_name="Garcia")

        assert len(await store.find_candidate_accounts(info, limit=1)) == 1

    @pytest.mark.asyncio
    async def test_email_match_survives_crowded_surname(self, john):
        yesterday = datetime.utcnow() - timedelta(days=1)
        crowd = [
            AccountProfile(first_name=f"Xavier{i}", last_name="Doe", last_search_at=yesterday)
            for i in range(60)
        ]
        store = InMemoryLinkStore([*crowd, john])
        info = ClientInfo(first_name="John", last_name="Doe", email="john@example.com")

        found = await store.find_candidate_accounts(info, limit=50)

        assert found[0] == john
        assert len(found) == 51

    @pytest.mark.asyncio
    async def test_limit_keeps_closest_surnames(self):
        yesterday = datetime.utcnow() - timedelta(days=1)
        near = AccountProfile(first_name="Ann", last_name="Garcia")
        far = [
            AccountProfile(first_name="Ann", last_name="Garcias", last_search_at=yesterday)
            for _ in range(3)
        ]
        store = InMemoryLinkStore([*far, near])
        info = ClientInfo(first_name="Ann", last_name="García")

        found = await store.find_candidate_accounts(info, limit=1)

        assert found == [near]

    @pytest.mark.asyncio
    async def test_add_accounts_skips_known_ids(self, store, john):
        fresh = AccountProfile(first_name="New", last_name="Person")

        added = await store.add_accounts([john, fresh])

        assert added == 1
        assert await store.get_account(fresh.account_id) == fresh

    @pytest.mark.asyncio
    async def test_record_search(self, store, john, jane):
        at = datetime(2026, 3, 1)

        await store.record_search([john.account_id], at=at)

        assert (await store.get_account(john.account_id)).last_search_at == at
        assert (await store.get_account(jane.account_id)).last_search_at is None
