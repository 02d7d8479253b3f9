"""Link store interface and in-memory backend.

The link store persists partner links and the internal account
directory they point at. Every commit is a conditional write: the first
writer for a link key wins, later writers get the winner back. On top
of that, ``lock(key)`` serializes work on one key inside the process so
concurrent requests do not score and create accounts twice.
"""

import asyncio
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Hashable, Iterable
from uuid import UUID

from rapidfuzz import fuzz

from ..models import (
    AccountProfile,
    ClientInfo,
    LinkKey,
    LinkStatus,
    PartnerAgentLink,
    PartnerClientLink,
)
from .scorer import normalize_email, normalize_name


class KeyedLock:
    """A set of asyncio locks, one per key, dropped when no longer used."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._waiters: dict[Hashable, int] = {}

    @asynccontextmanager
    async def __call__(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def __len__(self) -> int:
        return len(self._locks)


class LinkStore(ABC):
    """Persistence for partner links and internal accounts."""

    def __init__(self):
        self._key_locks = KeyedLock()

    def lock(self, key: LinkKey):
        """Serialize linking work on one key within this process."""
        return self._key_locks(key)

    # =========================
    # Agent links
    # =========================

    @abstractmethod
    async def get_agent_link(
        self, partner_id: str, partner_agent_id: str
    ) -> PartnerAgentLink | None:
        ...

    @abstractmethod
    async def find_agent_link_for_account(
        self, partner_id: str, account_id: UUID
    ) -> PartnerAgentLink | None:
        """Return the agent link of ``partner_id`` that owns ``account_id``."""
        ...

    @abstractmethod
    async def commit_agent_link(
        self,
        link: PartnerAgentLink,
        new_account: AccountProfile | None = None,
    ) -> tuple[PartnerAgentLink, bool]:
        """Insert an agent link unless the key is already linked.

        Args:
            link: Link to write
            new_account: Account to create together with the link

        Returns:
            (stored link, True) when this call wrote it, otherwise the
            previously committed link and False. ``new_account`` is only
            created when the link is written.
        """
        ...

    # =========================
    # Client links
    # =========================

    @abstractmethod
    async def get_client_link(
        self, partner_id: str, partner_client_id: str
    ) -> PartnerClientLink | None:
        ...

    @abstractmethod
    async def save_pending_client(
        self, link: PartnerClientLink
    ) -> tuple[PartnerClientLink, bool]:
        """Record a pending disambiguation unless the key already exists."""
        ...

    @abstractmethod
    async def commit_client_link(
        self,
        link: PartnerClientLink,
        new_account: AccountProfile | None = None,
    ) -> tuple[PartnerClientLink, bool]:
        """Insert a linked client, or finalize a pending one.

        A key that is already linked is never overwritten; the stored
        link is returned with False.
        """
        ...

    @abstractmethod
    async def list_pending_clients(
        self, partner_id: str | None = None, limit: int = 50
    ) -> list[PartnerClientLink]:
        ...

    # =========================
    # Account directory
    # =========================

    @abstractmethod
    async def get_account(self, account_id: UUID) -> AccountProfile | None:
        ...

    @abstractmethod
    async def find_account_by_email(self, email: str) -> AccountProfile | None:
        """Oldest account whose normalized email equals ``email``."""
        ...

    @abstractmethod
    async def find_candidate_accounts(
        self, info: ClientInfo, limit: int = 50
    ) -> list[AccountProfile]:
        """Cheap blocking pass: accounts worth scoring against ``info``.

        Accounts with the same normalized email are always returned.
        Name-similar accounts are capped at ``limit``, strongest surname
        similarity first, then most recent activity.
        """
        ...

    @abstractmethod
    async def add_accounts(self, accounts: Iterable[AccountProfile]) -> int:
        """Insert directory accounts (bulk loads and fixtures)."""
        ...

    @abstractmethod
    async def record_search(
        self, account_ids: Iterable[UUID], at: datetime | None = None
    ) -> None:
        """Stamp ``last_search_at`` on the given accounts."""
        ...

    async def close(self) -> None:
        """Release backend resources."""
        return None


class InMemoryLinkStore(LinkStore):
    """Dict-backed link store for development and tests.

    All check-then-write sequences run without awaiting in between, so
    they are atomic with respect to other coroutines on the loop.
    """

    # Minimum RapidFuzz ratio for a surname to pass the blocking pass
    BLOCKING_MIN_RATIO = 60

    def __init__(self, accounts: Iterable[AccountProfile] = ()):
        super().__init__()
        self._accounts: dict[UUID, AccountProfile] = {
            account.account_id: account for account in accounts
        }
        self._agents: dict[tuple[str, str], PartnerAgentLink] = {}
        self._clients: dict[tuple[str, str], PartnerClientLink] = {}

    async def get_agent_link(self, partner_id, partner_agent_id):
        return self._agents.get((partner_id, partner_agent_id))

    async def find_agent_link_for_account(self, partner_id, account_id):
        for link in self._agents.values():
            if link.partner_id == partner_id and link.internal_account_id == account_id:
                return link
        return None

    async def commit_agent_link(self, link, new_account=None):
        key = (link.partner_id, link.partner_agent_id)
        existing = self._agents.get(key)
        if existing is not None:
            return existing, False
        if new_account is not None:
            self._accounts[new_account.account_id] = new_account
        self._agents[key] = link
        return link, True

    async def get_client_link(self, partner_id, partner_client_id):
        return self._clients.get((partner_id, partner_client_id))

    async def save_pending_client(self, link):
        key = (link.partner_id, link.partner_client_id)
        existing = self._clients.get(key)
        if existing is not None:
            return existing, False
        self._clients[key] = link
        return link, True

    async def commit_client_link(self, link, new_account=None):
        key = (link.partner_id, link.partner_client_id)
        existing = self._clients.get(key)
        if existing is not None and existing.is_linked:
            return existing, False
        if new_account is not None:
            self._accounts[new_account.account_id] = new_account
        self._clients[key] = link
        return link, True

    async def list_pending_clients(self, partner_id=None, limit=50):
        pending = [
            link
            for link in self._clients.values()
            if link.status == LinkStatus.PENDING_DISAMBIGUATION
            and (partner_id is None or link.partner_id == partner_id)
        ]
        pending.sort(key=lambda link: link.created_at)
        return pending[:limit]

    async def get_account(self, account_id):
        return self._accounts.get(account_id)

    async def find_account_by_email(self, email):
        target = normalize_email(email)
        if not target:
            return None
        matches = [
            account
            for account in self._accounts.values()
            if normalize_email(account.email) == target
        ]
        if not matches:
            return None
        return min(matches, key=lambda account: account.created_at)

    async def find_candidate_accounts(self, info, limit=50):
        email = normalize_email(info.email)
        first = normalize_name(info.first_name)
        last = normalize_name(info.last_name)

        exact: list[AccountProfile] = []
        similar: list[tuple[float, AccountProfile]] = []
        for account in self._accounts.values():
            if email and normalize_email(account.email) == email:
                exact.append(account)
                continue
            account_last = normalize_name(account.last_name)
            # first/last swapped on one side
            ratio = max(fuzz.ratio(last, account_last), fuzz.ratio(first, account_last))
            if ratio >= self.BLOCKING_MIN_RATIO:
                similar.append((ratio, account))

        similar.sort(
            key=lambda pair: (pair[0], pair[1].last_search_at or datetime.min),
            reverse=True,
        )
        return exact + [account for _, account in similar[:limit]]

    async def add_accounts(self, accounts):
        added = 0
        for account in accounts:
            if account.account_id not in self._accounts:
                self._accounts[account.account_id] = account
                added += 1
        return added

    async def record_search(self, account_ids, at=None):
        at = at or datetime.utcnow()
        for account_id in account_ids:
            account = self._accounts.get(account_id)
            if account is not None:
                self._accounts[account_id] = account.model_copy(
                    update={"last_search_at": at}
                )

    @property
    def account_count(self) -> int:
        return len(self._accounts)
