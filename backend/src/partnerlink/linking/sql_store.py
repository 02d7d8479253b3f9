"""PostgreSQL link store.

Every commit runs in one transaction that first takes a transaction
advisory lock on the link key, so concurrent writers across processes
serialize. Inserts use ``ON CONFLICT DO NOTHING`` and pending->linked
transitions are guarded on the current status; when a write affects no
row the transaction is rolled back (dropping any account created with
it) and the winning link is returned instead.

``lock(key)`` additionally holds an advisory lock in a separate lock space
for the whole resolver operation, so checks that span several keys (an
agent id and its email) hold across processes too.

Schema: see migrations/versions/001_partner_links.py
"""

import json
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import text

from ..db import advisory_xact_lock, close_all_connections, get_db_session
from ..logging import get_context_logger
from ..models import (
    AccountProfile,
    ClientCandidate,
    ClientInfo,
    LinkKey,
    LinkStatus,
    PartnerAgentLink,
    PartnerClientLink,
)
from .scorer import normalize_email, normalize_name
from .store import LinkStore

logger = get_context_logger(__name__)

# Lock space for resolver-level locks, distinct from the per-commit locks
RESOLVER_LOCK_NAMESPACE = 1

_ACCOUNT_COLUMNS = "id, first_name, last_name, email, bio_blurb, last_search_at, created_at"

_CLIENT_COLUMNS = """
    partner_id, partner_client_id, partner_agent_id, status, account_id,
    action, confidence, client_info, candidates, created_at, linked_at
"""


def _naive_utc(value: datetime | None) -> datetime | None:
    """Convert timestamptz values to the naive UTC datetimes used in models."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _load_json(value: Any) -> Any:
    """Decode JSONB that the driver handed back as text."""
    if isinstance(value, (str, bytes)):
        return json.loads(value)
    return value


class SqlLinkStore(LinkStore):
    """Link store backed by PostgreSQL via SQLAlchemy async sessions.

    Args:
        session_factory: Callable returning an async context manager that
            yields a session and commits on exit. Defaults to get_db_session.
        blocking_min_similarity: pg_trgm similarity a normalized surname
            needs to be considered in the candidate blocking pass.
    """

    def __init__(
        self,
        session_factory: Callable | None = None,
        blocking_min_similarity: float = 0.3,
    ):
        super().__init__()
        self._session = session_factory or get_db_session
        self.blocking_min_similarity = blocking_min_similarity

    async def _advisory_lock(self, db, key: LinkKey) -> None:
        await advisory_xact_lock(db, str(key))

    @asynccontextmanager
    async def lock(self, key: LinkKey):
        """Serialize linking work on one key across all processes.

        Holds an in-process lock plus a transaction advisory lock in the
        resolver lock space for the duration of the block.
        """
        async with self._key_locks(key):
            async with self._session() as db:
                await advisory_xact_lock(db, str(key), namespace=RESOLVER_LOCK_NAMESPACE)
                yield

    # =========================
    # Row mapping
    # =========================

    @staticmethod
    def _account_from_row(row) -> AccountProfile:
        return AccountProfile(
            account_id=UUID(str(row["id"])),
            first_name=row["first_name"],
            last_name=row["last_name"],
            email=row["email"],
            bio_blurb=row["bio_blurb"],
            last_search_at=_naive_utc(row["last_search_at"]),
            created_at=_naive_utc(row["created_at"]),
        )

    @staticmethod
    def _agent_from_row(row) -> PartnerAgentLink:
        return PartnerAgentLink(
            partner_id=row["partner_id"],
            partner_agent_id=row["partner_agent_id"],
            internal_account_id=UUID(str(row["account_id"])),
            existing_account=row["existing_account"],
            created_at=_naive_utc(row["created_at"]),
        )

    @staticmethod
    def _client_from_row(row) -> PartnerClientLink:
        candidates = _load_json(row["candidates"]) or []
        return PartnerClientLink(
            partner_id=row["partner_id"],
            partner_client_id=row["partner_client_id"],
            partner_agent_id=row["partner_agent_id"],
            status=LinkStatus(row["status"]),
            internal_account_id=UUID(str(row["account_id"])) if row["account_id"] else None,
            action=row["action"],
            confidence=row["confidence"],
            client_info=ClientInfo(**_load_json(row["client_info"])),
            candidates=[ClientCandidate(**c) for c in candidates],
            created_at=_naive_utc(row["created_at"]),
            linked_at=_naive_utc(row["linked_at"]),
        )

    @staticmethod
    def _client_params(link: PartnerClientLink) -> dict[str, Any]:
        return {
            "partner_id": link.partner_id,
            "partner_client_id": link.partner_client_id,
            "partner_agent_id": link.partner_agent_id,
            "status": link.status.value,
            "account_id": str(link.internal_account_id) if link.internal_account_id else None,
            "action": link.action.value if link.action else None,
            "confidence": link.confidence,
            "client_info": link.client_info.model_dump_json(),
            "candidates": json.dumps(
                [c.model_dump(mode="json") for c in link.candidates]
            ),
            "created_at": link.created_at,
            "linked_at": link.linked_at,
        }

    async def _insert_account(self, db, account: AccountProfile) -> int:
        result = await db.execute(
            text(f"""
                INSERT INTO accounts ({_ACCOUNT_COLUMNS}, last_name_key)
                VALUES (
                    :id, :first_name, :last_name, :email, :bio_blurb,
                    :last_search_at, :created_at, :last_name_key
                )
                ON CONFLICT (id) DO NOTHING
            """),
            {
                "id": str(account.account_id),
                "first_name": account.first_name,
                "last_name": account.last_name,
                "email": account.email,
                "bio_blurb": account.bio_blurb,
                "last_search_at": account.last_search_at,
                "created_at": account.created_at,
                "last_name_key": normalize_name(account.last_name),
            },
        )
        return result.rowcount

    async def _fetch_agent(self, db, partner_id: str, partner_agent_id: str):
        result = await db.execute(
            text("""
                SELECT partner_id, partner_agent_id, account_id,
                       existing_account, created_at
                FROM partner_agent_links
                WHERE partner_id = :partner_id
                  AND partner_agent_id = :partner_agent_id
            """),
            {"partner_id": partner_id, "partner_agent_id": partner_agent_id},
        )
        row = result.mappings().first()
        return self._agent_from_row(row) if row else None

    async def _fetch_client(
        self, db, partner_id: str, partner_client_id: str, for_update: bool = False
    ):
        result = await db.execute(
            text(f"""
                SELECT {_CLIENT_COLUMNS}
                FROM partner_client_links
                WHERE partner_id = :partner_id
                  AND partner_client_id = :partner_client_id
                {"FOR UPDATE" if for_update else ""}
            """),
            {"partner_id": partner_id, "partner_client_id": partner_client_id},
        )
        row = result.mappings().first()
        return self._client_from_row(row) if row else None

    # =========================
    # Agent links
    # =========================

    async def get_agent_link(self, partner_id, partner_agent_id):
        async with self._session() as db:
            return await self._fetch_agent(db, partner_id, partner_agent_id)

    async def find_agent_link_for_account(self, partner_id, account_id):
        async with self._session() as db:
            result = await db.execute(
                text("""
                    SELECT partner_id, partner_agent_id, account_id,
                           existing_account, created_at
                    FROM partner_agent_links
                    WHERE partner_id = :partner_id AND account_id = :account_id
                    ORDER BY created_at
                    LIMIT 1
                """),
                {"partner_id": partner_id, "account_id": str(account_id)},
            )
            row = result.mappings().first()
            return self._agent_from_row(row) if row else None

    async def commit_agent_link(self, link, new_account=None):
        async with self._session() as db:
            await self._advisory_lock(db, link.key)

            existing = await self._fetch_agent(db, link.partner_id, link.partner_agent_id)
            if existing is not None:
                return existing, False

            if new_account is not None:
                await self._insert_account(db, new_account)

            result = await db.execute(
                text("""
                    INSERT INTO partner_agent_links (
                        partner_id, partner_agent_id, account_id,
                        existing_account, created_at
                    ) VALUES (
                        :partner_id, :partner_agent_id, :account_id,
                        :existing_account, :created_at
                    )
                    ON CONFLICT (partner_id, partner_agent_id) DO NOTHING
                """),
                {
                    "partner_id": link.partner_id,
                    "partner_agent_id": link.partner_agent_id,
                    "account_id": str(link.internal_account_id),
                    "existing_account": link.existing_account,
                    "created_at": link.created_at,
                },
            )
            if result.rowcount == 1:
                return link, True

            logger.info(
                "Agent link lost conditional write",
                extra={"link_key": str(link.key)},
            )
            await db.rollback()
            winner = await self._fetch_agent(db, link.partner_id, link.partner_agent_id)
            return winner, False

    # =========================
    # Client links
    # =========================

    async def get_client_link(self, partner_id, partner_client_id):
        async with self._session() as db:
            return await self._fetch_client(db, partner_id, partner_client_id)

    async def save_pending_client(self, link):
        async with self._session() as db:
            await self._advisory_lock(db, link.key)
            result = await db.execute(
                text(f"""
                    INSERT INTO partner_client_links ({_CLIENT_COLUMNS})
                    VALUES (
                        :partner_id, :partner_client_id, :partner_agent_id,
                        :status, :account_id, :action, :confidence,
                        CAST(:client_info AS jsonb), CAST(:candidates AS jsonb),
                        :created_at, :linked_at
                    )
                    ON CONFLICT (partner_id, partner_client_id) DO NOTHING
                """),
                self._client_params(link),
            )
            if result.rowcount == 1:
                return link, True
            existing = await self._fetch_client(db, link.partner_id, link.partner_client_id)
            return existing, False

    async def commit_client_link(self, link, new_account=None):
        async with self._session() as db:
            await self._advisory_lock(db, link.key)

            existing = await self._fetch_client(
                db, link.partner_id, link.partner_client_id, for_update=True
            )
            if existing is not None and existing.is_linked:
                return existing, False

            if new_account is not None:
                await self._insert_account(db, new_account)

            params = self._client_params(link)
            if existing is None:
                result = await db.execute(
                    text(f"""
                        INSERT INTO partner_client_links ({_CLIENT_COLUMNS})
                        VALUES (
                            :partner_id, :partner_client_id, :partner_agent_id,
                            :status, :account_id, :action, :confidence,
                            CAST(:client_info AS jsonb), CAST(:candidates AS jsonb),
                            :created_at, :linked_at
                        )
                        ON CONFLICT (partner_id, partner_client_id) DO NOTHING
                    """),
                    params,
                )
            else:
                result = await db.execute(
                    text("""
                        UPDATE partner_client_links
                        SET status = :status,
                            account_id = :account_id,
                            action = :action,
                            confidence = :confidence,
                            linked_at = :linked_at
                        WHERE partner_id = :partner_id
                          AND partner_client_id = :partner_client_id
                          AND status = 'pending_disambiguation'
                    """),
                    params,
                )

            if result.rowcount == 1:
                return link, True

            logger.info(
                "Client link lost conditional write",
                extra={"link_key": str(link.key)},
            )
            await db.rollback()
            winner = await self._fetch_client(db, link.partner_id, link.partner_client_id)
            return winner, False

    async def list_pending_clients(self, partner_id=None, limit=50):
        async with self._session() as db:
            result = await db.execute(
                text(f"""
                    SELECT {_CLIENT_COLUMNS}
                    FROM partner_client_links
                    WHERE status = 'pending_disambiguation'
                      AND (CAST(:partner_id AS text) IS NULL OR partner_id = :partner_id)
                    ORDER BY created_at
                    LIMIT :limit
                """),
                {"partner_id": partner_id, "limit": limit},
            )
            return [self._client_from_row(row) for row in result.mappings().all()]

    # =========================
    # Account directory
    # =========================

    async def get_account(self, account_id):
        async with self._session() as db:
            result = await db.execute(
                text(f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE id = :id"),
                {"id": str(account_id)},
            )
            row = result.mappings().first()
            return self._account_from_row(row) if row else None

    async def find_account_by_email(self, email):
        target = normalize_email(email)
        if not target:
            return None
        async with self._session() as db:
            result = await db.execute(
                text(f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM accounts
                    WHERE lower(email) = :email
                    ORDER BY created_at
                    LIMIT 1
                """),
                {"email": target},
            )
            row = result.mappings().first()
            return self._account_from_row(row) if row else None

    async def find_candidate_accounts(self, info, limit=50):
        async with self._session() as db:
            # Threshold for the % operator, scoped to this transaction
            await db.execute(
                text(
                    "SELECT set_config('pg_trgm.similarity_threshold', "
                    "CAST(:min_similarity AS text), true)"
                ),
                {"min_similarity": self.blocking_min_similarity},
            )
            result = await db.execute(
                text(f"""
                    SELECT {_ACCOUNT_COLUMNS}
                    FROM accounts
                    WHERE CAST(:email AS text) <> '' AND lower(email) = :email
                    UNION
                    (
                        SELECT {_ACCOUNT_COLUMNS}
                        FROM accounts
                        WHERE last_name_key % :last_name
                           OR last_name_key % :first_name
                        ORDER BY greatest(
                                     similarity(last_name_key, :last_name),
                                     similarity(last_name_key, :first_name)
                                 ) DESC,
                                 last_search_at DESC NULLS LAST
                        LIMIT :limit
                    )
                """),
                {
                    "email": normalize_email(info.email),
                    "first_name": normalize_name(info.first_name),
                    "last_name": normalize_name(info.last_name),
                    "limit": limit,
                },
            )
            return [self._account_from_row(row) for row in result.mappings().all()]

    async def add_accounts(self, accounts):
        added = 0
        async with self._session() as db:
            for account in accounts:
                added += await self._insert_account(db, account)
        return added

    async def record_search(self, account_ids, at=None):
        at = at or datetime.utcnow()
        async with self._session() as db:
            for account_id in account_ids:
                await db.execute(
                    text("""
                        UPDATE accounts
                        SET last_search_at = :at
                        WHERE id = :id
                    """),
                    {"id": str(account_id), "at": at},
                )

    async def close(self) -> None:
        await close_all_connections()
