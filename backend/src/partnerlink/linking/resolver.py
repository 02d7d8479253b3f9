"""Identity resolver for partner agents and clients.

Maps partner-scoped identifiers onto internal accounts.

Resolution flow for clients:
1. Already linked (or pending) → return the stored result
2. Top candidate >= auto-link threshold → link it (action "existing")
3. Candidates >= disambiguation threshold → return them, ranked
4. Nothing qualifies → create a new account (action "created")

Every operation runs under the store's per-key lock and commits through
the store's conditional writes, so retries and concurrent first calls
all observe a single link.
"""

from datetime import datetime
from uuid import UUID

from ..logging import get_context_logger, log_link_event, log_scoring_event
from ..models import (
    AccountProfile,
    AgentLinkResult,
    ClientInfo,
    ClientLinkResult,
    LinkAction,
    LinkKey,
    LinkKind,
    LinkStatus,
    PartnerAgentLink,
    PartnerClientLink,
    ResolveAction,
)
from .errors import (
    AgentAccountConflictError,
    AgentNotLinkedError,
    ClientNotLinkedError,
    DisambiguationNotFoundError,
    InvalidCandidateError,
    LinkConflictError,
)
from .scorer import ConfidenceScorer, MatchDecision, normalize_email
from .store import LinkStore

logger = get_context_logger(__name__)


def _agent_result(link: PartnerAgentLink) -> AgentLinkResult:
    return AgentLinkResult(
        partner_agent_id=link.partner_agent_id,
        linked=True,
        existing_account=link.existing_account,
        outfit_user_id=link.internal_account_id,
    )


def _matches_resolution(
    link: PartnerClientLink, action: ResolveAction, outfit_user_id: UUID | None
) -> bool:
    """Whether a linked client already reflects the requested resolution."""
    if action == ResolveAction.CREATE:
        return link.action == LinkAction.CREATED
    return (
        link.action == LinkAction.EXISTING
        and link.internal_account_id == outfit_user_id
    )


class IdentityResolver:
    """Links partner agent and client identifiers to internal accounts."""

    def __init__(self, store: LinkStore, scorer: ConfidenceScorer | None = None):
        """Initialize the resolver.

        Args:
            store: Link store holding links and the account directory
            scorer: Confidence scorer (defaults to the standard thresholds)
        """
        self.store = store
        self.scorer = scorer or ConfidenceScorer()

    # =========================
    # Agents
    # =========================

    async def link_agent(
        self,
        partner_id: str,
        partner_agent_id: str,
        email: str,
        first_name: str,
        last_name: str,
    ) -> AgentLinkResult:
        """Link a partner agent to an account, creating one if needed.

        An existing account is reused when its email matches. Calling
        again for a linked agent returns the stored link unchanged.

        Runs under the agent key lock and a partner+email lock, so two
        agent ids with one email cannot both claim (or both create) the
        account.

        Raises:
            AgentAccountConflictError: The matching account is already
                linked to a different agent id of the same partner
        """
        key = LinkKey(
            partner_id=partner_id, kind=LinkKind.AGENT, partner_ref=partner_agent_id
        )
        email_key = LinkKey(
            partner_id=partner_id,
            kind=LinkKind.AGENT_EMAIL,
            partner_ref=normalize_email(email),
        )
        # email lock is always taken second
        async with self.store.lock(key), self.store.lock(email_key):
            existing = await self.store.get_agent_link(partner_id, partner_agent_id)
            if existing is not None:
                log_link_event(
                    "agent", partner_id, partner_agent_id, "replayed",
                    account_id=str(existing.internal_account_id),
                )
                return _agent_result(existing)

            new_account = None
            account = await self.store.find_account_by_email(email)
            if account is not None:
                owner = await self.store.find_agent_link_for_account(
                    partner_id, account.account_id
                )
                if owner is not None and owner.partner_agent_id != partner_agent_id:
                    raise AgentAccountConflictError(partner_agent_id, owner.partner_agent_id)
            else:
                account = new_account = AccountProfile(
                    first_name=first_name.strip(),
                    last_name=last_name.strip(),
                    email=email.strip(),
                )

            link = PartnerAgentLink(
                partner_id=partner_id,
                partner_agent_id=partner_agent_id,
                internal_account_id=account.account_id,
                existing_account=new_account is None,
            )
            stored, written = await self.store.commit_agent_link(
                link, new_account=new_account
            )

        outcome = "existing" if stored.existing_account else "created"
        log_link_event(
            "agent", partner_id, partner_agent_id,
            outcome if written else "replayed",
            account_id=str(stored.internal_account_id),
        )
        return _agent_result(stored)

    # =========================
    # Clients
    # =========================

    async def verify_customer(
        self,
        partner_id: str,
        partner_agent_id: str,
        partner_client_id: str,
        client_info: ClientInfo,
    ) -> ClientLinkResult:
        """Link a partner client, or ask the partner to disambiguate.

        Raises:
            AgentNotLinkedError: The agent must be created first
        """
        agent = await self.store.get_agent_link(partner_id, partner_agent_id)
        if agent is None:
            raise AgentNotLinkedError(partner_agent_id)

        key = LinkKey(
            partner_id=partner_id, kind=LinkKind.CLIENT, partner_ref=partner_client_id
        )
        async with self.store.lock(key):
            existing = await self.store.get_client_link(partner_id, partner_client_id)
            if existing is not None:
                log_link_event(
                    "client", partner_id, partner_client_id, "replayed",
                    account_id=str(existing.internal_account_id)
                    if existing.internal_account_id else None,
                    confidence=existing.confidence,
                )
                return ClientLinkResult.from_link(existing)

            accounts = await self.store.find_candidate_accounts(client_info)
            candidates = self.scorer.rank(client_info, accounts)
            log_scoring_event(
                partner_client_id,
                candidates_scored=len(accounts),
                candidates_kept=len(candidates),
                top_confidence=candidates[0].match_confidence if candidates else None,
            )

            base = dict(
                partner_id=partner_id,
                partner_client_id=partner_client_id,
                partner_agent_id=partner_agent_id,
                client_info=client_info,
            )
            decision = self.scorer.decide(candidates)
            if decision == MatchDecision.AUTO_LINK:
                top = candidates[0]
                link = PartnerClientLink(
                    **base,
                    status=LinkStatus.LINKED,
                    internal_account_id=top.internal_account_id,
                    action=LinkAction.EXISTING,
                    confidence=top.match_confidence,
                    linked_at=datetime.utcnow(),
                )
                stored, written = await self.store.commit_client_link(link)
            elif decision == MatchDecision.DISAMBIGUATE:
                link = PartnerClientLink(
                    **base,
                    status=LinkStatus.PENDING_DISAMBIGUATION,
                    candidates=candidates,
                )
                stored, written = await self.store.save_pending_client(link)
            else:
                account = AccountProfile.from_client_info(client_info)
                link = PartnerClientLink(
                    **base,
                    status=LinkStatus.LINKED,
                    internal_account_id=account.account_id,
                    action=LinkAction.CREATED,
                    confidence=1.0,
                    linked_at=datetime.utcnow(),
                )
                stored, written = await self.store.commit_client_link(
                    link, new_account=account
                )

        self._log_client_outcome(stored, written)
        return ClientLinkResult.from_link(stored)

    async def resolve_customer(
        self,
        partner_id: str,
        partner_client_id: str,
        action: ResolveAction,
        outfit_user_id: UUID | None = None,
    ) -> ClientLinkResult:
        """Finalize a pending disambiguation.

        Args:
            partner_id: Partner the client belongs to
            partner_client_id: Partner-scoped client id
            action: LINK to one of the offered candidates, or CREATE a new account
            outfit_user_id: Chosen candidate (required for LINK)

        Raises:
            DisambiguationNotFoundError: No link exists for the client
            InvalidCandidateError: The account was not offered
            LinkConflictError: The client is already linked differently
        """
        key = LinkKey(
            partner_id=partner_id, kind=LinkKind.CLIENT, partner_ref=partner_client_id
        )
        async with self.store.lock(key):
            existing = await self.store.get_client_link(partner_id, partner_client_id)
            if existing is None:
                raise DisambiguationNotFoundError(partner_client_id)

            if existing.is_linked:
                if not _matches_resolution(existing, action, outfit_user_id):
                    raise LinkConflictError(
                        f"Client {partner_client_id} is already linked to "
                        f"{existing.internal_account_id} ({existing.action.value})"
                    )
                log_link_event(
                    "client", partner_id, partner_client_id, "replayed",
                    account_id=str(existing.internal_account_id),
                    confidence=existing.confidence,
                )
                return ClientLinkResult.from_link(existing)

            new_account = None
            now = datetime.utcnow()
            if action == ResolveAction.LINK:
                if outfit_user_id is None:
                    raise InvalidCandidateError(
                        "outfit_user_id is required when action is 'link'"
                    )
                candidate = existing.candidate(outfit_user_id)
                if candidate is None:
                    raise InvalidCandidateError(
                        f"Account {outfit_user_id} was not offered for "
                        f"client {partner_client_id}"
                    )
                link = existing.model_copy(
                    update={
                        "status": LinkStatus.LINKED,
                        "internal_account_id": candidate.internal_account_id,
                        "action": LinkAction.EXISTING,
                        "confidence": candidate.match_confidence,
                        "linked_at": now,
                    }
                )
            else:
                new_account = AccountProfile.from_client_info(existing.client_info)
                link = existing.model_copy(
                    update={
                        "status": LinkStatus.LINKED,
                        "internal_account_id": new_account.account_id,
                        "action": LinkAction.CREATED,
                        "confidence": 1.0,
                        "linked_at": now,
                    }
                )

            stored, written = await self.store.commit_client_link(
                link, new_account=new_account
            )
            if not written and not _matches_resolution(stored, action, outfit_user_id):
                raise LinkConflictError(
                    f"Client {partner_client_id} was linked concurrently to "
                    f"{stored.internal_account_id}"
                )

        self._log_client_outcome(stored, written)
        return ClientLinkResult.from_link(stored)

    # =========================
    # Lookup
    # =========================

    async def lookup(
        self,
        partner_id: str,
        partner_agent_id: str,
        partner_client_id: str,
    ) -> tuple[PartnerAgentLink, PartnerClientLink]:
        """Return the linked agent and client for a search.

        Raises:
            AgentNotLinkedError: Call create-agent first
            ClientNotLinkedError: Call verify-customer (or resolve-customer
                when a disambiguation is pending) first
        """
        agent = await self.store.get_agent_link(partner_id, partner_agent_id)
        if agent is None:
            raise AgentNotLinkedError(partner_agent_id)

        client = await self.store.get_client_link(partner_id, partner_client_id)
        if client is None:
            raise ClientNotLinkedError(partner_client_id)
        if not client.is_linked:
            raise ClientNotLinkedError(partner_client_id, pending=True)

        return agent, client

    def _log_client_outcome(self, link: PartnerClientLink, written: bool) -> None:
        if not written:
            outcome = "replayed"
        elif link.is_linked:
            outcome = link.action.value
        else:
            outcome = "disambiguation_required"
        log_link_event(
            "client", link.partner_id, link.partner_client_id, outcome,
            account_id=str(link.internal_account_id) if link.internal_account_id else None,
            confidence=link.confidence,
        )
