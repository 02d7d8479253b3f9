"""Partner link models.

A link maps a partner-scoped identifier to an internal account. Agent
links are written once; client links may sit in a pending
disambiguation state until the partner picks a candidate.
"""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .accounts import ClientInfo


class LinkKind(str, Enum):
    """Which partner identifier a link key refers to."""

    AGENT = "agent"
    CLIENT = "client"
    # Normalized agent email within one partner
    AGENT_EMAIL = "agent_email"


class LinkStatus(str, Enum):
    """Lifecycle of a client link."""

    PENDING_DISAMBIGUATION = "pending_disambiguation"
    LINKED = "linked"


class LinkAction(str, Enum):
    """How a client ended up linked."""

    CREATED = "created"
    EXISTING = "existing"


class ResolveAction(str, Enum):
    """Follow-up choices after a disambiguation response."""

    LINK = "link"
    CREATE = "create"


class LinkKey(BaseModel):
    """Unit of serialization in the link store."""

    partner_id: str
    kind: LinkKind
    partner_ref: str

    model_config = ConfigDict(frozen=True)

    def __str__(self) -> str:
        return f"{self.partner_id}:{self.kind.value}:{self.partner_ref}"


class ClientCandidate(BaseModel):
    """An existing account offered to the partner during disambiguation."""

    internal_account_id: UUID
    first_name: str
    last_name: str
    email: str | None = None
    last_search_at: datetime | None = None
    match_confidence: float = Field(ge=0.0, le=1.0)
    signals: dict[str, Any] = Field(default_factory=dict)


class PartnerAgentLink(BaseModel):
    """Mapping of (partner_id, partner_agent_id) to an account."""

    partner_id: str
    partner_agent_id: str
    internal_account_id: UUID
    existing_account: bool
    created_at: datetime = Field(default_factory=datetime.utcnow)

    model_config = ConfigDict(frozen=True)

    @property
    def key(self) -> LinkKey:
        return LinkKey(
            partner_id=self.partner_id,
            kind=LinkKind.AGENT,
            partner_ref=self.partner_agent_id,
        )


class PartnerClientLink(BaseModel):
    """Mapping of (partner_id, partner_client_id) to an account.

    While ``status`` is pending, ``internal_account_id`` is None and
    ``candidates`` holds the ranked disambiguation snapshot.
    """

    partner_id: str
    partner_client_id: str
    partner_agent_id: str
    status: LinkStatus
    client_info: ClientInfo
    internal_account_id: UUID | None = None
    action: LinkAction | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    candidates: list[ClientCandidate] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    linked_at: datetime | None = None

    @property
    def key(self) -> LinkKey:
        return LinkKey(
            partner_id=self.partner_id,
            kind=LinkKind.CLIENT,
            partner_ref=self.partner_client_id,
        )

    @property
    def is_linked(self) -> bool:
        return self.status == LinkStatus.LINKED

    def candidate(self, account_id: UUID) -> ClientCandidate | None:
        """Return the stored candidate for ``account_id``, if offered."""
        for candidate in self.candidates:
            if candidate.internal_account_id == account_id:
                return candidate
        return None


class AgentLinkResult(BaseModel):
    """Outcome of create-agent."""

    partner_agent_id: str
    linked: bool = True
    existing_account: bool
    outfit_user_id: UUID


class ClientLinkResult(BaseModel):
    """Outcome of verify-customer / resolve-customer.

    Linked results carry ``action``, ``confidence`` and ``outfit_user_id``;
    disambiguation results carry ``status`` and ``candidates``.
    """

    partner_client_id: str
    linked: bool
    action: LinkAction | None = None
    confidence: float | None = None
    outfit_user_id: UUID | None = None
    status: str | None = None
    candidates: list[ClientCandidate] | None = None

    @classmethod
    def from_link(cls, link: PartnerClientLink) -> "ClientLinkResult":
        """Render a stored client link as an API result."""
        if link.is_linked:
            return cls(
                partner_client_id=link.partner_client_id,
                linked=True,
                action=link.action,
                confidence=link.confidence,
                outfit_user_id=link.internal_account_id,
            )
        return cls(
            partner_client_id=link.partner_client_id,
            linked=False,
            status="disambiguation_required",
            candidates=list(link.candidates),
        )
