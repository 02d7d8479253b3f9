"""Data models for partnerlink.

Pydantic models for internal accounts and partner links.
"""

from .accounts import AccountProfile, ClientInfo
from .links import (
    AgentLinkResult,
    ClientCandidate,
    ClientLinkResult,
    LinkAction,
    LinkKey,
    LinkKind,
    LinkStatus,
    PartnerAgentLink,
    PartnerClientLink,
    ResolveAction,
)

__all__ = [
    "AccountProfile",
    "AgentLinkResult",
    "ClientCandidate",
    "ClientInfo",
    "ClientLinkResult",
    "LinkAction",
    "LinkKey",
    "LinkKind",
    "LinkStatus",
    "PartnerAgentLink",
    "PartnerClientLink",
    "ResolveAction",
]
