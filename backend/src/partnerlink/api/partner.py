"""Partner API endpoints.

Search plus the three linking endpoints a partner calls when a search
answers with ``action_required``.
"""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..linking import IdentityResolver
from ..models import ClientInfo, ResolveAction
from ..search import SearchService, SearchUnavailableError
from . import InvalidDatesError, SearchUnavailableAPIError, success
from .auth import PartnerId
from .deps import get_resolver, get_search_service

router = APIRouter(prefix="/partner")


# =========================
# Request Models
# =========================


class SearchCriteria(BaseModel):
    """Structured search criteria; fields beyond the dates pass through."""

    check_in: date
    check_out: date

    model_config = ConfigDict(extra="allow")


class SearchSpec(BaseModel):
    """Either a free-text query or structured criteria."""

    query: str | None = Field(default=None, min_length=1)
    criteria: SearchCriteria | None = None

    @model_validator(mode="after")
    def _exactly_one(self) -> "SearchSpec":
        if (self.query is None) == (self.criteria is None):
            raise ValueError("exactly one of 'query' or 'criteria' is required")
        return self


class SearchRequest(BaseModel):
    """Search on behalf of a partner agent and client."""

    partner_agent_id: str = Field(..., min_length=1, max_length=255)
    partner_client_id: str = Field(..., min_length=1, max_length=255)
    search: SearchSpec
    traveler_info: dict[str, Any] | None = None


class CreateAgentRequest(BaseModel):
    """Link a partner agent to an account."""

    partner_agent_id: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=320)
    first_name: str = Field(..., min_length=1, max_length=200)
    last_name: str = Field(..., min_length=1, max_length=200)

    @field_validator("email")
    @classmethod
    def _looks_like_email(cls, v: str) -> str:
        v = v.strip()
        local, sep, domain = v.rpartition("@")
        if not sep or not local or "." not in domain:
            raise ValueError("must be an email address")
        return v


class VerifyCustomerRequest(BaseModel):
    """Link a partner client, or get disambiguation candidates."""

    partner_agent_id: str = Field(..., min_length=1, max_length=255)
    partner_client_id: str = Field(..., min_length=1, max_length=255)
    client_info: ClientInfo


class ResolveCustomerRequest(BaseModel):
    """Finalize a pending disambiguation."""

    partner_client_id: str = Field(..., min_length=1, max_length=255)
    action: ResolveAction
    outfit_user_id: UUID | None = None

    @model_validator(mode="after")
    def _link_needs_account(self) -> "ResolveCustomerRequest":
        if self.action == ResolveAction.LINK and self.outfit_user_id is None:
            raise ValueError("outfit_user_id is required when action is 'link'")
        return self


def validate_stay_dates(criteria: SearchCriteria, today: date | None = None) -> None:
    """Check check-in/check-out ordering and that the stay is not in the past.

    Raises:
        InvalidDatesError: Dates are out of order or check-in has passed
    """
    today = today or datetime.utcnow().date()
    if criteria.check_in >= criteria.check_out:
        raise InvalidDatesError("check_in must be before check_out")
    if criteria.check_in < today:
        raise InvalidDatesError("check_in must not be in the past")


# =========================
# Endpoints
# =========================


@router.post("/search")
async def search(
    request: SearchRequest,
    partner_id: PartnerId,
    service: SearchService = Depends(get_search_service),
):
    """Run a search for a linked agent and client.

    Answers AGENT_NOT_LINKED / CLIENT_NOT_LINKED with the linking call
    to make before retrying.
    """
    if request.search.criteria is not None:
        validate_stay_dates(request.search.criteria)

    try:
        outcome = await service.search(
            partner_id,
            request.partner_agent_id,
            request.partner_client_id,
            request.search.model_dump(mode="json", exclude_none=True),
            request.traveler_info,
        )
    except SearchUnavailableError as e:
        raise SearchUnavailableAPIError(str(e)) from e

    return success(outcome)


@router.post("/create-agent")
async def create_agent(
    request: CreateAgentRequest,
    partner_id: PartnerId,
    resolver: IdentityResolver = Depends(get_resolver),
):
    """Link a partner agent, reusing an account with the same email."""
    result = await resolver.link_agent(
        partner_id,
        request.partner_agent_id,
        email=request.email,
        first_name=request.first_name,
        last_name=request.last_name,
    )
    return success(result)


@router.post("/verify-customer")
async def verify_customer(
    request: VerifyCustomerRequest,
    partner_id: PartnerId,
    resolver: IdentityResolver = Depends(get_resolver),
):
    """Link a partner client or return ranked disambiguation candidates."""
    result = await resolver.verify_customer(
        partner_id,
        request.partner_agent_id,
        request.partner_client_id,
        request.client_info,
    )
    return success(result)


@router.post("/resolve-customer")
async def resolve_customer(
    request: ResolveCustomerRequest,
    partner_id: PartnerId,
    resolver: IdentityResolver = Depends(get_resolver),
):
    """Pick a disambiguation candidate, or create a new account instead."""
    result = await resolver.resolve_customer(
        partner_id,
        request.partner_client_id,
        request.action,
        request.outfit_user_id,
    )
    return success(result)
