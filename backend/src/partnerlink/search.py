"""Search gateway.

Forwards searches for fully linked (agent, client) pairs to the external
search service and hands back the deeplink it prepares.
"""

from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import BaseModel, Field, ValidationError

from .config import get_settings
from .linking import IdentityResolver
from .logging import get_context_logger
from .models import PartnerAgentLink, PartnerClientLink

logger = get_context_logger(__name__)


class SearchUnavailableError(Exception):
    """The external search service failed or returned garbage."""

    code = "SEARCH_UNAVAILABLE"


class SearchOutcome(BaseModel):
    """What a successful search returns to the partner."""

    deeplink_url: str
    search_session_id: str
    search_results: list[dict[str, Any]] = Field(default_factory=list)


class SearchGateway(ABC):
    """Runs a search on behalf of a linked agent and client."""

    @abstractmethod
    async def search(
        self,
        agent: PartnerAgentLink,
        client: PartnerClientLink,
        search: dict[str, Any],
        traveler_info: dict[str, Any] | None = None,
    ) -> SearchOutcome:
        ...

    async def close(self) -> None:
        return None


class HttpSearchGateway(SearchGateway):
    """Gateway that POSTs to the search service over HTTP."""

    SEARCH_PATH = "/v1/search"

    def __init__(self, base_url: str | None = None, timeout: float | None = None):
        settings = get_settings()
        self.base_url = (base_url or settings.search_service_url).rstrip("/")
        self.timeout = timeout or settings.search_service_timeout_seconds
        self._http_client: httpx.AsyncClient | None = None

    @property
    def http_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout),
            )
        return self._http_client

    async def close(self) -> None:
        """Close HTTP client."""
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    async def search(self, agent, client, search, traveler_info=None):
        payload = {
            "agent_user_id": str(agent.internal_account_id),
            "client_user_id": str(client.internal_account_id),
            "search": search,
            "traveler_info": traveler_info,
        }
        try:
            response = await self.http_client.post(self.SEARCH_PATH, json=payload)
            response.raise_for_status()
            return SearchOutcome.model_validate(response.json())
        except httpx.HTTPStatusError as e:
            logger.warning(f"Search service returned HTTP {e.response.status_code}")
            raise SearchUnavailableError(
                f"Search service returned HTTP {e.response.status_code}"
            ) from e
        except httpx.RequestError as e:
            logger.warning(f"Search service request failed: {e}")
            raise SearchUnavailableError("Search service is unreachable") from e
        except (ValueError, ValidationError) as e:
            logger.warning(f"Search service sent an invalid response: {e}")
            raise SearchUnavailableError("Search service sent an invalid response") from e


class SearchService:
    """Resolves the partner identifiers, then runs the search."""

    def __init__(self, resolver: IdentityResolver, gateway: SearchGateway):
        self.resolver = resolver
        self.gateway = gateway

    async def search(
        self,
        partner_id: str,
        partner_agent_id: str,
        partner_client_id: str,
        search: dict[str, Any],
        traveler_info: dict[str, Any] | None = None,
    ) -> SearchOutcome:
        """Run a search for a linked agent/client pair.

        Raises:
            AgentNotLinkedError, ClientNotLinkedError: Linking must happen first
            SearchUnavailableError: The search service failed
        """
        agent, client = await self.resolver.lookup(
            partner_id, partner_agent_id, partner_client_id
        )
        outcome = await self.gateway.search(agent, client, search, traveler_info)

        # Feeds the recency boost in future scoring
        await self.resolver.store.record_search(
            [agent.internal_account_id, client.internal_account_id]
        )
        logger.info(
            "Search completed",
            extra={
                "partner_id": partner_id,
                "search_session_id": outcome.search_session_id,
                "result_count": len(outcome.search_results),
            },
        )
        return outcome
