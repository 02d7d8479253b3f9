"""Service singletons used as FastAPI dependencies."""

from fastapi import Depends

from ..config import get_settings
from ..linking import ConfidenceScorer, IdentityResolver, InMemoryLinkStore, LinkStore
from ..logging import get_logger
from ..search import HttpSearchGateway, SearchGateway, SearchService

logger = get_logger(__name__)

_link_store: LinkStore | None = None
_resolver: IdentityResolver | None = None
_search_gateway: SearchGateway | None = None


def get_link_store() -> LinkStore:
    """Get the link store singleton for the configured backend."""
    global _link_store
    if _link_store is None:
        settings = get_settings()
        if settings.storage_backend == "postgres":
            from ..linking.sql_store import SqlLinkStore

            _link_store = SqlLinkStore()
        else:
            _link_store = InMemoryLinkStore()
        logger.info(f"Using {settings.storage_backend} link store")
    return _link_store


def get_resolver() -> IdentityResolver:
    """Get the identity resolver singleton."""
    global _resolver
    if _resolver is None:
        _resolver = IdentityResolver(
            get_link_store(), ConfidenceScorer.from_settings(get_settings())
        )
    return _resolver


def get_search_gateway() -> SearchGateway:
    """Get the search gateway singleton."""
    global _search_gateway
    if _search_gateway is None:
        _search_gateway = HttpSearchGateway()
    return _search_gateway


def get_search_service(
    resolver: IdentityResolver = Depends(get_resolver),
    gateway: SearchGateway = Depends(get_search_gateway),
) -> SearchService:
    """Build a search service from the current resolver and gateway."""
    return SearchService(resolver, gateway)


async def close_services() -> None:
    """Release the store and gateway (for shutdown)."""
    global _link_store, _resolver, _search_gateway
    if _search_gateway is not None:
        await _search_gateway.close()
    if _link_store is not None:
        await _link_store.close()
    _link_store = None
    _resolver = None
    _search_gateway = None
