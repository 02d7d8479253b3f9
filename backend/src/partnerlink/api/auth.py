"""Partner authentication.

Partners authenticate with the ``X-Outfit-Api-Key`` header; each key
maps to exactly one partner id through the PARTNER_API_KEYS setting.
"""

import hmac
from typing import Annotated

from fastapi import Depends, Header, Request

from ..config import get_settings
from . import InvalidAPIKeyError

API_KEY_HEADER = "X-Outfit-Api-Key"


def resolve_partner(api_key: str | None) -> str | None:
    """Return the partner id for an API key, or None when unknown."""
    if not api_key:
        return None
    for key, partner_id in get_settings().partner_keys.items():
        if hmac.compare_digest(key.encode(), api_key.encode()):
            return partner_id
    return None


async def get_partner_id(
    request: Request,
    x_outfit_api_key: Annotated[str | None, Header(alias=API_KEY_HEADER)] = None,
) -> str:
    """Dependency that authenticates the calling partner.

    Raises:
        InvalidAPIKeyError: Header missing or key unknown
    """
    partner_id = resolve_partner(x_outfit_api_key)
    if partner_id is None:
        raise InvalidAPIKeyError()

    # Picked up by the request logging middleware
    request.state.partner_id = partner_id
    return partner_id


PartnerId = Annotated[str, Depends(get_partner_id)]
