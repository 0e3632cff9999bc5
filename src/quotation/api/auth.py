"""Bearer-token authentication for the HTTP API.

Tokens are configured in ``Settings.api_tokens``, one secret JSON object
``{token: user_id}`` read through ``Settings.token_map()``.
Resolution happens before any handler touches state.
"""

from __future__ import annotations

import hmac

from fastapi import Request

from quotation.config import Settings
from quotation.domain.errors import NotAuthenticated
from quotation.domain.models import Caller

_BEARER_PREFIX = "bearer "


def extract_bearer_token(authorization: str | None) -> str | None:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not authorization or not authorization.lower().startswith(_BEARER_PREFIX):
        return None
    token = authorization[len(_BEARER_PREFIX):].strip()
    return token or None


def resolve_caller(settings: Settings, authorization: str | None) -> Caller:
    """Map an ``Authorization`` header to a :class:`Caller`.

    Raises:
        NotAuthenticated: If the header is missing, malformed, or unknown.
    """
    token = extract_bearer_token(authorization)
    if token is None:
        raise NotAuthenticated("Missing bearer token")

    for known, user_id in settings.token_map().items():
        if hmac.compare_digest(known.encode(), token.encode()) and user_id:
            return Caller(user_id=user_id)
    raise NotAuthenticated("Invalid bearer token")


async def require_caller(request: Request) -> Caller:
    """FastAPI dependency returning the authenticated caller."""
    settings: Settings = request.app.state.settings
    return resolve_caller(settings, request.headers.get("Authorization"))
