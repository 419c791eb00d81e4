"""
Shared FastAPI dependencies.

- get_container(): the ServiceContainer built by the app lifespan.
- get_optional_principal(): session principal or None.
- get_principal(): session principal, 401 UNAUTHENTICATED otherwise.
"""

from typing import Optional

from fastapi import Cookie, Depends, Header, Request

from orbia.application.container import ServiceContainer
from orbia.domain.errors import InvalidRequestError, UnauthenticatedError
from orbia.infrastructure.observability.logging import bind_request_context
from orbia.infrastructure.security import Principal, extract_token

SESSION_COOKIE = "orbia_session"
ANONYMOUS_COOKIE = "session-id"


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise RuntimeError("ServiceContainer not initialized.")
    return container


async def get_optional_principal(
    authorization: Optional[str] = Header(None),
    session_cookie: Optional[str] = Cookie(None, alias=SESSION_COOKIE),
    container: ServiceContainer = Depends(get_container),
) -> Optional[Principal]:
    principal = await container.sessions.resolve(extract_token(authorization, session_cookie))
    if principal is not None:
        bind_request_context(user_id=principal.user_id)
    return principal


async def get_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    """Authenticated caller; raises 401 UNAUTHENTICATED on failure."""
    if principal is None:
        raise UnauthenticatedError("No authenticated session")
    return principal


def resolve_agent_principal(
    principal: Optional[Principal],
    body_user_id: Optional[str],
    anonymous_id: Optional[str],
) -> Principal:
    """Session user, else the body's userId, else an anonymous identity.

    Only a session principal may use provider tools.
    """
    if principal is not None:
        return principal
    if body_user_id:
        return Principal.anonymous(body_user_id)
    if anonymous_id:
        return Principal.anonymous(f"anonymous-{anonymous_id}")
    return Principal.anonymous()


def require_user_id(user_id: Optional[str]) -> str:
    if not user_id or not user_id.strip():
        raise InvalidRequestError("User ID is required", fields={"userId": "required"})
    return user_id
