# request identity for route handlers
from typing import Optional

from fastapi import Depends, Header, Request

from storefront.utils.errors import AuthenticationError, PermissionDeniedError
from storefront.utils.security import decode_access_token
from storefront.utils.state import RequestIdentity, generate_guest_session_id

GUEST_HEADER = "x-guest-session-id"


def _bearer_token(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_identity(
    request: Request,
    authorization: Optional[str] = Header(default=None),
    x_session_id: Optional[str] = Header(default=None),
    x_guest_session_id: Optional[str] = Header(default=None),
) -> RequestIdentity:
    """
    Resolve who the request acts for.

    A bearer token that fails to verify is an error rather than a silent
    fall back to guest mode. The guest id is stored on request.state so the
    response can echo it.
    """
    guest_id = x_session_id or x_guest_session_id or generate_guest_session_id()
    request.state.guest_session_id = guest_id

    token = _bearer_token(authorization)
    if token is None:
        return RequestIdentity(guest_session_id=guest_id)
    payload = decode_access_token(token)
    return RequestIdentity(
        user_id=payload["userId"], role=payload.get("role"), guest_session_id=guest_id
    )


async def require_user(identity: RequestIdentity = Depends(get_identity)) -> RequestIdentity:
    if not identity.is_authenticated:
        raise AuthenticationError()
    return identity


def check_user_id(identity: RequestIdentity, user_id: Optional[str]) -> None:
    """A userId sent by the client may only name the authenticated user."""
    if not user_id:
        return
    if not identity.is_authenticated:
        raise AuthenticationError()
    if user_id != identity.user_id:
        raise PermissionDeniedError("Cannot act on behalf of another user")


def scoped_identity(
    identity: RequestIdentity, user_id: Optional[str], guest_session_id: Optional[str] = None
) -> RequestIdentity:
    """Identity to scope queries by, honouring explicit userId/guestSessionId params."""
    check_user_id(identity, user_id)
    if guest_session_id and not identity.is_authenticated:
        return RequestIdentity(guest_session_id=guest_session_id)
    return identity
