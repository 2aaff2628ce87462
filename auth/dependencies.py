"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Only one auth method: "Authorization: Bearer <access token>". Refresh and id
tokens are rejected here by TokenCodec (wrong secret / wrong type claim).

get_current_user() verifies the token statelessly and returns an
AuthenticatedUser(id, email). It does not hit the database -- access tokens
are short-lived and are not revocable by design of the token triad.

Layer rule: auth/dependencies.py may import from fastapi (for Request and
HTTPException) because this module is part of the FastAPI dependency
injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import InvalidTokenError
from auth.models import AuthenticatedUser

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


def extract_bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def get_current_user(request: Request) -> AuthenticatedUser:
    """Require a valid access token. Raises HTTP 401 otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: AuthenticatedUser = Depends(get_current_user)): ...
    """
    token = extract_bearer_token(request)
    if token is None:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED, headers={"WWW-Authenticate": "Bearer"})
    try:
        payload = request.app.state.token_codec.verify_access(token)
    except InvalidTokenError:
        raise HTTPException(
            status_code=401, detail=_UNAUTHORIZED, headers={"WWW-Authenticate": "Bearer"}
        ) from None
    return AuthenticatedUser(id=payload["sub"], email=payload["email"])
