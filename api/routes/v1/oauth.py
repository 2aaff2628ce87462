"""
api/routes/v1/oauth.py -- OAuth 2.0 token, revocation, userinfo and provider endpoints.

Routes:
  POST /api/v1/oauth/token       -- password or refresh_token grant; token triad
  POST /api/v1/oauth/revoke      -- revoke one refresh token (requires auth)
  POST /api/v1/oauth/revoke-all  -- revoke every session of the caller (requires auth)
  GET  /api/v1/oauth/userinfo    -- OIDC claims of the caller (requires auth)
  GET  /api/v1/oauth/authorize   -- 302 to a federated provider (public)
  GET  /api/v1/oauth/callback    -- federated callback; 501 until implemented
  GET  /api/v1/oauth/providers   -- configured federated providers (public)

Security:
  [H2] POST /token is rate-limited per IP (Settings.login_rate_limit).
  [M5] Cache-Control: no-store on every response that carries tokens.
  POST /revoke always answers "Token revoked successfully" -- whether the
       token existed, belonged to the caller, or was already revoked is not
       disclosed.
  OAuth state is random per redirect and kept in the signed session cookie.
"""

from __future__ import annotations

import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter, login_limit
from api.models import (
    GrantType,
    MessageResponse,
    ProviderInfo,
    RevokeRequest,
    TokenRequest,
    TokenResponse,
    UserInfoResponse,
)
from auth.dependencies import get_current_user
from auth.errors import ProviderNotSupportedError
from auth.models import AuthenticatedUser
from auth.providers import IdentityProviderRegistry
from auth.service import AuthService
from auth.sessions import SessionManager

# Auth policy:
# - POST /api/v1/oauth/token:       public -- the token endpoint is how clients authenticate
# - POST /api/v1/oauth/revoke:      requires auth (get_current_user); ownership checked in SessionManager
# - POST /api/v1/oauth/revoke-all:  requires auth (get_current_user)
# - GET  /api/v1/oauth/userinfo:    requires auth (get_current_user)
# - GET  /api/v1/oauth/authorize:   public
# - GET  /api/v1/oauth/callback:    public
# - GET  /api/v1/oauth/providers:   public -- login pages call this to render provider buttons
router = APIRouter()

_NO_STORE = {"Cache-Control": "no-store", "Pragma": "no-cache"}


@router.post("/oauth/token", response_model=TokenResponse)
@limiter.limit(login_limit)  # [H2] must be BELOW @router so the wrapped function is the registered endpoint
def token(request: Request, body: TokenRequest) -> JSONResponse:
    """Exchange credentials or a refresh token for a fresh token triad.

    Every failure is 401 with a generic message; unknown email, wrong
    password, expired token and reused token look the same from outside.
    """
    service: AuthService = request.app.state.auth_service
    if body.grant_type is GrantType.password:
        result = service.password_grant(body.username, body.password)
    else:
        result = service.refresh_grant(body.refresh_token)
    return JSONResponse(content=TokenResponse(**result).model_dump(), headers=_NO_STORE)


@router.post("/oauth/revoke", response_model=MessageResponse)
def revoke(
    request: Request,
    body: RevokeRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageResponse:
    """Log out one session. The refresh token must belong to the caller."""
    sessions: SessionManager = request.app.state.session_manager
    sessions.revoke_session(current_user.id, body.refresh_token)
    return MessageResponse(message="Token revoked successfully")


@router.post("/oauth/revoke-all", response_model=MessageResponse)
def revoke_all(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> MessageResponse:
    """Log out everywhere."""
    sessions: SessionManager = request.app.state.session_manager
    sessions.revoke_all_sessions(current_user.id)
    return MessageResponse(message="All sessions revoked successfully")


@router.get("/oauth/userinfo", response_model=UserInfoResponse)
def userinfo(
    request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
) -> JSONResponse:
    service: AuthService = request.app.state.auth_service
    claims = UserInfoResponse(**service.userinfo(current_user.id))
    return JSONResponse(content=claims.model_dump(), headers=_NO_STORE)


# ---------------------------------------------------------------------------
# Federated providers
# ---------------------------------------------------------------------------


@router.get("/oauth/providers", response_model=list[ProviderInfo])
async def list_providers(request: Request) -> list[ProviderInfo]:
    """Return configured federated providers. Empty when no client ids are set."""
    registry: IdentityProviderRegistry = request.app.state.providers
    return [ProviderInfo(name=p.name, label=p.label) for p in registry.federated()]


@router.get("/oauth/authorize")
async def authorize(request: Request, provider: str) -> RedirectResponse:
    """Redirect the browser to the provider's consent page."""
    registry: IdentityProviderRegistry = request.app.state.providers
    idp = registry.get(provider)
    if not idp.supports_authorization_redirect:
        raise ProviderNotSupportedError(f"Provider {provider} does not support authorization redirects")
    state = secrets.token_urlsafe(32)
    request.session["oauth_state"] = state
    request.session["oauth_provider"] = idp.name
    return RedirectResponse(idp.get_authorization_url(state), status_code=302)


@router.get("/oauth/callback")
async def callback(request: Request, code: Optional[str] = None, state: Optional[str] = None) -> JSONResponse:
    """Federated callback. Code exchange is not implemented, so this answers 501."""
    provider_name = request.session.pop("oauth_provider", None)
    request.session.pop("oauth_state", None)
    if provider_name is None:
        raise NotImplementedError("OAuth callback is not implemented")
    registry: IdentityProviderRegistry = request.app.state.providers
    registry.get(provider_name).handle_callback(code or "")
    raise NotImplementedError("OAuth callback is not implemented")
