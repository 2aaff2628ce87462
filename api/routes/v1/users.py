"""
api/routes/v1/users.py -- Account registration.

Routes:
  POST /api/v1/users/register  -- create a local account; 201 or 409

Registration is the one flow that confirms an address is taken (409). The
response body never includes credential material -- UserResponse is built
from SafeUser.
"""

from __future__ import annotations

from fastapi import APIRouter, Request

from api.models import RegisterRequest, UserResponse
from auth.service import AuthService

router = APIRouter()


@router.post("/users/register", response_model=UserResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> UserResponse:
    service: AuthService = request.app.state.auth_service
    user = service.register(body.email, body.password, body.first_name, body.last_name)
    return UserResponse.from_user(user)
